"""
Estrazione text layer da PDF con pdfplumber.

Solo PDF con testo nativo: niente OCR.
"""
import logging
from io import BytesIO

import pdfplumber

from ingest.errors import DocumentTextError
from ingest.normalization import normalize_text

logger = logging.getLogger(__name__)


def extract_pdf_text(file_content: bytes) -> str:
    """
    Estrae e normalizza il testo di tutte le pagine del PDF.

    Args:
        file_content: Contenuto PDF in bytes

    Returns:
        Testo normalizzato (pagine separate da \\n)

    Raises:
        DocumentTextError: bytes vuoti, PDF non valido o senza text layer
    """
    if not file_content:
        raise DocumentTextError("Documento vuoto")

    try:
        with pdfplumber.open(BytesIO(file_content)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
    except Exception as e:
        # pdfminer solleva eccezioni eterogenee su file corrotti
        raise DocumentTextError(f"PDF non valido: {type(e).__name__}: {e}") from e

    text = normalize_text("\n".join(pages))
    if not text.strip():
        raise DocumentTextError("PDF senza testo estraibile")

    logger.debug(f"[TEXT] Estratte {len(pages)} pagine, {len(text)} caratteri")
    return text
