"""
Pipeline liquidazioni - dal documento al ParsedSettlement.

Flow deterministico:
1. Estrazione text layer (pdfplumber)
2. Normalizzazione testo
3. Estrattori di sezione + voci CTG (indipendenti)
4. Assemblaggio ParsedSettlement

La persistenza è a carico del BatchCoordinator.
"""
import logging
import time
from typing import Callable, Optional

from core.logger import log_json
from ingest.assembler import assemble_settlement
from ingest.normalization import normalize_text
from ingest.text_extract import extract_pdf_text
from ingest.types import ParsedSettlement

logger = logging.getLogger(__name__)


def parse_settlement_text(text: str) -> ParsedSettlement:
    """
    Interpreta il testo di una liquidazione (funzione pura).

    Args:
        text: Testo grezzo o già normalizzato

    Returns:
        ParsedSettlement (campi non trovati = None, CTG eventualmente vuoti)
    """
    return assemble_settlement(normalize_text(text))


def parse_settlement(
    file_content: bytes,
    file_name: Optional[str] = None,
    text_extractor: Callable[[bytes], str] = extract_pdf_text
) -> ParsedSettlement:
    """
    Estrae testo dal PDF e lo interpreta.

    Args:
        file_content: Contenuto PDF in bytes
        file_name: Nome file per logging
        text_extractor: bytes -> testo (default: text layer pdfplumber)

    Returns:
        ParsedSettlement

    Raises:
        DocumentTextError: PDF non valido o senza testo
    """
    start_time = time.time()

    text = text_extractor(file_content)
    parsed = parse_settlement_text(text)

    elapsed_ms = (time.time() - start_time) * 1000
    log_json(
        level='info',
        message='Liquidazione estratta',
        stage='extract',
        file_name=file_name,
        coe=parsed.coe,
        ctgs_count=len(parsed.ctgs),
        elapsed_ms=elapsed_ms,
        tipo_operacion=parsed.tipo_operacion.value,
    )
    if parsed.coe is None:
        logger.warning(f"[PIPELINE] C.O.E. non trovato in {file_name or '<senza nome>'}")
    return parsed
