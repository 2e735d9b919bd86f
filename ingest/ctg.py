"""
Estrazione voci CTG (Carta de Porte) da liquidazione.

Due layout:
- primario: una riga per CTG con grado, proteina, procedenza, fattore e peso
- fallback (pagina 2): blocco "CTG. Nro:" con coppie "numero (peso)"

Il fallback si usa solo se il layout primario non produce voci.
"""
import logging
import re
from typing import List

from ingest.normalization import clean_text, parse_number
from ingest.types import CTGItem

logger = logging.getLogger(__name__)

# "101234567890 G2 11 Localidad: PERGAMINO 99.50 29680"
_PRIMARY_LINE_RE = re.compile(
    r'(\d{12})\s*(FG|G[123])\s*(\d+)\s*Localidad:\s*([^\n]+?)\s*(\d{2}\.\d{2})\s*(\d{4,6})[ \t]*(?:\n|$)'
)
# Il blocco termina a una riga vuota o alla riga "Firma..."
_FALLBACK_BLOCK_RE = re.compile(r'CTG\.\s*Nro:\s*([\s\S]+?)(?=\n\n|\nFirma)', re.IGNORECASE)
_FALLBACK_PAIR_RE = re.compile(r'(\d{11,14})\s*\(([\d.,]+)\)')


def parse_primary_ctgs(text: str) -> List[CTGItem]:
    items = []
    for match in _PRIMARY_LINE_RE.finditer(text):
        items.append(CTGItem(
            nro_comprobante=match.group(1),
            grado=match.group(2),
            contenido_proteico=float(match.group(3)),
            procedencia=clean_text(match.group(4)),
            factor=float(match.group(5)),
            peso_kg=float(match.group(6)),
        ))
    return items


def parse_fallback_ctgs(text: str) -> List[CTGItem]:
    """Layout ridotto: solo numero comprobante e peso, altri attributi None."""
    items = []
    for block in _FALLBACK_BLOCK_RE.finditer(text):
        for pair in _FALLBACK_PAIR_RE.finditer(block.group(1)):
            items.append(CTGItem(
                nro_comprobante=pair.group(1),
                peso_kg=parse_number(pair.group(2)),
            ))
    return items


def extract_ctgs(text: str) -> List[CTGItem]:
    """
    Estrae le voci CTG dal testo normalizzato.

    Returns:
        Lista voci in ordine documento; lista vuota se nessun layout corrisponde
    """
    items = parse_primary_ctgs(text)
    if items:
        logger.debug(f"[CTG] Layout primario: {len(items)} voci")
        return items

    items = parse_fallback_ctgs(text)
    if items:
        logger.debug(f"[CTG] Layout fallback: {len(items)} voci")
    else:
        logger.info("[CTG] Nessuna voce CTG trovata")
    return items
