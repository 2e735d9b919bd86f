"""
Normalizzazione testo e numeri per l'estrazione liquidazioni.

- normalize_text: prepara il testo grezzo estratto dal PDF per il matching
- clean_text: collassa spazi nei valori catturati
- parse_number / parse_ar_number: numeri con separatori ambigui -> float
"""
import math
import re
import logging
from typing import Optional, Any

logger = logging.getLogger(__name__)

_HORIZONTAL_WS_RE = re.compile(r"[ \t\u00a0\u2007\u202f]+")
_ANY_WS_RE = re.compile(r'\s+')
_CURRENCY_RE = re.compile(r'U\$S|US\$|ARS|\$|€|\s', re.IGNORECASE)


def normalize_text(raw: Optional[str]) -> str:
    """
    Normalizza il testo estratto per il pattern matching.

    Regole:
    - line ending uniformi (\\n), form feed di pagina -> \\n
    - spazi non separabili e tab -> spazio singolo
    - spazi multipli collassati, righe senza spazi iniziali/finali
    - le righe vuote restano (separano i blocchi CTG)

    Args:
        raw: Testo grezzo (anche None)

    Returns:
        Testo normalizzato (stringa vuota se input vuoto)
    """
    if not raw:
        return ""

    text = raw.replace('\r\n', '\n').replace('\r', '\n').replace('\f', '\n')
    lines = [_HORIZONTAL_WS_RE.sub(' ', line).strip() for line in text.split('\n')]
    return '\n'.join(lines)


def clean_text(value: Optional[str]) -> Optional[str]:
    """Collassa whitespace e trim. Ritorna None se il valore resta vuoto."""
    if value is None:
        return None
    cleaned = _ANY_WS_RE.sub(' ', value).strip()
    return cleaned or None


def _to_float(candidate: str) -> Optional[float]:
    try:
        value = float(candidate)
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def parse_number(token: Any) -> Optional[float]:
    """
    Converte un token numerico con separatori ambigui in float.

    Regole:
    - rimuove simboli valuta e spazi
    - virgola e punto presenti: il separatore più a destra è il decimale,
      l'altro è separatore migliaia ("1,359,356.28" e "1.234,56")
    - solo virgola: una sola virgola è il decimale ("1234,56"),
      più virgole sono migliaia ("1,359,356")
    - solo punti: più punti sono migliaia ("1.359.356"), altrimenti parse diretto

    Attenzione: una virgola singola seguita da tre cifre resta un decimale,
    quindi "59,361" vale 59.361 e non 59361. Pesi e quantità con una sola
    virgola di migliaia vengono letti mille volte più piccoli: le regole
    che leggono chilogrammi devono catturare il valore senza separatori.

    Args:
        token: Stringa (o numero) da convertire

    Returns:
        float oppure None se vuoto/non parsabile (mai eccezioni)
    """
    if token is None:
        return None
    if isinstance(token, (int, float)) and not isinstance(token, bool):
        return _to_float(str(token))
    if not isinstance(token, str):
        return None

    cleaned = _CURRENCY_RE.sub('', token).rstrip('.,')
    if not cleaned:
        return None

    has_comma = ',' in cleaned
    has_period = '.' in cleaned

    if has_comma and has_period:
        if cleaned.rfind(',') > cleaned.rfind('.'):
            cleaned = cleaned.replace('.', '').replace(',', '.')
        else:
            cleaned = cleaned.replace(',', '')
    elif has_comma:
        if cleaned.count(',') > 1:
            cleaned = cleaned.replace(',', '')
        else:
            cleaned = cleaned.replace(',', '.')
    elif cleaned.count('.') > 1:
        cleaned = cleaned.replace('.', '')

    value = _to_float(cleaned)
    if value is None:
        logger.debug(f"[NORMALIZATION] Numero non parsabile: {token!r}")
    return value


def parse_ar_number(token: Any) -> Optional[float]:
    """
    Formato es-AR stretto (blocco Datos Adicionales): punto = migliaia,
    virgola = decimale, segno conservato. "265.872,42" -> 265872.42
    """
    if token is None:
        return None
    if not isinstance(token, str):
        return parse_number(token)

    cleaned = _CURRENCY_RE.sub('', token).replace('.', '').replace(',', '.', 1)
    if not cleaned:
        return None
    return _to_float(cleaned)
