"""
Estrattori di campo per liquidazioni grani.

Ogni estrattore è una funzione pura: testo normalizzato -> dict parziale.
Gli estrattori sono indipendenti tra loro: un anchor mancante produce None
per quel campo e non blocca gli altri.

Sezioni:
- encabezado: COE, COE originale, tipo operazione, data e luogo
- partes: comprador / vendedor (C.U.I.T. + Razón Social)
- condiciones: grano, grado, prezzo e nolo per tonnellata, porto, data contratto
- operacion: chilogrammi, prezzo, subtotale, IVA, totali e netto
- datos adicionales: contratto e rettifiche con segno
"""
import logging
import re
from typing import Any, Dict, List, Optional

from ingest.normalization import clean_text, parse_ar_number, parse_number
from ingest.rules import apply_rules, register_rules, rule, rules_for, FieldRule
from ingest.types import OperationType

logger = logging.getLogger(__name__)

IVA_ALICUOTA = 10.5

GRAIN_NAMES = [
    "CEBADA FORRAJERA",
    "TRIGO PAN",
    "TRIGO DURO",
    "MAIZ",
    "SOJA",
    "SORGO",
    "GIRASOL",
]

# ---------------------------------------------------------------------------
# Encabezado
# ---------------------------------------------------------------------------

_AJUSTE_RE = re.compile(r'Ajuste unificado', re.IGNORECASE)
_PRIMARIA_RE = re.compile(r'Tipo de operaci[oó]n:\s*1(?!\d)', re.IGNORECASE)

register_rules(
    "encabezado",
    rule("coe", r'C\.O\.E\.:\s*(\d+)'),
    rule("coe_original", r'COE ORIGINAL:\s*(\d+)'),
    rule("fecha", r'(\d{2}/\d{2}/\d{4}),\s*[A-Z]'),
    rule("lugar", r'\d{2}/\d{2}/\d{4},\s*([A-Z ]+)\n'),
)


def classify_operation(text: str) -> OperationType:
    """Ajuste ha priorità su primaria; in assenza di marker -> otro."""
    if _AJUSTE_RE.search(text):
        return OperationType.AJUSTE
    if _PRIMARIA_RE.search(text):
        return OperationType.PRIMARIA
    return OperationType.OTRO


def extract_header(text: str) -> Dict[str, Any]:
    header = apply_rules(text, rules_for("encabezado"))
    header["tipo_operacion"] = classify_operation(text)
    return header


# ---------------------------------------------------------------------------
# Partes
# ---------------------------------------------------------------------------

_CUIT_RE = re.compile(r'C\.U\.I\.T\.:\s*(\d+)')
_RAZON_SOCIAL_RE = re.compile(r'Raz[oó]n Social:\s*([^\n]+)', re.IGNORECASE)

# Assunzione di layout: nel documento la prima coppia C.U.I.T./Razón Social
# è il comprador, la seconda il vendedor.
PARTY_ROLES = ("comprador", "vendedor")


def check_party_layout(cuits: List[str], razones: List[str]) -> List[str]:
    """
    Verifica la precondizione di layout delle parti.

    Returns:
        Lista di violazioni (vuota se il layout è quello atteso)
    """
    problems = []
    expected = len(PARTY_ROLES)
    if len(cuits) < expected:
        problems.append(f"trovati {len(cuits)} C.U.I.T. (attesi almeno {expected})")
    if len(razones) < expected:
        problems.append(f"trovate {len(razones)} Razón Social (attese almeno {expected})")
    return problems


def extract_parties(text: str) -> Dict[str, Optional[str]]:
    """
    Estrae comprador e vendedor per posizione.

    Precondizione: la prima coppia C.U.I.T./Razón Social nel documento è il
    comprador, la seconda il vendedor. Se mancano occorrenze il ruolo
    corrispondente resta None (mai spostato su un altro ruolo).
    """
    cuits = [m.group(1) for m in _CUIT_RE.finditer(text)]
    razones = [clean_text(m.group(1)) for m in _RAZON_SOCIAL_RE.finditer(text)]

    problems = check_party_layout(cuits, razones)
    if problems:
        logger.warning(f"[EXTRACT] Layout parti non conforme: {'; '.join(problems)}")

    parties: Dict[str, Optional[str]] = {}
    for index, role in enumerate(PARTY_ROLES):
        parties[f"{role}_cuit"] = cuits[index] if index < len(cuits) else None
        parties[f"{role}_razon_social"] = razones[index] if index < len(razones) else None
    return parties


# ---------------------------------------------------------------------------
# Condiciones
# ---------------------------------------------------------------------------

_GRANO_RE = re.compile(
    r'(\d{2})\s*-\s*(' + '|'.join(GRAIN_NAMES) + r')',
    re.IGNORECASE
)
# "$ 265872.42G211 - CEBADA FORRAJERA$ 43397.97" -> precio, grado, nolo
_CONDICIONES_RE = re.compile(r'\$\s*([\d.]+)(G[12]|FG)\d{2}\s*-\s*[A-Z ]+\$\s*([\d.]+)')

register_rules(
    "condiciones",
    rule("grano_codigo", _GRANO_RE),
    rule("grano_tipo", _GRANO_RE, group=0),
    rule("grado", r'\$\s*[\d.]+(G[12]|FG)\d'),
    rule("precio_tn", _CONDICIONES_RE, parse_number, group=1),
    rule("flete_tn", _CONDICIONES_RE, parse_number, group=3),
    rule("puerto", r'Puerto\s*\n([A-Z ]+)\n', flags=re.IGNORECASE),
    rule("fecha_contrato", r'Fecha:\s*(\d{2}/\d{2}/\d{4})'),
)


def extract_terms(text: str) -> Dict[str, Any]:
    return apply_rules(text, rules_for("condiciones"))


# ---------------------------------------------------------------------------
# Operación
# ---------------------------------------------------------------------------

# "59361 Kg$218.09$12946250.3010.5$1359356.28$14305606.58"
_OPERACION_RE = re.compile(
    r'([\d,]+)\s*Kg\s*\$\s*([\d.]+)\s*\$\s*([\d.,]+?)\s*(10\.5|10,5)\s*\$\s*([\d.,]+)\s*\$\s*([\d.,]+)'
)

register_rules(
    "operacion",
    rule("cantidad_kg", _OPERACION_RE, parse_number, group=1),
    rule("precio_kg", _OPERACION_RE, parse_number, group=2),
    rule("subtotal", _OPERACION_RE, parse_number, group=3),
    rule("iva_importe", _OPERACION_RE, parse_number, group=5),
    rule("total_operacion", _OPERACION_RE, parse_number, group=6),
    # Il valore precede la label: "$ 0.00Total Deducciones:"
    rule("total_deducciones", r'\$\s*([\d.,]+)\s*Total Deducciones:', parse_number, flags=re.IGNORECASE),
    rule("total_percepciones", r'Total Percepciones:\s*\$\s*([\d.,]+)', parse_number, flags=re.IGNORECASE),
    rule("iva_rg", r'IVA RG[^:\n]*:\s*\n\$\s*([\d.,]+)', parse_number, flags=re.IGNORECASE),
    rule("importe_neto", r'Importe Neto a Pagar:\s*\n\$\s*([\d.,]+)', parse_number, flags=re.IGNORECASE),
    rule("pago_condiciones", r'Pago seg[uú]n condiciones:\s*\$\s*([\d.,]+)', parse_number, flags=re.IGNORECASE),
)


def extract_operation(text: str) -> Dict[str, Any]:
    operation = apply_rules(text, rules_for("operacion"))
    operation["iva_alicuota"] = IVA_ALICUOTA
    return operation


# ---------------------------------------------------------------------------
# Datos Adicionales
# ---------------------------------------------------------------------------

_DATOS_ADICIONALES_RE = re.compile(
    r'Datos Adicionales:\s*([\s\S]+?)(?:Firma Comprador|$)',
    re.IGNORECASE
)
_DESC_COMERCIAL_SPLIT_RE = re.compile(r'Desc\.Comercial:\s*-?\n([\d.,]+)', re.IGNORECASE)
_DESC_COMERCIAL_INLINE_RE = re.compile(r'Desc\.Comercial:\s*([-\d.,]+)', re.IGNORECASE)
_DESC_COMERCIAL_NEGATIVE_RE = re.compile(r'Desc\.Comercial: *-', re.IGNORECASE)


def locate_commercial_discount(segment: str) -> Optional[str]:
    """
    Il valore può stare sulla riga della label o sulla successiva; un "-"
    esplicito dopo la label rende lo sconto negativo.
    """
    match = _DESC_COMERCIAL_SPLIT_RE.search(segment) or _DESC_COMERCIAL_INLINE_RE.search(segment)
    if not match:
        return None
    value = match.group(1)
    if _DESC_COMERCIAL_NEGATIVE_RE.search(segment):
        return "-" + value.lstrip("-")
    return value


register_rules(
    "datos_adicionales",
    rule("contrato", r'Contrato:\s*(\d+)', flags=re.IGNORECASE),
    rule("precio_base_tn", r'Precio:\s*([\d.,]+)\s*\$/TN', parse_ar_number, flags=re.IGNORECASE),
    rule("descuento_grado", r'Grado:\s*(-?[\d.,]+)', parse_ar_number, flags=re.IGNORECASE),
    rule("descuento_factor", r'Factor:\s*(-?[\d.,]+)', parse_ar_number, flags=re.IGNORECASE),
    FieldRule("descuento_comercial", locate_commercial_discount, parse_ar_number),
    rule("flete_neto", r'Flete:\s*(-?[\d.,]+)', parse_ar_number, flags=re.IGNORECASE),
    rule("precio_neto_tn", r'Px Neto:\s*([\d.,]+)', parse_ar_number, flags=re.IGNORECASE),
)


def additional_data_segment(text: str) -> Optional[str]:
    """Testo tra "Datos Adicionales:" e "Firma Comprador" (o fine testo)."""
    match = _DATOS_ADICIONALES_RE.search(text)
    return match.group(1) if match else None


def extract_additional_data(text: str) -> Dict[str, Any]:
    segment = additional_data_segment(text)
    if segment is None:
        return {}
    return apply_rules(segment, rules_for("datos_adicionales"))
