"""
Composizione ParsedSettlement dagli estrattori di sezione.
"""
from ingest.ctg import extract_ctgs
from ingest.extractors import (
    extract_additional_data,
    extract_header,
    extract_operation,
    extract_parties,
    extract_terms,
)
from ingest.types import ParsedSettlement


def assemble_settlement(text: str) -> ParsedSettlement:
    """
    Unisce le sezioni estratte in un ParsedSettlement.

    Nessuna validazione oltre la forma: campi non trovati restano None.

    Args:
        text: Testo già normalizzato

    Returns:
        ParsedSettlement con voci CTG e datos_adicionales
    """
    fields = {}
    fields.update(extract_header(text))
    fields.update(extract_parties(text))
    fields.update(extract_terms(text))
    fields.update(extract_operation(text))

    return ParsedSettlement(
        **fields,
        ctgs=extract_ctgs(text),
        datos_adicionales=extract_additional_data(text),
    )
