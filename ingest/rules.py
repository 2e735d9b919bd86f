"""
Interprete di regole di estrazione per campo.

Ogni campo è descritto da una regola (name, locator, converter):
- locator: regex compilata (si usa il gruppo `group`) oppure callable text -> str|None
- converter: post-processing del valore catturato (clean_text, parse_number, ...)

Le regole vivono in tabelle per sezione. Un nuovo layout di documento si
aggiunge registrando regole alternative per gli stessi nomi: vince la prima
regola che produce un valore non-None, quelle esistenti restano invariate.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Pattern, Union

from ingest.normalization import clean_text

logger = logging.getLogger(__name__)

Locator = Union[Pattern[str], Callable[[str], Optional[str]]]
Converter = Callable[[str], Any]


@dataclass(frozen=True)
class FieldRule:
    name: str
    locator: Locator
    converter: Converter = clean_text
    group: int = 1


def rule(name: str, pattern: Union[str, Pattern[str]], converter: Converter = clean_text,
         group: int = 1, flags: int = 0) -> FieldRule:
    """Costruisce una FieldRule da un pattern regex."""
    compiled = pattern if isinstance(pattern, re.Pattern) else re.compile(pattern, flags)
    return FieldRule(name=name, locator=compiled, converter=converter, group=group)


def locate(text: str, field_rule: FieldRule) -> Optional[str]:
    if isinstance(field_rule.locator, re.Pattern):
        match = field_rule.locator.search(text)
        return match.group(field_rule.group) if match else None
    return field_rule.locator(text)


def apply_rules(text: str, rules: List[FieldRule]) -> Dict[str, Any]:
    """
    Applica una tabella di regole al testo.

    Anchor assente o valore non convertibile -> None per quel campo;
    gli altri campi non sono influenzati.

    Returns:
        Dict {nome campo: valore}, una chiave per ogni nome presente in `rules`
    """
    result: Dict[str, Any] = {}

    for field_rule in rules:
        if result.get(field_rule.name) is not None:
            continue
        try:
            raw = locate(text, field_rule)
            result[field_rule.name] = field_rule.converter(raw) if raw is not None else None
        except (ValueError, TypeError, IndexError) as e:
            logger.warning(f"[RULES] Campo '{field_rule.name}' non estratto: {e}")
            result[field_rule.name] = None

    return result


# Tabelle regole per sezione documento
_REGISTRY: Dict[str, List[FieldRule]] = {}


def register_rules(section: str, *rules: FieldRule) -> None:
    _REGISTRY.setdefault(section, []).extend(rules)


def rules_for(section: str) -> List[FieldRule]:
    return list(_REGISTRY.get(section, []))
