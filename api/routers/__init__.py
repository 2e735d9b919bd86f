"""
Routers per API processor liquidazioni.

Moduli:
- settlements: parse batch, eventi storage, lista e dettaglio (/settlements/*)
"""
from . import settlements

__all__ = ["settlements"]
