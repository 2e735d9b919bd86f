"""
Core functionality per il processor liquidazioni.

Questo modulo contiene:
- Configurazione (config.py)
- Database e SettlementStore (database.py)
- Logging (logger.py)
"""
