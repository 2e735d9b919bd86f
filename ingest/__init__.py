"""
Ingest pipeline per liquidazioni grani (PDF con text layer).

Questo modulo contiene la pipeline deterministica:
- Estrazione testo (text_extract.py) e normalizzazione (normalization.py)
- Estrattori di sezione a regole (rules.py, extractors.py)
- Voci CTG (ctg.py) e assemblaggio (assembler.py)
- Coordinamento batch e persistenza (batch.py)
- Lettura da S3 (storage.py)
"""
