"""
Eccezioni del processor liquidazioni.
"""


class SettlementIngestError(Exception):
    """Errore base pipeline liquidazioni."""


class MalformedBatchError(SettlementIngestError):
    """Payload batch non conforme: l'intera invocazione viene rifiutata."""


class DocumentTextError(SettlementIngestError):
    """Impossibile ottenere testo dal documento (PDF invalido o senza text layer)."""


class MissingOperationCodeError(SettlementIngestError):
    """Liquidazione senza C.O.E.: non riconciliabile."""

    def __init__(self, filename=None):
        self.filename = filename
        message = "C.O.E. non trovato nel documento"
        if filename:
            message = f"{message} ({filename})"
        super().__init__(message)


class StorageFetchError(SettlementIngestError):
    """Lettura oggetto da storage fallita."""

    def __init__(self, bucket: str, key: str, reason: str):
        self.bucket = bucket
        self.key = key
        super().__init__(f"Impossibile leggere s3://{bucket}/{key}: {reason}")
