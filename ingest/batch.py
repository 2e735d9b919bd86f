"""
BatchCoordinator - elaborazione batch di liquidazioni.

Per ogni documento: fetch (se da storage) -> estrazione -> assemblaggio ->
persistenza. Ogni documento è isolato: un errore produce un risultato
fallito solo per quel documento, gli altri proseguono.

Concorrenza:
- estrazione in worker thread, limitata da extract_concurrency (per processo)
- persistenza limitata da persist_concurrency (per processo, dimensionata sul pool DB)
- fetch e persistenza hanno timeout propri
"""
import asyncio
import base64
import binascii
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from core.config import get_config
from core.logger import log_json
from ingest.errors import DocumentTextError, MalformedBatchError, MissingOperationCodeError
from ingest.pipeline import parse_settlement
from ingest.storage import StorageRef
from ingest.text_extract import extract_pdf_text

logger = logging.getLogger(__name__)


@dataclass
class DocumentInput:
    """Documento da elaborare: base64 inline oppure riferimento storage."""
    filename: str
    data: Optional[str] = None
    ref: Optional[StorageRef] = None

    @classmethod
    def from_ref(cls, ref: StorageRef) -> "DocumentInput":
        return cls(filename=ref.filename, ref=ref)


def validate_batch_payload(payload: Any) -> List[DocumentInput]:
    """
    Valida il body di /settlements/parse: {"pdfs": [{"filename", "data"}, ...]}.

    Il contenuto base64 non viene decodificato qui: un base64 invalido
    fallisce solo il documento corrispondente.

    Raises:
        MalformedBatchError: payload non conforme (rifiuto intera invocazione)
    """
    pdfs = payload.get("pdfs") if isinstance(payload, dict) else None
    if not isinstance(pdfs, list):
        raise MalformedBatchError("Atteso 'pdfs' come lista di {filename, data}")
    if not pdfs:
        raise MalformedBatchError("La lista 'pdfs' è vuota")

    documents = []
    for index, item in enumerate(pdfs):
        if not isinstance(item, dict) or not item.get("filename") or not item.get("data"):
            raise MalformedBatchError(f"Elemento {index} di 'pdfs' senza 'filename' o 'data'")
        documents.append(DocumentInput(filename=str(item["filename"]), data=str(item["data"])))
    return documents


@dataclass
class BatchReport:
    resultados: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.resultados)

    @property
    def procesados(self) -> int:
        return sum(1 for r in self.resultados if r.get("success"))

    @property
    def errores(self) -> int:
        return self.total - self.procesados

    def to_response(self, include_summary: bool = True) -> Dict[str, Any]:
        response: Dict[str, Any] = {"success": True}
        if include_summary:
            response["resumen"] = {
                "total": self.total,
                "procesados": self.procesados,
                "errores": self.errores,
            }
        response["resultados"] = self.resultados
        return response


class ConcurrencyLimits:
    """
    Semafori di processo per estrazione e persistenza.

    Un'unica istanza per processo, condivisa da tutti i batch: il limite
    di persistenza deve restare entro la capacità del pool DB.
    """

    def __init__(self, extract_concurrency: int, persist_concurrency: int):
        self.extract = asyncio.Semaphore(extract_concurrency)
        self.persist = asyncio.Semaphore(persist_concurrency)

    @classmethod
    def from_config(cls, config) -> "ConcurrencyLimits":
        return cls(config.extract_concurrency, config.persist_concurrency)


class BatchCoordinator:
    """
    Coordina un batch di documenti verso il SettlementStore.

    Args:
        store: SettlementStore (o oggetto con upsert_settlement async)
        fetcher: S3Fetcher per documenti da storage
        text_extractor: bytes -> testo (default: pdfplumber)
        config: ProcessorConfig (default: get_config())
        limits: ConcurrencyLimits condivisi (default: nuovi limiti da config)
    """

    def __init__(
        self,
        store,
        fetcher=None,
        text_extractor: Callable[[bytes], str] = extract_pdf_text,
        config=None,
        limits: Optional[ConcurrencyLimits] = None
    ):
        self.store = store
        self.fetcher = fetcher
        self.text_extractor = text_extractor
        self.config = config or get_config()
        self.limits = limits or ConcurrencyLimits.from_config(self.config)

    async def _load_content(self, doc: DocumentInput) -> bytes:
        if doc.ref is not None:
            if self.fetcher is None:
                raise RuntimeError("Fetcher storage non configurato")
            content = await self.fetcher.fetch(doc.ref)
        else:
            try:
                content = base64.b64decode(doc.data or "", validate=True)
            except (binascii.Error, ValueError) as e:
                raise DocumentTextError(f"Contenuto base64 non valido: {e}") from e

        if len(content) > self.config.max_file_size_bytes:
            raise DocumentTextError(
                f"Documento troppo grande ({len(content)} bytes, max {self.config.max_file_size_bytes})"
            )
        return content

    async def process_document(self, doc: DocumentInput, user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Elabora un documento end-to-end.

        Returns:
            {filename, success: True, coe, grano, cantidad, ctgs} oppure
            {filename, success: False, error}
        """
        start_time = time.time()
        stage = "fetch"

        try:
            content = await self._load_content(doc)

            stage = "extract"
            async with self.limits.extract:
                parsed = await asyncio.to_thread(
                    parse_settlement, content, doc.filename, self.text_extractor
                )
            if not parsed.coe:
                raise MissingOperationCodeError(doc.filename)

            stage = "persist"
            source_key = doc.ref.key if doc.ref is not None else None
            async with self.limits.persist:
                try:
                    await asyncio.wait_for(
                        self.store.upsert_settlement(parsed, source_key=source_key, user_id=user_id),
                        timeout=self.config.persist_timeout_sec,
                    )
                except asyncio.TimeoutError as e:
                    raise TimeoutError(
                        f"Timeout salvataggio dopo {self.config.persist_timeout_sec}s"
                    ) from e

        except Exception as e:
            # Isolamento per documento: l'errore non interrompe il batch
            error = str(e) or type(e).__name__
            log_json(
                level='error',
                message=f'Documento non elaborato: {error}',
                stage=stage,
                file_name=doc.filename,
                elapsed_ms=(time.time() - start_time) * 1000,
                decision='error',
                error_type=type(e).__name__,
            )
            return {"filename": doc.filename, "success": False, "error": error}

        log_json(
            level='info',
            message='Documento elaborato',
            stage='persist',
            file_name=doc.filename,
            coe=parsed.coe,
            ctgs_count=len(parsed.ctgs),
            elapsed_ms=(time.time() - start_time) * 1000,
            decision='saved',
        )
        return {
            "filename": doc.filename,
            "success": True,
            "coe": parsed.coe,
            "grano": parsed.grano_tipo,
            "cantidad": parsed.cantidad_kg,
            "ctgs": len(parsed.ctgs),
        }

    async def run(self, documents: List[DocumentInput], user_id: Optional[str] = None) -> BatchReport:
        """
        Elabora i documenti in modo concorrente mantenendo l'ordine di input.
        """
        start_time = time.time()
        resultados = await asyncio.gather(
            *(self.process_document(doc, user_id=user_id) for doc in documents)
        )
        report = BatchReport(resultados=list(resultados))

        logger.info(
            f"[BATCH] Completato: total={report.total}, procesados={report.procesados}, "
            f"errores={report.errores}, elapsed={time.time() - start_time:.2f}s"
        )
        return report
