"""
Router liquidazioni grani.

Endpoint:
- POST /settlements/parse: batch di PDF base64 -> parse + salvataggio
- POST /settlements/events/storage: evento S3 -> download + parse + salvataggio
- GET /settlements: lista paginata liquidazioni utente
- GET /settlements/{settlement_id}: dettaglio con voci CTG
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse

from core.config import get_config
from core.logger import log_with_context, set_request_context
from ingest.batch import BatchCoordinator, ConcurrencyLimits, DocumentInput, validate_batch_payload
from ingest.errors import MalformedBatchError
from ingest.storage import refs_from_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settlements", tags=["settlements"])


def get_store(request: Request):
    """Dependency: SettlementStore creato allo startup."""
    return request.app.state.settlement_store


def get_fetcher(request: Request):
    """Dependency: S3Fetcher creato allo startup."""
    return getattr(request.app.state, "s3_fetcher", None)


def get_limits(request: Request) -> ConcurrencyLimits:
    """Dependency: limiti di concorrenza condivisi dal processo."""
    limits = getattr(request.app.state, "concurrency_limits", None)
    if limits is None:
        limits = ConcurrencyLimits.from_config(get_config())
        request.app.state.concurrency_limits = limits
    return limits


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


async def _read_json(request: Request):
    try:
        return await request.json()
    except ValueError as e:
        raise MalformedBatchError(f"Body JSON non valido: {e}") from e


@router.post("/parse")
async def parse_settlements(
    request: Request,
    x_user_id: Optional[str] = Header(default=None),
    store=Depends(get_store),
    limits: ConcurrencyLimits = Depends(get_limits)
):
    """
    Elabora un batch di liquidazioni PDF in base64.

    Body: {"pdfs": [{"filename": "...", "data": "<base64>"}]}
    """
    set_request_context(user_id=x_user_id)

    try:
        documents = validate_batch_payload(await _read_json(request))
    except MalformedBatchError as e:
        log_with_context("warning", f"[SETTLEMENTS] Batch rifiutato: {e}")
        return error_response(400, str(e))

    log_with_context("info", f"[SETTLEMENTS] Batch ricevuto: {len(documents)} documenti")

    try:
        coordinator = BatchCoordinator(store, limits=limits)
        report = await coordinator.run(documents, user_id=x_user_id)
    except Exception as e:
        logger.error(f"[SETTLEMENTS] Errore elaborazione batch: {e}", exc_info=True)
        return error_response(500, "Errore interno durante l'elaborazione del batch")

    return report.to_response(include_summary=True)


@router.post("/events/storage")
async def process_storage_event(
    request: Request,
    store=Depends(get_store),
    fetcher=Depends(get_fetcher),
    limits: ConcurrencyLimits = Depends(get_limits)
):
    """
    Elabora un evento di notifica S3 (un documento per record).

    La risposta non include il riepilogo, solo i risultati.
    """
    set_request_context()

    try:
        refs = refs_from_event(await _read_json(request), allowed_bucket=get_config().s3_bucket or None)
    except MalformedBatchError as e:
        log_with_context("warning", f"[SETTLEMENTS] Evento storage rifiutato: {e}")
        return error_response(400, str(e))

    documents = [DocumentInput.from_ref(ref) for ref in refs]
    log_with_context("info", f"[SETTLEMENTS] Evento storage: {len(documents)} oggetti")

    try:
        coordinator = BatchCoordinator(store, fetcher=fetcher, limits=limits)
        report = await coordinator.run(documents)
    except Exception as e:
        logger.error(f"[SETTLEMENTS] Errore elaborazione evento storage: {e}", exc_info=True)
        return error_response(500, "Errore interno durante l'elaborazione dell'evento")

    return report.to_response(include_summary=False)


@router.get("")
async def list_settlements(
    page: int = Query(default=1),
    limit: int = Query(default=20),
    grain: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    x_user_id: Optional[str] = Header(default=None),
    store=Depends(get_store)
):
    if not x_user_id:
        return error_response(401, "Non autorizzato")
    set_request_context(user_id=x_user_id)

    try:
        result = await store.list_settlements(
            user_id=x_user_id, page=page, limit=limit, grain=grain, status=status
        )
    except Exception as e:
        logger.error(f"[SETTLEMENTS] Errore lista liquidazioni: {e}", exc_info=True)
        return error_response(500, "Errore interno durante la lettura delle liquidazioni")

    return {"success": True, **result}


@router.get("/{settlement_id}")
async def get_settlement(
    settlement_id: str,
    x_user_id: Optional[str] = Header(default=None),
    store=Depends(get_store)
):
    if not x_user_id:
        return error_response(401, "Non autorizzato")
    set_request_context(user_id=x_user_id)

    try:
        settlement = await store.get_settlement(settlement_id, user_id=x_user_id)
    except Exception as e:
        logger.error(f"[SETTLEMENTS] Errore dettaglio liquidazione {settlement_id}: {e}", exc_info=True)
        return error_response(500, "Errore interno durante la lettura della liquidazione")

    if settlement is None:
        return error_response(404, "Liquidazione non trovata")
    return {"success": True, "data": settlement}
