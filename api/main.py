"""
Main FastAPI application per il processor liquidazioni.

Lo SettlementStore viene creato allo startup, condiviso via app.state
e chiuso allo shutdown.
"""
import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text as sql_text

from core.config import get_config, validate_config
from core.database import SettlementStore
from core.logger import setup_colored_logging
from api.routers import settlements
from ingest.batch import ConcurrencyLimits
from ingest.storage import S3Fetcher

# Configurazione logging colorato
setup_colored_logging("processor")
logger = logging.getLogger(__name__)

config = get_config()

app = FastAPI(title=config.processor_name, version=config.processor_version)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get_cors_origins_list(),
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(settlements.router)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Errori non gestiti -> 500 {success: false, error} senza stack trace."""
    logger.error(f"[API] Errore non gestito su {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"success": False, "error": "Errore interno"})


@app.on_event("startup")
async def startup_event():
    """Crea store database, tabelle, client storage e limiti di concorrenza"""
    try:
        validate_config()

        store = SettlementStore.from_config(config)
        await store.create_tables()
        app.state.settlement_store = store
        app.state.s3_fetcher = S3Fetcher()
        app.state.concurrency_limits = ConcurrencyLimits.from_config(config)

        logger.info(f"{config.processor_name} v{config.processor_version} avviato")
    except Exception as e:
        logger.error(f"Error during startup: {e}", exc_info=True)
        raise


@app.on_event("shutdown")
async def shutdown_event():
    store = getattr(app.state, "settlement_store", None)
    if store is not None:
        await store.dispose()


@app.get("/health")
async def health_check():
    """Health check del servizio"""
    db_status = "not_initialized"
    store = getattr(app.state, "settlement_store", None)
    if store is not None:
        try:
            async with store.engine.connect() as conn:
                await conn.execute(sql_text("SELECT 1"))
            db_status = "connected"
        except Exception as db_error:
            logger.error(f"Health check database failed: {db_error}")
            db_status = f"error: {db_error}"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "service": config.processor_name,
        "version": config.processor_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": db_status,
        "endpoints": {
            "parse": "/settlements/parse",
            "storage_events": "/settlements/events/storage",
            "list": "/settlements",
            "detail": "/settlements/{settlement_id}",
        },
    }
