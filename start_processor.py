import uvicorn
import os
import logging
from dotenv import load_dotenv

# Carica variabili ambiente
load_dotenv()

# Configurazione logging colorato PRIMA di qualsiasi altro import che usa logging
from core.logger import setup_colored_logging
setup_colored_logging("processor")

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    if not os.getenv("DATABASE_URL"):
        logger.warning("DATABASE_URL not set - startup will fail")

    from core.config import get_config
    port = get_config().port
    host = os.getenv("HOST", "0.0.0.0")

    # Un worker: ogni processo crea il proprio pool, PERSIST_CONCURRENCY è per processo
    workers = int(os.getenv("UVICORN_WORKERS", "1"))

    logger.info(f"Starting Settlements Processor on {host}:{port} with {workers} workers")

    try:
        uvicorn.run(
            "api.main:app",
            host=host,
            port=port,
            workers=workers,
            reload=False,
            log_level="info",
            access_log=True,
            use_colors=False  # colori gestiti da colorlog
        )
    except Exception as e:
        logger.error(f"Failed to start server: {e}")
        raise
