"""
Logging strutturato per il processor liquidazioni.

Unifica logging colorato e structured logging con supporto JSON.
"""
import logging
import json
import uuid
import sys
import contextvars
from typing import Optional, Dict, Any
from datetime import datetime, timezone

import colorlog

# Context variables per tracciare richieste
_request_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar('request_context', default={})


def setup_colored_logging(service_name: str = "processor"):
    """
    Configura logging colorato con colorlog.

    Args:
        service_name: Nome del servizio per identificare log
    """
    # Handler per stdout con colori
    handler = colorlog.StreamHandler(sys.stdout)
    handler.setLevel(logging.DEBUG)

    formatter = colorlog.ColoredFormatter(
        f'%(log_color)s[%(levelname)s]%(reset)s %(cyan)s{service_name}%(reset)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        reset=True,
        log_colors={
            'DEBUG': 'white',
            'INFO': 'blue',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'red,bg_white',
        },
        secondary_log_colors={},
        style='%'
    )

    handler.setFormatter(formatter)

    # Configura root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    # Rimuovi handler esistenti
    root_logger.handlers = []

    root_logger.addHandler(handler)

    # Configura logger specifici per ridurre verbosità
    logging.getLogger('botocore').setLevel(logging.WARNING)
    logging.getLogger('boto3').setLevel(logging.WARNING)
    logging.getLogger('pdfminer').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    return root_logger


def set_request_context(user_id: Optional[str] = None, correlation_id: Optional[str] = None):
    """
    Imposta contesto richiesta per logging strutturato.

    Args:
        user_id: Identificativo opaco dell'utente (da authorizer upstream)
        correlation_id: ID correlazione (genera se None)
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())

    context = {}
    if user_id is not None:
        context["user_id"] = user_id
    context["correlation_id"] = correlation_id

    _request_context.set(context)


def get_request_context() -> Dict[str, Any]:
    """
    Recupera contesto richiesta corrente.

    Returns:
        Dict con user_id e correlation_id
    """
    return _request_context.get({})


def log_with_context(
    level: str,
    message: str,
    user_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    **extra
):
    """
    Log con contesto strutturato (user_id, correlation_id).

    Args:
        level: 'info', 'warning', 'error', 'debug'
        message: Messaggio da loggare
        user_id: Utente (usa contesto se None)
        correlation_id: ID correlazione (usa contesto se None)
        **extra: Campi aggiuntivi per log
    """
    ctx = get_request_context()
    if user_id is None:
        user_id = ctx.get("user_id")
    if correlation_id is None:
        correlation_id = ctx.get("correlation_id")

    log_message = message
    if user_id:
        log_message = f"[user_id={user_id}] {log_message}"
    if correlation_id:
        log_message = f"[correlation_id={correlation_id}] {log_message}"

    logger = logging.getLogger(__name__)
    log_func = getattr(logger, level.lower(), logger.info)
    log_func(log_message, extra=extra or None)


def log_json(
    level: str,
    message: str,
    user_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    stage: Optional[str] = None,
    file_name: Optional[str] = None,
    coe: Optional[str] = None,
    ctgs_count: Optional[int] = None,
    elapsed_ms: Optional[float] = None,
    decision: Optional[str] = None,
    **extra
):
    """
    Log strutturato in formato JSON (una riga per evento pipeline).

    Args:
        level: 'info', 'warning', 'error', 'debug'
        message: Messaggio da loggare
        user_id: Utente
        correlation_id: ID correlazione
        stage: Stage pipeline (fetch, extract, persist, batch)
        file_name: Nome file processato
        coe: Codice operazione estratto
        ctgs_count: Numero CTG estratti
        elapsed_ms: Tempo elaborazione in millisecondi
        decision: Esito (saved/error)
        **extra: Campi aggiuntivi
    """
    ctx = get_request_context()
    if user_id is None:
        user_id = ctx.get("user_id")
    if correlation_id is None:
        correlation_id = ctx.get("correlation_id")

    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level.upper(),
        "message": message,
    }

    if correlation_id:
        log_data["correlation_id"] = correlation_id
    if user_id:
        log_data["user_id"] = user_id
    if file_name:
        log_data["file_name"] = file_name
    if stage:
        log_data["stage"] = stage
    if coe:
        log_data["coe"] = coe
    if ctgs_count is not None:
        log_data["ctgs_count"] = ctgs_count
    if elapsed_ms is not None:
        log_data["elapsed_ms"] = round(elapsed_ms, 2)
    if decision:
        log_data["decision"] = decision

    log_data.update(extra)

    logger = logging.getLogger(__name__)
    log_func = getattr(logger, level.lower(), logger.info)

    json_line = json.dumps(log_data, ensure_ascii=False, default=str)
    log_func(json_line)
