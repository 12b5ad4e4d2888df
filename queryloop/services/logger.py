"""Centralized logging service using loguru."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

from queryloop.config import settings

LOG_DIR = Path("logs")
LOG_DIR.mkdir(exist_ok=True)

logger.remove()

logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level=settings.app_log_level.upper(),
    colorize=True,
)

logger.add(
    LOG_DIR / "queryloop_{time:YYYY-MM-DD}.log",
    format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
    level="DEBUG",
    rotation="00:00",
    retention="7 days",
    compression="zip",
)

# Reduce noise from framework/network libraries
for logger_name in (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "hpack",
    "asyncio",
):
    logging.getLogger(logger_name).setLevel(settings.noisy_log_level.upper())


def log_db_operation(
    operation: str,
    table: str,
    status: str,
    details: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """Log a durable-store operation."""
    op_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "operation": operation,
        "table": table,
        "status": status,
        "details": details,
        "error": error,
    }
    if error:
        logger.error(f"DB_OPERATION_FAILED: {op_data}")
    else:
        logger.info(f"DB_OPERATION: {op_data}")


def log_poll_attempt(
    conversation_id: str,
    job_handle: str,
    attempt: int,
    status: str,
    error: Optional[str] = None,
) -> None:
    """Log one completion-poller status check."""
    poll_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "conversation_id": conversation_id,
        "job_handle": job_handle,
        "attempt": attempt,
        "status": status,
        "error": error,
    }
    if error:
        logger.warning(f"POLL_ATTEMPT_FAILED: {poll_data}")
    else:
        logger.debug(f"POLL_ATTEMPT: {poll_data}")


def log_event(
    event_type: str,
    message: str,
    **kwargs,
) -> None:
    """Log a generic event."""
    event_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type,
        "message": message,
        **kwargs,
    }
    logger.info(f"EVENT: {event_data}")


def log_provider_fallback(provider: str, reason: str) -> None:
    """Log a search/research provider falling back to the direct model."""
    logger.warning(f"PROVIDER_FALLBACK: provider={provider or 'unknown'} reason={reason}")


def log_poll_transition(
    conversation_id: str,
    job_handle: str,
    state: str,
    attempts: int,
    error: Optional[str] = None,
) -> None:
    """Log a completion poller reaching a terminal state."""
    transition = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "conversation_id": conversation_id,
        "job_handle": job_handle,
        "state": state,
        "attempts": attempts,
        "error": error,
    }
    if state == "failed":
        logger.error(f"POLL_FINISHED: {transition}")
    else:
        logger.info(f"POLL_FINISHED: {transition}")
