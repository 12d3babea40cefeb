"""Logging configuration for the application"""
import logging
from typing import Any, Optional

from paddock.core.config import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging():
    """Configure logging for the application"""
    LOG_LEVEL = settings.LOG_LEVEL.upper()
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format=LOG_FORMAT,
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )

    # Silence noisy third-party libraries
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# Append-only audit stream for reconciliation triage, keyed by event id
reconciliation_logger = logging.getLogger("reconciliation")
security_logger = logging.getLogger("security")


def log_reconciliation(
    level: int,
    message: str,
    event_id: Optional[str] = None,
    event_type: Optional[str] = None,
    exc_info: bool = False,
    **fields: Any
):
    """Write one structured entry to the reconciliation log.

    The fields are rendered as ``key=value`` pairs after the message so plain
    text handlers stay greppable, and are also attached as ``extra`` so OTLP
    and JSON handlers keep them as attributes.
    """
    context = {"event_id": event_id, "event_type": event_type}
    context.update(fields)
    rendered = " ".join(f"{key}={value}" for key, value in context.items() if value is not None)
    reconciliation_logger.log(
        level,
        f"{message} | {rendered}" if rendered else message,
        exc_info=exc_info,
        extra={"reconciliation": context},
    )
