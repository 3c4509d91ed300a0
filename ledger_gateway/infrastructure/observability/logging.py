"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from ledger_gateway.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_record_failure(stage: str, external_ref: Optional[str], user_id: str, error: Exception) -> None:
    """Log a record that failed to map or write; the sync carries on"""
    logging.getLogger("ledger_gateway.sync").error(
        "Record sync failed",
        extra={
            "user_id": user_id,
            "stage": stage,
            "external_ref": external_ref,
            "error": str(error),
            "error_type": type(error).__name__,
        },
    )


def log_sync_complete(
    user_id: str,
    tenant_id: str,
    counts: Dict[str, Dict[str, int]],
    failure_count: int,
    duration_ms: float,
) -> None:
    """Log structured sync outcome for analysis"""
    logging.getLogger("ledger_gateway.sync").info(
        "Sync completed",
        extra={
            "user_id": user_id,
            "tenant_id": tenant_id,
            "step": "sync_complete",
            "counts": counts,
            "failure_count": failure_count,
            "duration_ms": duration_ms,
        },
    )
