"""Structured JSON logging for production observability"""

import logging
import sys
from typing import Any, Dict
from pythonjsonlogger import jsonlogger
from reserve_engine.config import settings
from reserve_engine.utils.date_utils import utcnow


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = utcnow().isoformat()
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


def log_reserve_mutation(
    operation: str,
    profile_id: Any,
    entry_id: Any,
    amount: int,
    balance_after: int,
    actor: str | None,
) -> None:
    """Log a committed balance change for reconciliation"""
    logging.getLogger("reserve_engine.ledger").info(
        "Reserve mutation committed",
        extra={
            "step": "reserve_mutation",
            "operation": operation,
            "profile_id": str(profile_id),
            "entry_id": str(entry_id),
            "amount": amount,
            "balance_after": balance_after,
            "actor": actor,
        },
    )


def log_settlement_batch(total: int, released: int, failed: int, duration_ms: float) -> None:
    logging.getLogger("reserve_engine.settlement").info(
        "Scheduled release batch completed",
        extra={
            "step": "settlement_batch",
            "total": total,
            "released": released,
            "failed": failed,
            "duration_ms": duration_ms,
        },
    )
