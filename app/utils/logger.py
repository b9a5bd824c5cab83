"""
Centralized logging configuration.

Console output is human-readable; the rotating file is one JSON object per line so
payment audit trails (state changes, confirmations, settlements) can be replayed
from logs, since nothing else outlives the process.
"""
import logging
import logging.config
import json
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Iterable, Optional
from pathlib import Path

# Fields never written verbatim: portal credentials, 2FA codes, key material, signatures.
REDACTED_FIELDS = frozenset({"two_factor_code", "password", "private_key", "signature", "x_payment"})

# Third-party loggers routed through the same handlers; levels keep their chatter down.
LIBRARY_LOGGERS: Dict[str, str] = {
    "uvicorn": "INFO",
    "aiohttp": "WARNING",
    "web3": "WARNING",
    "playwright": "WARNING",
}


def _redact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: ("***" if k in REDACTED_FIELDS else v) for k, v in data.items()}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with the structured extras merged in."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "task": getattr(record, "taskName", None),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            entry.update(_redact(extra_data))
        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger:
    """
    Thin wrapper so call sites pass context as keyword arguments:

        logger.info("Payment settled", job_id=job_id, tx_hash=tx_hash)

    ``None`` values are dropped; ``exc_info`` goes to the stdlib logger.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log_with_extra(self, level: int, message: str, **kwargs):
        exc_info = kwargs.pop("exc_info", None)
        extra_data = {k: v for k, v in kwargs.items() if v is not None}
        self.logger.log(level, message, exc_info=exc_info, extra={"extra_data": extra_data})

    def debug(self, message: str, **kwargs):
        self._log_with_extra(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log_with_extra(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log_with_extra(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log_with_extra(logging.ERROR, message, **kwargs)


def _attach(config: Dict[str, Any], handler: str, loggers: Iterable[str]) -> None:
    for name in loggers:
        config["loggers"][name]["handlers"].append(handler)
    config["root"]["handlers"].append(handler)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True
) -> None:
    """
    Configure the ``app`` logger tree plus the library loggers.

    Args:
        log_level: Level for application loggers and handlers
        log_file: Path of the rotating JSON log; parent directory is created
        enable_console: Whether to also log plain text to stdout
    """
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    loggers: Dict[str, Dict[str, Any]] = {
        "app": {"level": log_level, "handlers": [], "propagate": False},
    }
    for name, level in LIBRARY_LOGGERS.items():
        loggers[name] = {"level": level, "handlers": [], "propagate": False}

    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": JSONFormatter},
            "standard": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            }
        },
        "handlers": {},
        "loggers": loggers,
        "root": {"level": log_level, "handlers": []},
    }

    if enable_console:
        config["handlers"]["console"] = {
            "class": "logging.StreamHandler",
            "stream": sys.stdout,
            "formatter": "standard",
            "level": log_level
        }
        _attach(config, "console", loggers)

    if log_file:
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "formatter": "json",
            "level": log_level
        }
        _attach(config, "file", loggers)

    logging.config.dictConfig(config)


def get_logger(name: str) -> StructuredLogger:
    """Structured logger under the ``app`` tree (pass ``__name__``)."""
    return StructuredLogger(name if name.startswith("app.") else f"app.{name}")


def log_business_event(
    event_type: str,
    details: Dict[str, Any],
    order_id: Optional[str] = None,
    job_id: Optional[str] = None,
    request_id: Optional[str] = None
) -> None:
    """
    Audit record for a payment fact (status change, operator confirmation,
    QR issued, verification outcome). Written to the ``app.audit`` logger.
    """
    get_logger("audit").info(
        f"Business event: {event_type}",
        event_type=event_type,
        order_id=order_id,
        job_id=job_id,
        request_id=request_id,
        **details
    )


def log_performance(
    operation: str,
    duration_ms: float,
    additional_data: Optional[Dict[str, Any]] = None
) -> None:
    """Timing of a portal or chain operation (``fiat_generate_qr``, ``x402_settle``...)."""
    data = {"duration_ms": round(duration_ms, 2)}
    if additional_data:
        data.update(additional_data)
    get_logger("performance").info(f"Performance: {operation}", operation=operation, **data)
