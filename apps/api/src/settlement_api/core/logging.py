from __future__ import annotations

import json
import logging
import sys
from logging import LogRecord
from typing import Any, Dict, Mapping

from loguru import logger
from opentelemetry import trace


# Short codes and QR payloads settle a cart for whoever presents them.
_MASKED_KEYS = {"short_code"}
_REDACTED_KEYS = {"qr_payload", "qr_data", "secret_key", "service_api_key", "api_key"}
REDACTION_TEXT = "[REDACTED]"

_STDLIB_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


def mask_code(value: object) -> str:
    """Keep the first two characters of a short code."""

    text = str(value or "")
    if len(text) <= 2:
        return "*" * len(text)
    return text[:2] + "*" * (len(text) - 2)


def redact_context(extra: Mapping[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key, value in extra.items():
        if key in _REDACTED_KEYS:
            cleaned[key] = REDACTION_TEXT
        elif key in _MASKED_KEYS and value is not None:
            cleaned[key] = mask_code(value)
        else:
            cleaned[key] = value
    return cleaned


class InterceptHandler(logging.Handler):
    """Route stdlib logging records (uvicorn, SQLAlchemy) into Loguru."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        extra = {key: value for key, value in record.__dict__.items() if key not in _STDLIB_RECORD_ATTRS}
        message = record.getMessage().replace("{", "{{").replace("}", "}}")
        target = logger.bind(**extra) if extra else logger
        target.opt(depth=6, exception=record.exc_info).log(level, message)


def _json_sink(metadata: Dict[str, str]):
    def _write(message: "logger.Message") -> None:
        record = message.record
        payload: Dict[str, Any] = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "message": record["message"],
            "logger": record["name"],
            **metadata,
        }

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            payload["trace_id"] = f"{span_context.trace_id:032x}"
            payload["span_id"] = f"{span_context.span_id:016x}"

        payload.update(redact_context(record["extra"]))
        if record["exception"] is not None:
            payload["exception"] = repr(record["exception"].value)

        sys.stdout.write(json.dumps(payload, default=str) + "\n")

    return _write


def _redacting_patcher(record: Dict[str, Any]) -> None:
    record["extra"].update(redact_context(record["extra"]))


def configure_logging(
    *,
    service_name: str,
    environment: str,
    version: str,
    level: str = "INFO",
    json_output: bool = True,
) -> None:
    """Install the Loguru sink and bridge stdlib logging into it.

    JSON output carries service metadata and the active trace/span ids; the
    plain-text sink is meant for local development.
    """

    logger.remove()
    logger.configure(patcher=_redacting_patcher)
    if json_output:
        sink = _json_sink({"service": service_name, "environment": environment, "version": version})
        logger.add(sink, level=level.upper(), backtrace=False, diagnose=False)
    else:
        logger.add(sys.stderr, level=level.upper(), backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for noisy in ("uvicorn.access", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


__all__ = ["InterceptHandler", "configure_logging", "mask_code", "redact_context"]
