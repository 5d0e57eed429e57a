from __future__ import annotations

import json
import logging
import sys
from typing import Any, Dict

from loguru import logger
from opentelemetry import trace


# attributes every stdlib LogRecord carries; anything else came in via ``extra=``
_STANDARD_RECORD_FIELDS = frozenset(
    logging.LogRecord("template", logging.INFO, __file__, 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

# chatty third-party loggers kept at WARNING
_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "stripe")


class InterceptHandler(logging.Handler):
    """Forward uvicorn, SQLAlchemy and Stripe SDK records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        extra = {key: value for key, value in vars(record).items() if key not in _STANDARD_RECORD_FIELDS}
        text = record.getMessage().replace("{", "{{").replace("}", "}}")

        target = logger.bind(**extra) if extra else logger
        target.opt(depth=6, exception=record.exc_info).log(level, text)


def _current_trace_ids() -> Dict[str, str]:
    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return {}
    return {"trace_id": f"{context.trace_id:032x}", "span_id": f"{context.span_id:016x}"}


def _json_sink(service: Dict[str, str]):
    def write(message: "logger.Message") -> None:
        record = message.record
        payload: Dict[str, Any] = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "logger": record["name"],
            "message": record["message"],
            **service,
            **_current_trace_ids(),
            **record["extra"],
        }
        if record["exception"] is not None:
            payload["exception"] = repr(record["exception"].value)
        sys.stdout.write(json.dumps(payload, default=str) + "\n")

    return write


def configure_logging(*, service_name: str, environment: str, version: str) -> None:
    """Install the loguru sinks and route stdlib logging through them.

    Development logs are human readable with the bound kwargs appended;
    every other environment writes one JSON document per line to stdout
    carrying service metadata and the active trace ids.
    """

    logger.remove()
    if environment == "development":
        logger.add(
            sys.stderr,
            level="DEBUG",
            format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {name} | {message} | {extra}",
            backtrace=False,
            diagnose=False,
        )
    else:
        service = {"service": service_name, "environment": environment, "version": version}
        logger.add(_json_sink(service), level="INFO", backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
