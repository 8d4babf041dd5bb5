"""Logging setup shared by the engine, the node registry and the CLIs.

Usage:
    from strategyforge.logging_config import bind, get_logger
    logger = get_logger(__name__)
    logger.warning("Node evaluation failed", extra={"node_id": "rsi-1"})

    scenario_log = bind(logger, scenario="sanity-check-001")
    scenario_log.info("PASS")  # carries scenario=... on every record

Records may carry simulation context (node id, subtype, candle index or time,
scenario id) as ``extra`` fields. The JSON formatter emits them as keys and
the readable formatter appends them after the message.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from collections.abc import MutableMapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

NAMESPACE = "strategyforge"

CONTEXT_FIELDS = ("node_id", "subtype", "candle_index", "candle_time", "scenario")


def _context(record: logging.LogRecord) -> dict[str, Any]:
    values = {}
    for key in CONTEXT_FIELDS:
        val = getattr(record, key, None)
        if val is not None:
            values[key] = val
    return values


class _JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(_context(record))
        return json.dumps(entry, ensure_ascii=False, default=str)


class _ReadableFormatter(logging.Formatter):
    FMT = "%(asctime)s [%(levelname)-5s] %(name)s: %(message)s"
    DATE_FMT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self.FMT, datefmt=self.DATE_FMT)

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        context = _context(record)
        if not context:
            return text
        suffix = " ".join(f"{key}={value}" for key, value in context.items())
        # keep the traceback (if any) below the context
        head, sep, tail = text.partition("\n")
        return f"{head} | {suffix}{sep}{tail}"


class ContextAdapter(logging.LoggerAdapter):
    """Logger adapter that stamps bound context onto every record.

    Call-site ``extra`` wins over bound values with the same key.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


def bind(logger: logging.Logger | str, **context: Any) -> ContextAdapter:
    if isinstance(logger, str):
        logger = get_logger(logger)
    return ContextAdapter(logger, context)


_CONFIGURED = False


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
    log_file: Path | str | None = None,
    force: bool = False,
) -> None:
    """Attach handlers to the ``strategyforge`` namespace logger.

    Args:
        level: Level name. Falls back to ``SFORGE_LOG_LEVEL``, then INFO.
        json_output: JSON lines on stdout. Falls back to ``SFORGE_LOG_JSON=1``,
            then to JSON whenever stdout is not a TTY.
        log_file: Also write readable lines to this file.
        force: Replace an earlier configuration. Modules request loggers at
            import time, so CLIs pass this to make their flags take effect.
    """
    global _CONFIGURED  # noqa: PLW0603
    if force:
        reset_logging()
    if _CONFIGURED:
        return

    if level is None:
        level = os.getenv("SFORGE_LOG_LEVEL", "INFO")
    if json_output is None:
        env_json = os.getenv("SFORGE_LOG_JSON", "").strip()
        json_output = env_json == "1" if env_json else not sys.stdout.isatty()

    namespace_logger = logging.getLogger(NAMESPACE)
    namespace_logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    if not namespace_logger.handlers:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(_JSONFormatter() if json_output else _ReadableFormatter())
        namespace_logger.addHandler(console)
    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(_ReadableFormatter())
        namespace_logger.addHandler(file_handler)

    # Handlers live on the namespace logger only
    namespace_logger.propagate = False
    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name``; configures the namespace with defaults on first use."""
    configure_logging()
    return logging.getLogger(name)


def reset_logging() -> None:
    """Close and drop the namespace handlers (tests and ``force=True``)."""
    global _CONFIGURED  # noqa: PLW0603
    namespace_logger = logging.getLogger(NAMESPACE)
    for handler in list(namespace_logger.handlers):
        namespace_logger.removeHandler(handler)
        if isinstance(handler, logging.FileHandler):
            handler.close()
    _CONFIGURED = False
