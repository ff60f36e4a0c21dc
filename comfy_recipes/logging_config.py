"""
Comfy Recipes - Build Logging
=============================

Every module logs under the ``comfy_recipes`` namespace. A build binds its
build id (and the recipe it is assembling) in context variables, which the
handler filter stamps onto every record, so stage, resolver and validation
messages emitted during that build can be grouped afterwards. Builds running
in other threads keep their own ids.

Output is plain text by default; ``COMFY_RECIPES_LOGGING__JSON_OUTPUT=true``
switches to one JSON object per line, carrying any ``extra=`` fields.

Usage:
    from comfy_recipes.logging_config import LogContext, get_logger, log_timing

    logger = get_logger(__name__)

    with LogContext("b1f0c2", recipe_id="sd_txt2img"):
        with log_timing(logger, "build sd_txt2img", recipe_id="sd_txt2img"):
            ...
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import get_settings

__all__ = [
    "ROOT_LOGGER_NAME",
    "StructuredFormatter",
    "BuildContextFilter",
    "configure_logging",
    "get_logger",
    "set_log_level",
    "set_build_id",
    "clear_build_id",
    "current_build",
    "LogContext",
    "log_timing",
]

ROOT_LOGGER_NAME = "comfy_recipes"

# Attributes every LogRecord carries; anything else on a record came from extra=
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

_NO_BUILD = "-"


class StructuredFormatter(logging.Formatter):
    """Text formatter that can also emit one JSON object per record."""

    def __init__(
        self, fmt: str | None = None, datefmt: str | None = None, json_output: bool = False
    ):
        super().__init__(fmt, datefmt)
        self.json_output = json_output

    def format(self, record: logging.LogRecord) -> str:
        if not self.json_output:
            return super().format(record)

        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_extra_fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class BuildContextFilter(logging.Filter):
    """
    Stamps ``component``, ``build_id`` and ``recipe_id`` onto each record.

    The ids come from context variables, so each thread or task sees only
    the build it is running. Records logged outside a build get ``-``.
    """

    def __init__(self, component: str = ROOT_LOGGER_NAME):
        super().__init__()
        self.component = component

    def filter(self, record: logging.LogRecord) -> bool:
        build_id, recipe_id = current_build()
        record.component = self.component
        record.build_id = build_id or _NO_BUILD
        # An explicit extra={"recipe_id": ...} wins over the bound one
        if getattr(record, "recipe_id", None) is None:
            record.recipe_id = recipe_id or _NO_BUILD
        return True


_build_id: ContextVar[str | None] = ContextVar("comfy_recipes_build_id", default=None)
_recipe_id: ContextVar[str | None] = ContextVar("comfy_recipes_recipe_id", default=None)

_context_filter = BuildContextFilter()
_configured = False


def configure_logging(force: bool = False):
    """
    Attach the console (and optional file) handler to the package logger.

    Runs once per process unless ``force`` is set, which re-reads settings.
    """
    global _configured
    if _configured and not force:
        return

    config = get_settings().logging
    formatter = StructuredFormatter(
        fmt=config.format, datefmt=config.date_format, json_output=config.json_output
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.file:
        path = Path(config.file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    package_logger.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(_context_filter)
        package_logger.addHandler(handler)
    package_logger.setLevel(config.level)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name``, placed under the ``comfy_recipes`` namespace."""
    configure_logging()
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def set_log_level(level: str):
    """Change the package log level at runtime (e.g. from ``--log-level``)."""
    configure_logging()
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(level.upper())


def current_build() -> tuple[str | None, str | None]:
    """The (build id, recipe id) bound in the current context."""
    return _build_id.get(), _recipe_id.get()


def set_build_id(build_id: str, recipe_id: str | None = None):
    _build_id.set(build_id)
    _recipe_id.set(recipe_id)


def clear_build_id():
    _build_id.set(None)
    _recipe_id.set(None)


class LogContext:
    """
    Binds a build id (and optionally a recipe id) for the duration of a block.

    Nested contexts restore whatever was bound before them on exit. The
    binding is per thread and per asyncio task.
    """

    def __init__(self, build_id: str, recipe_id: str | None = None):
        self.build_id = build_id
        self.recipe_id = recipe_id
        self._tokens = None

    def __enter__(self):
        configure_logging()
        self._tokens = (_build_id.set(self.build_id), _recipe_id.set(self.recipe_id))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        build_token, recipe_token = self._tokens
        _recipe_id.reset(recipe_token)
        _build_id.reset(build_token)
        self._tokens = None
        return False


@contextmanager
def log_timing(logger: logging.Logger, operation: str, **extra):
    """
    Log how long the block took.

    Success is logged at INFO as ``"<operation> completed (N.Nms)"``. If the
    block raises, ``"<operation> failed (N.Nms)"`` is logged at WARNING with
    the exception type, and the exception propagates.
    """
    start = time.perf_counter()
    failure: BaseException | None = None
    try:
        yield
    except BaseException as exc:
        failure = exc
        raise
    finally:
        elapsed = (time.perf_counter() - start) * 1000
        fields = {"operation": operation, "duration_ms": round(elapsed, 3), **extra}
        if failure is None:
            logger.info(f"{operation} completed ({elapsed:.1f}ms)", extra=fields)
        else:
            fields["error_type"] = type(failure).__name__
            logger.warning(f"{operation} failed ({elapsed:.1f}ms)", extra=fields)
