"""Logging setup: stdlib loggers rendered through structlog.

Modules log with `logging.getLogger(__name__)`; the recipe and step being
applied are carried as structlog context variables so every line emitted
while a recipe runs is tagged with it.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

import structlog

_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
]


def _renderer(json_output: bool) -> structlog.types.Processor:
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def configure_logging(
    level: str, json_output: bool | None = None, stream: TextIO | None = None
) -> None:
    """Configure logging with structlog.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR).
        json_output: Force JSON output. If None, JSON only when APP_ENV=prod.
        stream: Where log lines go, stderr by default.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if json_output is None:
        from rugpi_bakery.config import get_settings

        json_output = get_settings().app_env == "prod"

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_SHARED_PROCESSORS,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer(json_output),
        ],
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)


def bind_recipe(recipe: str, step: str | None = None) -> None:
    """Tag subsequent log lines with the recipe (and step) being applied."""
    structlog.contextvars.bind_contextvars(recipe=recipe)
    if step is None:
        structlog.contextvars.unbind_contextvars("step")
    else:
        structlog.contextvars.bind_contextvars(step=step)


def clear_recipe() -> None:
    structlog.contextvars.unbind_contextvars("recipe", "step")
