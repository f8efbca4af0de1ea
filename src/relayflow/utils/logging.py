from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, TextIO, cast

import structlog

if TYPE_CHECKING:
    from relayflow.core.config import EngineConfig


def configure_logging(
    level: str = "INFO", json: bool = True, stream: TextIO | None = None
) -> None:
    """Route relayflow's structlog output through stdlib logging.

    Args:
        level: Logging level name, e.g. "DEBUG" or "WARNING".
        json: Render JSON lines when True, coloured console output otherwise.
        stream: Destination stream. Defaults to stdout.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    stream = stream or sys.stdout

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)


def configure_from_config(config: EngineConfig, json: bool = True) -> None:
    """Apply :attr:`EngineConfig.log_level`."""
    configure_logging(config.log_level, json=json)


def bind_workflow(workflow_id: str) -> None:
    """Attach *workflow_id* to every log line emitted from the current context."""
    structlog.contextvars.bind_contextvars(workflow_id=workflow_id)


def unbind_workflow() -> None:
    structlog.contextvars.unbind_contextvars("workflow_id")


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger named *name*."""
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))
