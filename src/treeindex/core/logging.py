"""structlog setup for treeindex.

Every event goes through the stdlib root logger, so each configured output
(stderr, stdout or a file) gets its own level and renderer. Events logged
while an operation id is set carry it as ``operation_id``; the CLI sets one
per command run.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import structlog

if TYPE_CHECKING:
    from treeindex.config.models import LoggingConfig, LogOutputConfig

_operation_id: ContextVar[str | None] = ContextVar("operation_id", default=None)


def get_operation_id() -> str | None:
    return _operation_id.get()


def set_operation_id(operation_id: str | None = None) -> str:
    """Set the correlation id for the current context, generating one if needed."""
    oid = operation_id or uuid4().hex[:12]
    _operation_id.set(oid)
    return oid


def clear_operation_id() -> None:
    _operation_id.set(None)


def _add_operation_id(_logger: Any, _method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    if oid := get_operation_id():
        event_dict["operation_id"] = oid
    return event_dict


_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", key="timestamp"),
    _add_operation_id,
]


def configure_logging(
    *,
    config: LoggingConfig | None = None,
    json_format: bool = False,
    level: str = "INFO",
) -> None:
    """Route structlog through stdlib handlers, one per configured output.

    ``config`` wins over ``json_format``/``level``, which only describe a
    single stderr output.
    """
    from treeindex.config.models import LoggingConfig, LogOutputConfig

    if config is None:
        config = LoggingConfig(
            level=level.upper(),  # type: ignore[arg-type]
            outputs=[LogOutputConfig(format="json" if json_format else "console")],
        )
    root_level = logging.getLevelNamesMapping()[config.level]

    structlog.configure(
        processors=[*_SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Reconfiguring (tests, the CLI's -v) must take effect on existing loggers
        cache_logger_on_first_use=False,
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(root_level)
    # SQL echo is far too chatty at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    for output in config.outputs:
        handler = _handler_for(output)
        handler.setLevel(output.level or config.level)
        root_logger.addHandler(handler)


def _handler_for(output: LogOutputConfig) -> logging.Handler:
    handler: logging.Handler
    if output.destination in ("stderr", "stdout"):
        stream = sys.stderr if output.destination == "stderr" else sys.stdout
        handler = logging.StreamHandler(stream)
        colors = stream.isatty()
    else:
        path = Path(output.destination)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, mode="a")
        colors = False

    renderer: structlog.types.Processor
    if output.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=colors, pad_event_to=0, pad_level=False)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=_SHARED_PROCESSORS))
    return handler
