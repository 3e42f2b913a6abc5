"""Structlog configuration for proctl.

Library modules log through a module-level ``structlog.get_logger()`` and
never configure output themselves. Applications (the ``proctl`` CLI, or any
front end embedding the engine) call ``configure()`` once at start-up.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from proctl.config import Config


def _shared_processors() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
    ]


def configure(config: Config, verbose: bool = False) -> None:
    """Route structlog through stdlib logging on stderr.

    Output is JSON Lines when ``config.logging.json`` is set, otherwise the
    human-readable console renderer.

    Args:
        config: Application config
        verbose: Force DEBUG level regardless of config
    """
    level = logging.DEBUG if verbose else getattr(logging, config.logging.level.upper())

    renderer: structlog.types.Processor
    if config.logging.json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=_shared_processors(),
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

