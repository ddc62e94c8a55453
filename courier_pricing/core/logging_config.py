# courier_pricing/core/logging_config.py
import logging
import sys
from typing import Optional

import structlog

from .settings import Settings, settings as default_settings


def setup_logging(cfg: Optional[Settings] = None) -> None:
    """
    Configure structlog + stdlib logging.
    JSON lines to stdout by default; PRICING_LOG_JSON=false switches to the console renderer.
    """
    cfg = cfg or default_settings
    level = logging.getLevelName(cfg.PRICING_LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if cfg.PRICING_LOG_JSON
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger("courier_pricing")
