"""structlog configuration for processes embedding the risk engine."""

from __future__ import annotations

import logging

import structlog

from risk_engine.config import get_settings


def configure_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    """Configure structlog processors and the minimum log level.

    Args:
        level: Log level name; defaults to ``RISK_LOG_LEVEL``.
        json_logs: Render JSON lines instead of the console format; defaults
            to ``RISK_LOG_JSON``.
    """
    settings = get_settings()
    level_name = (level or settings.LOG_LEVEL).upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level_name}")

    use_json = settings.LOG_JSON if json_logs is None else json_logs
    renderer = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
