"""Logging setup shared by the API process and the snapshot warmer."""

import logging

import structlog


def configure_logging(debug: bool = False) -> None:
    """Configure stdlib logging and structlog for the process.

    Args:
        debug: Log at INFO when True, WARNING otherwise
    """
    level = logging.INFO if debug else logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
