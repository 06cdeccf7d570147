"""structlog setup for the trivy-gate CLI.

Library code only calls structlog.get_logger(); the CLI calls
configure_logging() once so that the DEBUG flag controls verbosity.
"""

import logging
import sys

import structlog


def _stderr_logger(*args) -> structlog.PrintLogger:
    # Looked up per logger so a swapped sys.stderr (CliRunner, pytest) is honored
    return structlog.PrintLogger(sys.stderr)


def configure_logging(debug: bool = False) -> None:
    """Configure structlog to render to stderr.

    Args:
        debug: Emit DEBUG events when True, otherwise WARNING and above
    """
    level = logging.DEBUG if debug else logging.WARNING
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )
