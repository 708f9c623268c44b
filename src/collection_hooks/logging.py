"""Logging configuration for collection hooks."""

import logging
import sys

from loguru import logger


class InterceptHandler(logging.Handler):
    """Intercept standard logging messages toward loguru."""

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where the logged message originated
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(log_level: str | None = None, *, intercept_stdlib: bool = True) -> None:
    """Configure loguru for applications embedding hooked collections.

    The library itself only emits through ``loguru.logger``; this helper is for
    callers that want a single sink and a consistent level.

    Args:
        log_level: Log level to use. Defaults to ``HookSettings.log_level``.
        intercept_stdlib: Also route standard ``logging`` records (e.g. from the
            store driver) through loguru.
    """
    if log_level is None:
        from .settings import get_settings

        log_level = get_settings().log_level
    log_level = log_level.upper()

    logger.remove()
    logger.add(sys.stderr, level=log_level, colorize=True)

    logger.debug(f"Log level set to: {log_level}")

    if intercept_stdlib:
        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
        for noisy_logger in ("asyncio", "pymongo", "motor"):
            logging.getLogger(noisy_logger).setLevel(log_level)


__all__ = ["InterceptHandler", "setup_logging"]
