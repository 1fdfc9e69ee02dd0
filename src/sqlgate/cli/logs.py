from __future__ import annotations

import asyncio
import logging

from rich.logging import RichHandler


def _is_shutdown_noise(exc: BaseException) -> bool:
    if isinstance(exc, asyncio.CancelledError | KeyboardInterrupt | GeneratorExit):
        return True
    if isinstance(exc, BaseExceptionGroup):
        return all(_is_shutdown_noise(sub_exc) for sub_exc in exc.exceptions)
    return False


class NoisyShutdownFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if record.exc_info:
            _, exc, _ = record.exc_info
            if exc is not None and _is_shutdown_noise(exc):
                return False
        return True


def configure_logging(level: int = logging.INFO) -> RichHandler:
    """Route the root logger (and uvicorn's) through a Rich handler."""
    # rich_tracebacks=False keeps Ctrl-C shutdown quiet
    rich_handler = RichHandler(rich_tracebacks=False, markup=False, show_path=False)
    rich_handler.addFilter(NoisyShutdownFilter())
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[rich_handler],
        force=True,
    )

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(logger_name)
        logger.handlers.clear()
        logger.propagate = True

    return rich_handler
