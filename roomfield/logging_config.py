"""
Console and file logging for the field engine.

The geometry core logs under ``mesh3d`` (BVH builds, classification
summaries) and the engine under ``roomfield`` (pool lifecycle, job
failures, dropped stale results).  ``setup_logging`` gives both package
loggers one shared set of handlers.  Worker processes of a process pool
start with logging unconfigured; only the caller's side is set up here.
"""
import logging
import sys
from typing import Optional

LOGGER_NAMESPACES = ("roomfield", "mesh3d")


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> None:
    """
    Attach stdout (and optionally file) handlers to the engine loggers.

    Safe to call again: earlier handlers are closed and replaced.

    Args:
        level: Logging level for both package loggers and their handlers.
        log_file: Optional path; the file is truncated on each call.
    """
    # HH:MM:SS - logger name - level - message
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode='w', encoding='utf-8'))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    for name in LOGGER_NAMESPACES:
        logger = logging.getLogger(name)
        logger.setLevel(level)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        for handler in handlers:
            logger.addHandler(handler)

    logging.getLogger("roomfield").info("Logging initialized.")
