import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "trellis.retrieval"

NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "asyncio", "numba", "lancedb")


def get_logger() -> logging.Logger:
    """Return the package logger, attaching a rich handler on first use."""
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        handler = RichHandler(
            console=Console(stderr=True),
            rich_tracebacks=True,
            show_path=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        logger.propagate = False
    return logger


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """Configure logging for applications embedding the engine.

    Silences third-party loggers that are chatty at INFO level and strips
    handlers from the root logger so records are emitted exactly once.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.ERROR)

    for name in NOISY_LOGGERS:
        noisy = logging.getLogger(name)
        noisy.setLevel(logging.ERROR)
        noisy.propagate = False

    logger = get_logger()
    logger.setLevel(level)
    return logger
