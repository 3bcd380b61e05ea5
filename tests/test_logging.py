import logging

from rich.logging import RichHandler

from trellis.retrieval.logging import configure_logging, get_logger


def test_get_logger():
    logger = get_logger()
    assert logger.name == "trellis.retrieval"
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0], RichHandler)
    assert logger.propagate is False


def test_get_logger_idempotent():
    logger1 = get_logger()
    logger2 = get_logger()
    assert logger1 is logger2
    assert len(logger2.handlers) == 1


def test_module_loggers_use_package_namespace():
    from trellis.retrieval.retrieval import fusion

    assert fusion.logger.name.startswith("trellis.retrieval.")


def test_configure_logging():
    logger = configure_logging()
    assert logger.name == "trellis.retrieval"
    assert logger.level == logging.INFO
    assert logger.propagate is False

    root = logging.getLogger()
    assert root.level == logging.ERROR
    assert len(root.handlers) == 0

    for name in ("httpx", "httpcore", "urllib3", "asyncio", "numba"):
        noisy = logging.getLogger(name)
        assert noisy.level == logging.ERROR
        assert noisy.propagate is False


def test_configure_logging_custom_level():
    logger = configure_logging(level=logging.DEBUG)
    assert logger.level == logging.DEBUG
    configure_logging()
