"""
Package logger setup: level names, handlers and the JAX logger.
"""
import logging

import pytest

from jaxdive.logging_config import PACKAGE_LOGGER, resolve_level, setup_logging


@pytest.fixture
def restore_loggers():
    """Put the package and JAX loggers back the way the test found them."""
    names = (PACKAGE_LOGGER, "jax", "jax._src")
    saved = {}
    for name in names:
        logger = logging.getLogger(name)
        saved[name] = (logger.level, logger.propagate, list(logger.handlers))
    yield
    for name, (level, propagate, handlers) in saved.items():
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            if handler not in handlers:
                logger.removeHandler(handler)
                handler.close()
        for handler in handlers:
            if handler not in logger.handlers:
                logger.addHandler(handler)
        logger.setLevel(level)
        logger.propagate = propagate


class TestResolveLevel:
    @pytest.mark.parametrize("name, expected", [
        ("debug", logging.DEBUG),
        ("INFO", logging.INFO),
        (" Warning ", logging.WARNING),
        (logging.ERROR, logging.ERROR),
    ])
    def test_names_and_numbers(self, name, expected):
        assert resolve_level(name) == expected

    def test_unknown_name(self):
        with pytest.raises(ValueError):
            resolve_level("loud")


@pytest.mark.usefixtures("restore_loggers")
class TestSetupLogging:
    def test_console_only(self):
        logger = setup_logging("warning")
        assert logger.name == PACKAGE_LOGGER
        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1
        assert not logger.propagate

    def test_repeat_call_replaces_handlers(self, tmp_path):
        setup_logging(logging.INFO, str(tmp_path / "first.log"))
        logger = setup_logging(logging.INFO)
        assert len(logger.handlers) == 1

    def test_file_receives_session_messages(self, tmp_path):
        path = tmp_path / "jump.log"
        logger = setup_logging("info", str(path))
        logging.getLogger("jaxdive.session").info("Canopy deployed at %d m", 850)
        for handler in logger.handlers:
            handler.flush()
        text = path.read_text(encoding="utf-8")
        assert "INFO" in text
        assert "jaxdive.session: Canopy deployed at 850 m" in text

    def test_jax_held_at_warning_unless_debugging(self):
        setup_logging("info")
        assert logging.getLogger("jax").level == logging.WARNING
        setup_logging("debug")
        assert logging.getLogger("jax").level == logging.DEBUG
