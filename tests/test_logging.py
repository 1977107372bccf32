"""Tests for logging setup"""
import logging
from logging.handlers import RotatingFileHandler

from pocket_ipam.utils.logging import ROOT_LOGGER, configure_logging, get_logger


def test_get_logger_uses_app_namespace():
    assert get_logger("pocket_ipam.core.storage").name == "pocket-ipam.core.storage"
    assert get_logger("tests").name == "pocket-ipam.tests"


def test_file_handler_when_data_dir_exists(tmp_path):
    log_file = tmp_path / "pocket_ipam.log"
    logger = configure_logging("info", log_file)

    file_handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
    assert len(file_handlers) == 1

    get_logger("tests").info("added subnet %s", "ABC123")
    file_handlers[0].flush()
    content = log_file.read_text(encoding="utf-8")
    assert "| INFO     | pocket-ipam.tests | added subnet ABC123" in content


def test_no_file_handler_before_init(tmp_path):
    logger = configure_logging("WARNING", tmp_path / "missing" / "pocket_ipam.log")
    assert not any(isinstance(h, RotatingFileHandler) for h in logger.handlers)
    assert not (tmp_path / "missing").exists()


def test_unknown_level_falls_back_to_warning(tmp_path):
    logger = configure_logging("chatty", None)
    [console] = logger.handlers
    assert console.level == logging.WARNING
    assert logging.getLogger(ROOT_LOGGER) is logger


def test_reconfiguring_replaces_handlers(tmp_path):
    configure_logging("DEBUG", tmp_path / "a.log")
    logger = configure_logging("DEBUG", tmp_path / "b.log")
    assert len(logger.handlers) == 2
