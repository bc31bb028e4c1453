import logging

import pytest

from storage_node import logging_config


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    level = root.level
    for handler in list(root.handlers):
        root.removeHandler(handler)

    yield root

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level)


def test_console_only_without_service_name(root_logger):
    logging_config.setup_logging(debug=True)

    assert root_logger.level == logging.DEBUG
    assert len(root_logger.handlers) == 1
    assert root_logger.handlers[0].level == logging.DEBUG


def test_file_handler_writes_service_log(root_logger, tmp_path, monkeypatch):
    monkeypatch.delenv("LOG_APPEND", raising=False)
    logging_config.setup_logging("storage-node", tmp_path / "logs")

    logging.getLogger("storage_node.test").info("hello from the node")
    for handler in root_logger.handlers:
        handler.flush()

    assert root_logger.level == logging.INFO
    assert "hello from the node" in (tmp_path / "logs" / "storage-node.log").read_text()
    assert logging.getLogger("aiohttp").level == logging.WARNING


def test_log_append_keeps_previous_content(root_logger, tmp_path, monkeypatch):
    log_path = tmp_path / "storage-node.log"
    log_path.write_text("previous run\n")
    monkeypatch.setenv("LOG_APPEND", "1")

    logging_config.setup_logging("storage-node", tmp_path)

    assert log_path.read_text().startswith("previous run")


def test_reconfiguring_replaces_handlers(root_logger, tmp_path):
    logging_config.setup_logging("storage-node", tmp_path)
    logging_config.setup_logging("storage-node", tmp_path)

    assert len(root_logger.handlers) == 2
