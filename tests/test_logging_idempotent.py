import logging
import os
import sys

from thriphti.utils import configure_logging


def test_configure_logging_idempotent(tmp_path, monkeypatch):
    log_file = tmp_path / "app.log"
    monkeypatch.setenv("THRIPHTI_LOG_LEVEL", "INFO")
    monkeypatch.setenv("THRIPHTI_LOG_FILE", str(log_file))
    monkeypatch.setenv("THRIPHTI_LOG_LEVELS", "thriphti.relevance=DEBUG")

    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    try:
        root.handlers = []
        configure_logging("thriphti.admin")
        configure_logging("thriphti.admin")

        stdout_handlers = [
            handler
            for handler in root.handlers
            if isinstance(handler, logging.StreamHandler) and handler.stream is sys.stdout
        ]
        file_handlers = [
            handler for handler in root.handlers if isinstance(handler, logging.FileHandler)
        ]

        assert len(stdout_handlers) == 1
        assert len(file_handlers) == 1
        assert os.path.abspath(file_handlers[0].baseFilename) == os.path.abspath(
            str(log_file)
        )
        assert logging.getLogger("thriphti.relevance").level == logging.DEBUG
    finally:
        for handler in root.handlers:
            if handler not in original_handlers:
                handler.close()
        root.handlers = original_handlers
        root.setLevel(original_level)
        logging.getLogger("thriphti.relevance").setLevel(logging.NOTSET)
