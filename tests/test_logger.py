"""
Test suite for twapmarket logging setup

Covers:
  - Terminal sanitizing of log output
  - Format and date-format validation fallbacks
  - Root logger configuration (console / file handlers)
"""

import logging
import logging.handlers

import pytest
from rich.logging import RichHandler

from twapmarket.constants import LOG_DATE_FORMAT, LOG_FORMAT
from twapmarket.logger import (
    LogManager,
    TerminalSafeFormatter,
    TWAPLogHighlighter,
    configure_logging,
    get_logger,
)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestTerminalSafeFormatter:

    def test_strips_ansi_sequences(self):
        assert TerminalSafeFormatter.sanitize("\x1b[31mred\x1b[0m") == "red"

    def test_strips_control_chars_keeps_newline(self):
        assert TerminalSafeFormatter.sanitize("a\rb\x00c\nd\te") == "abc\nd\te"

    def test_empty(self):
        assert TerminalSafeFormatter.sanitize("") == ""

    def test_format_sanitizes_message(self):
        record = logging.LogRecord(
            name="twap", level=logging.INFO, pathname="", lineno=0,
            msg="owner %s", args=("\x1b[2Jmallory",), exc_info=None,
        )
        assert TerminalSafeFormatter("%(message)s").format(record) == "owner mallory"


class TestFormatValidation:

    def test_valid_format_kept(self):
        fmt = "%(levelname)s - %(name)s - %(message)s"
        assert LogManager.validate_log_format(fmt) == fmt

    def test_empty_format_uses_default(self):
        assert LogManager.validate_log_format("") == str(LOG_FORMAT.default())

    def test_malformed_format_uses_default(self, capsys):
        assert LogManager.validate_log_format("(levelname)s") == str(LOG_FORMAT.default())
        assert "Validation Error" in capsys.readouterr().err

    def test_valid_date_format(self):
        assert LogManager.validate_date_format("%Y-%m-%d %H:%M:%S") == "%Y-%m-%d %H:%M:%S"

    @pytest.mark.parametrize("date_format", ["yesterday", "%Y-%m-%d <b>", ""])
    def test_invalid_date_format_uses_default(self, date_format):
        assert LogManager.validate_date_format(date_format) == str(LOG_DATE_FORMAT.default())


class TestConfigure:

    def test_singleton(self):
        assert LogManager() is LogManager()

    def test_plain_console_handler(self, restore_root_logger):
        configure_logging(log_level="DEBUG", highlighting=False, file_output=False)
        root = restore_root_logger
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        handler = root.handlers[0]
        assert type(handler) is logging.StreamHandler
        assert isinstance(handler.formatter, TerminalSafeFormatter)

    def test_rich_console_handler(self, restore_root_logger):
        configure_logging(log_level="INFO", highlighting=True, file_output=False)
        handler = restore_root_logger.handlers[0]
        assert isinstance(handler, RichHandler)
        assert isinstance(handler.highlighter, TWAPLogHighlighter)

    def test_file_handler(self, restore_root_logger, tmp_path):
        log_file = tmp_path / "nested" / "twap.log"
        configure_logging(
            log_level="INFO", log_file=log_file, console_output=False, file_output=True,
        )
        handlers = restore_root_logger.handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.handlers.RotatingFileHandler)

        get_logger("twapmarket.test").info("Oracle tick=5 APPLIED")
        handlers[0].flush()
        assert "Oracle tick=5 APPLIED" in log_file.read_text(encoding="utf-8")

    def test_unknown_level_falls_back_to_info(self, restore_root_logger):
        configure_logging(log_level="CHATTY", console_output=False, file_output=False)
        assert restore_root_logger.level == logging.INFO
        assert restore_root_logger.handlers == []
