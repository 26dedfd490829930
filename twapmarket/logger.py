"""
TWAP Market Logging System
==========================

Process-wide logging setup for twapmarket. Library modules log through the
standard `logging` module; this module configures the root logger once, with a
`rich` console handler (or a plain stream handler) and an optional rotating
log file.

Usage:
    >>> from twapmarket.logger import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Replay started")
"""

import logging
import logging.handlers
import re
import sys
import threading
import time
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.highlighter import RegexHighlighter
from rich.logging import RichHandler
from rich.theme import Theme

from .constants import (
    LOG_BACKUP_COUNT,
    LOG_CONSOLE_HIGHLIGHTING,
    LOG_DATE_FORMAT,
    LOG_FILE_OUTPUT,
    LOG_FORMAT,
    LOG_LEVEL,
    LOG_MAX_FILE_SIZE,
)


PROJECT_ROOT = Path(__file__).parent.parent
LOG_FILE_PATH = PROJECT_ROOT / "logs" / "twapmarket.log"


class LogManager:
    """
    Configures logging exactly once per process.

    Attributes:
        _instance (LogManager): The singleton instance.
        _lock (threading.Lock): Guards initialization and configuration.
    """

    _instance: Optional["LogManager"] = None
    _lock: threading.Lock = threading.Lock()

    def __new__(cls) -> "LogManager":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self._configured = False
        self._initialized = True

    @staticmethod
    def validate_log_format(log_format: str) -> str:
        """
        Check a logging format string by formatting a dummy record.

        Returns:
            str: *log_format*, or the default format if it is unusable.
        """
        if not log_format:
            return str(LOG_FORMAT.default())
        log_format = str(log_format)
        specifier = r"\([a-zA-Z_][a-zA-Z0-9_]*\)[a-zA-Z]"
        try:
            for match in re.finditer(specifier, log_format):
                if match.start() == 0 or log_format[match.start() - 1] != "%":
                    raise ValueError("Malformed format specifier.")

            record = logging.LogRecord(
                name="test", level=logging.INFO, pathname="", lineno=0,
                msg="test", args=(), exc_info=None,
            )
            output = logging.Formatter(fmt=log_format).format(record)
            if re.search(specifier, output):
                raise ValueError("Format specifiers not properly processed.")
        except (ValueError, KeyError, TypeError) as e:
            print(
                f"{time.strftime(str(LOG_DATE_FORMAT.default()))} - twapmarket.logger - "
                f"Validation Error: {e}. Using default.",
                file=sys.stderr,
            )
            return str(LOG_FORMAT.default())
        return log_format

    @staticmethod
    def validate_date_format(date_format: str) -> str:
        """Accept only strftime directives and plain separators."""
        if not date_format:
            return str(LOG_DATE_FORMAT.default())
        date_format = str(date_format)
        date_format_pattern = re.compile(
            r"^(?=.*%(?!%)(?:[EO])?(?:[-_0^#])*(?:[A-DF-HIM-NPR-VW-Za-hj-lm-npr-uw-z]))"
            r"(?:%%|%(?:[EO])?(?:[-_0^#])*(?:[A-DF-HIM-NPR-VW-Za-hj-lm-npr-uw-z])|[0-9 \t:\-\/\.,TZ+])+$"
        )
        if not date_format_pattern.match(date_format):
            print(
                f"{time.strftime(str(LOG_DATE_FORMAT.default()))} - twapmarket.logger - "
                f"Invalid date format. Using default.",
                file=sys.stderr,
            )
            return str(LOG_DATE_FORMAT.default())
        return date_format

    def configure(
        self,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        console_output: bool = True,
        file_output: Optional[bool] = None,
        highlighting: Optional[bool] = None,
        force: bool = False,
    ) -> None:
        """
        Configure the root logger.

        Args:
            log_level: Level name. Defaults to LOG_LEVEL from the environment.
            log_file: Log file path. Defaults to `logs/twapmarket.log`.
            console_output: Attach a console handler.
            file_output: Attach a rotating file handler. Defaults to LOG_FILE_OUTPUT.
            highlighting: Use rich highlighting. Defaults to LOG_CONSOLE_HIGHLIGHTING.
            force: Reconfigure even if already configured.
        """
        with self._lock:
            if self._configured and not force:
                return

            level_str = log_level or LOG_LEVEL
            numeric_level = getattr(logging, str(level_str).upper(), logging.INFO)

            root_logger = logging.getLogger()
            root_logger.setLevel(numeric_level)
            root_logger.handlers.clear()

            log_format = self.validate_log_format(LOG_FORMAT)
            date_format = self.validate_date_format(LOG_DATE_FORMAT)

            # UTC everywhere
            formatter = TerminalSafeFormatter(fmt=log_format, datefmt=date_format + " UTC")
            formatter.converter = time.gmtime

            use_highlighting = LOG_CONSOLE_HIGHLIGHTING if highlighting is None else highlighting
            if console_output:
                if use_highlighting:
                    theme = Theme(
                        {
                            "twap.address":         "cyan",
                            "twap.level_critical":  "bold red reverse",
                            "twap.level_debug":     "bold dim",
                            "twap.level_error":     "bold red",
                            "twap.level_info":      "bold green",
                            "twap.level_warning":   "bold yellow",
                            "twap.logger_name":     "magenta",
                            "twap.outcome_applied": "bold green",
                            "twap.outcome_rejected": "bold red",
                            "twap.outcome_skipped": "bold yellow",
                            "twap.tick":            "bold cyan",
                            "twap.timestamp":       "bold cyan",
                        }
                    )
                    rich_handler = RichHandler(
                        console=Console(theme=theme, highlight=False, stderr=True),
                        highlighter=TWAPLogHighlighter(),
                        keywords=[],
                        rich_tracebacks=True,
                        omit_repeated_times=False,
                        show_path=False,
                        show_time=False,
                        show_level=False,
                        markup=False,
                    )
                    rich_handler.setLevel(numeric_level)
                    rich_handler.setFormatter(formatter)
                    root_logger.addHandler(rich_handler)
                else:
                    console_handler = logging.StreamHandler(sys.stderr)
                    console_handler.setLevel(numeric_level)
                    console_handler.setFormatter(formatter)
                    root_logger.addHandler(console_handler)

            if LOG_FILE_OUTPUT if file_output is None else file_output:
                log_file_path = log_file or LOG_FILE_PATH
                log_file_path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.handlers.RotatingFileHandler(
                    filename=str(log_file_path),
                    maxBytes=LOG_MAX_FILE_SIZE,
                    backupCount=LOG_BACKUP_COUNT,
                    encoding="utf-8",
                )
                file_handler.setLevel(numeric_level)
                file_handler.setFormatter(formatter)
                root_logger.addHandler(file_handler)

            self._configured = True

    def get_logger(self, name: str) -> logging.Logger:
        if not self._configured:
            self.configure()
        return logging.getLogger(name)

    @property
    def is_configured(self) -> bool:
        return self._configured


class TerminalSafeFormatter(logging.Formatter):
    """
    Formatter that strips ANSI escape sequences and control characters, so
    market ids and owner names cannot rewrite the terminal.
    """

    _ansi_escape_re = re.compile(
        r"\x1b\[[0-?]*[ -/]*[@-~]"
        r"|\x1b[@-Z\\-_]"
    )
    # 0x00-0x1F except tab and newline
    _control_chars_re = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
    _carriage_return_re = re.compile(r"\r")

    @classmethod
    def sanitize(cls, text: str) -> str:
        if not text:
            return text
        text = cls._ansi_escape_re.sub("", text)
        text = cls._carriage_return_re.sub("", text)
        text = cls._control_chars_re.sub("", text)
        return text

    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


class TWAPLogHighlighter(RegexHighlighter):
    """Colours ticks, oracle outcomes, TWAP addresses and log levels."""

    base_style = "twap."
    highlights = [
        r"(?P<address>\btwap[0-9a-f]{8,}\b)",
        r"(?P<level_critical>\bCRITICAL\b)",
        r"(?P<level_debug>\bDEBUG\b)",
        r"(?P<level_error>\bERROR\b)",
        r"(?P<level_info>\bINFO\b)",
        r"(?P<level_warning>\bWARNING\b)",
        r"\-\s+\w+\s+-\s+(?P<logger_name>[\w.]+)(?=\s-\s)",
        r"(?P<outcome_applied>\bAPPLIED\b|\bapplied\b)",
        r"(?P<outcome_rejected>\bREJECTED\b|\bspread too wide\b)",
        r"(?P<outcome_skipped>\bone-sided book\b|\bstale_tick\b)",
        r"(?P<tick>\btick=\d+)",
        r"(?P<timestamp>^(.*?)UTC)",
    ]


_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """Public accessor; configures logging on first use."""
    return _manager.get_logger(name)


def configure_logging(**kwargs) -> None:
    """Reconfigure logging (used by the CLI to apply config file settings)."""
    _manager.configure(force=True, **kwargs)
