"""Logging configuration and utilities."""
from __future__ import annotations

import logging
import os
import re

# CPF: 000.000.000-00 / 00000000000, CNPJ: 00.000.000/0000-00 / 00000000000000
_CNPJ_RE = re.compile(r"\b\d{2}\.?\d{3}\.?\d{3}/?\d{4}-?\d{2}\b")
_CPF_RE = re.compile(r"\b\d{3}\.?\d{3}\.?\d{3}-?\d{2}\b")


class _LoggingState:
    """
    Module-level logging state container.
    """

    configured: bool = False


_state = _LoggingState()


def mask_document_numbers(text: str) -> str:
    """Replace CPF/CNPJ numbers with tags."""
    text = _CNPJ_RE.sub("[CNPJ]", text)
    return _CPF_RE.sub("[CPF]", text)


class DocumentNumberRedactionFilter(logging.Filter):
    """
    Masks taxpayer numbers (CPF/CNPJ) in log messages.

    Recognition results are logged while debugging and routinely carry
    them. If masking fails the record is emitted unchanged.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
            masked = mask_document_numbers(str(msg))
            if masked != msg:
                record.msg = masked
                record.args = ()
        except (TypeError, ValueError):
            pass
        return True

    def __repr__(self) -> str:
        return "DocumentNumberRedactionFilter()"


class ColorFormatter(logging.Formatter):
    """
    Adds colours to level names for terminal output.
    """

    RESET = "\033[0m"
    COLORS = {
        "DEBUG": "\033[36m",  # cyan
        "INFO": "\033[32m",  # green
        "WARNING": "\033[33m",  # yellow
        "ERROR": "\033[31m",  # red
        "CRITICAL": "\033[35m",  # magenta
    }

    def format(self, record: logging.LogRecord) -> str:
        original_levelname = record.levelname
        color = self.COLORS.get(original_levelname, "")
        if color:
            record.levelname = f"{color}{original_levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original_levelname


def setup_logging(default_level: int = logging.INFO) -> None:
    """
    Configures the single root logger for the whole system.
    Called once; every other logger (uvicorn included) shares its
    format and handlers.
    """
    root_logger = logging.getLogger()
    # pytest may strip handlers between tests
    if _state.configured and root_logger.handlers:
        return

    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, default_level)
    if not isinstance(level, int):
        level = default_level

    root_logger.setLevel(level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.addFilter(DocumentNumberRedactionFilter())
    formatter = ColorFormatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _state.configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    setup_logging()
    return logging.getLogger(name)
