from __future__ import annotations

from copy import copy, deepcopy
from typing import Any
from urllib.parse import unquote, unquote_plus, urlsplit

from uvicorn.config import LOGGING_CONFIG
from uvicorn.logging import AccessFormatter as UvicornAccessFormatter

_DEBUG_LOG = False


def set_debug_logging(enabled: bool) -> None:
    global _DEBUG_LOG
    _DEBUG_LOG = enabled


def debug_log(message: str) -> None:
    if _DEBUG_LOG:
        print(f"[mojikae debug] {message}")


def readable_request_path(full_path: str) -> str:
    """
    Decode a request target for display, so ``/api/dict/%E4%BA%9C?q=%E5%B0%BE``
    reads as ``/api/dict/亜?q=尾``.
    """
    parts = urlsplit(full_path)
    path = unquote(parts.path, encoding="utf-8", errors="replace")
    if not parts.query:
        return path
    return f"{path}?{unquote_plus(parts.query, encoding='utf-8', errors='replace')}"


class CipherPathAccessFormatter(UvicornAccessFormatter):
    """Access log formatter that prints cipher characters instead of escapes."""

    def formatMessage(self, record):  # type: ignore[override]
        args = record.args
        if not isinstance(args, tuple) or len(args) != 5 or not isinstance(args[2], str):
            return super().formatMessage(record)
        client_addr, method, full_path, http_version, status_code = args
        new_record = copy(record)
        new_record.args = (client_addr, method, readable_request_path(full_path), http_version, status_code)
        return super().formatMessage(new_record)


def build_uvicorn_log_config(debug: bool = False) -> dict[str, Any]:
    """uvicorn logging config with readable access paths; ``debug`` lowers every uvicorn logger to DEBUG."""
    config = deepcopy(LOGGING_CONFIG)
    formatter = config.get("formatters", {}).get("access")
    if isinstance(formatter, dict):
        formatter["()"] = "mojikae.logging_utils.CipherPathAccessFormatter"
    if debug:
        for logger in config.get("loggers", {}).values():
            logger["level"] = "DEBUG"
    return config
