from __future__ import annotations

import logging

from mojikae.logging_utils import (
    CipherPathAccessFormatter,
    build_uvicorn_log_config,
    debug_log,
    readable_request_path,
    set_debug_logging,
)


def _access_record(args) -> logging.LogRecord:
    return logging.LogRecord(
        name="uvicorn.access",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg='%s - "%s %s HTTP/%s" %d',
        args=args,
        exc_info=None,
    )


def test_readable_request_path_decodes_path_and_query() -> None:
    assert readable_request_path("/api/dict/%E4%BA%9C") == "/api/dict/亜"
    assert readable_request_path("/api/dict?q=%E5%B0%BE+x") == "/api/dict?q=尾 x"
    assert readable_request_path("/api/dict/%2F") == "/api/dict//"


def test_access_formatter_prints_cipher_characters() -> None:
    formatter = CipherPathAccessFormatter(fmt="%(request_line)s %(status_code)s", use_colors=False)
    record = _access_record(("127.0.0.1:5000", "DELETE", "/api/dict/%E4%BA%9C", "1.1", 200))
    assert formatter.format(record) == "DELETE /api/dict/亜 HTTP/1.1 200 OK"
    assert record.args[2] == "/api/dict/%E4%BA%9C"


def test_build_uvicorn_log_config_installs_formatter() -> None:
    config = build_uvicorn_log_config()
    assert config["formatters"]["access"]["()"] == "mojikae.logging_utils.CipherPathAccessFormatter"
    assert config["loggers"]["uvicorn.access"]["level"] == "INFO"
    debug_config = build_uvicorn_log_config(debug=True)
    assert {logger["level"] for logger in debug_config["loggers"].values()} == {"DEBUG"}
    assert build_uvicorn_log_config()["loggers"]["uvicorn"]["level"] == "INFO"


def test_debug_log_respects_flag(capsys) -> None:
    set_debug_logging(False)
    debug_log("hidden")
    assert capsys.readouterr().out == ""
    set_debug_logging(True)
    try:
        debug_log("shown")
    finally:
        set_debug_logging(False)
    assert capsys.readouterr().out == "[mojikae debug] shown\n"
