"""
Logging (Loguru)

- Pretty console logs by default; JSON lines with ``LOG_JSON=1``
- Optional file sink rotated daily (``LOG_TO_FILE=1``)
- stdlib / uvicorn / httpx records are intercepted into Loguru
- ``access_log_middleware`` writes one line per HTTP request
"""

import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict

from loguru import logger
from starlette.requests import Request

import config

_configured = False


def _fmt_pretty(record) -> str:
    return (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>\n{exception}"
    )


def _fmt_json(record) -> str:
    payload: Dict[str, Any] = {
        "time": record["time"].strftime("%Y-%m-%dT%H:%M:%S.%f%z"),
        "level": record["level"].name,
        "logger": record["name"],
        "line": record["line"],
        "message": record["message"],
    }
    for key, value in record["extra"].items():
        payload.setdefault(key, value)
    # the returned string is itself a format template; JSON goes through extra
    record["extra"]["_json"] = json.dumps(payload, ensure_ascii=False, default=str)
    return "{extra[_json]}\n{exception}"


class InterceptHandler(logging.Handler):
    """Route standard logging records into Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


def setup_logging() -> None:
    global _configured
    if _configured:
        return

    fmt = _fmt_json if config.LOG_JSON else _fmt_pretty
    logger.remove()
    logger.add(sys.stderr, level=config.LOG_LEVEL, format=fmt, backtrace=False, diagnose=False)

    if config.LOG_TO_FILE:
        log_dir = Path(config.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_dir / config.LOG_FILE),
            rotation="1 day",
            level=config.LOG_LEVEL,
            format=fmt,
            backtrace=False,
            diagnose=False,
        )

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi", "httpx"):
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.setLevel(config.LOG_LEVEL)
        std_logger.propagate = False

    # uvicorn's own access lines would duplicate access_log_middleware
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _configured = True
    logger.info(f"Logging initialized - level={config.LOG_LEVEL} json={config.LOG_JSON} file={config.LOG_TO_FILE}")


async def access_log_middleware(request: Request, call_next):
    started = time.perf_counter()
    status_code, length = 500, "-"
    try:
        response = await call_next(request)
        status_code = response.status_code
        length = response.headers.get("content-length", "-")
        return response
    finally:
        # unhandled errors skip the return above and are rendered further out
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(f"{request.method} {request.url.path} {status_code} {elapsed_ms:.1f} ms - {length}")
