"""日志配置模块：提供彩色输出能力并统一全局日志格式。

每条日志都会带上当前请求 ID 与正在处理的房间名（若有），
便于把同一房间上的删除/重命名/同步操作串起来排查。
"""

import json
import logging
import logging.config
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Iterator, Optional

from .config import get_settings


class _TZFormatter(logging.Formatter):
    """Formatter that renders timestamps in Settings.timezone."""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:  # noqa: D401
        tz = get_settings().timezone_info
        dt = datetime.fromtimestamp(record.created, tz)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat(sep=" ", timespec="milliseconds")


class ColorFormatter(_TZFormatter):
    """ANSI 彩色格式化器：根据不同日志级别渲染不同颜色，便于快速辨识。"""

    RESET = "\033[0m"
    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[41m",
    }

    def __init__(
        self,
        fmt: str,
        datefmt: Optional[str] = None,
        style: str = "%",
        use_colors: Optional[bool] = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        if use_colors is None:
            use_colors = sys.stderr.isatty()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if not self.use_colors:
            return message
        color = self.COLORS.get(record.levelno)
        if not color:
            return message
        return f"{color}{message}{self.RESET}"


class JsonFormatter(_TZFormatter):
    """Structured JSON formatter for logs."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, datefmt=None),
            "logger": record.name,
            "level": record.levelname,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
            "room": getattr(record, "room", None),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


_request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_room_ctx: ContextVar[Optional[str]] = ContextVar("room", default=None)


class RequestContextFilter(logging.Filter):
    """Injects request_id and room from contextvars into every LogRecord."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        setattr(record, "request_id", _request_id_ctx.get())
        setattr(record, "room", _room_ctx.get() or "-")
        return True


def setup_logging() -> None:
    """初始化日志系统，确保项目所有模块使用统一的输出格式与级别。"""
    settings = get_settings()
    log_dir = settings.log_directory
    log_dir.mkdir(parents=True, exist_ok=True)

    formatter_name = "json" if settings.log_json else "standard"
    line_format = "%(asctime)s - %(name)s - %(levelname)s - [%(room)s] %(message)s"

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "()": "app.packages.sharebox.core.logger.ColorFormatter",
                "format": line_format,
            },
            "plain": {
                "format": line_format,
            },
            "json": {
                "()": "app.packages.sharebox.core.logger.JsonFormatter",
            },
        },
        "filters": {
            "request_context": {
                "()": "app.packages.sharebox.core.logger.RequestContextFilter",
            }
        },
        "handlers": {
            "default": {
                "level": settings.log_level,
                "class": "logging.StreamHandler",
                "formatter": formatter_name,
                "filters": ["request_context"],
            },
            "file": {
                "level": settings.log_level,
                "class": "logging.handlers.TimedRotatingFileHandler",
                "formatter": "json" if settings.log_json else "plain",
                "filename": str(settings.log_file_path),
                "when": "midnight",
                "backupCount": 14,
                "encoding": "utf-8",
                "delay": True,
                "filters": ["request_context"],
            },
        },
        "loggers": {
            "uvicorn": {
                "handlers": ["default", "file"],
                "level": settings.log_level,
                "propagate": False,
            },
            "uvicorn.access": {
                "handlers": ["default", "file"],
                "level": settings.log_level,
                "propagate": False,
            },
            "app": {
                "handlers": ["default", "file"],
                "level": settings.log_level,
                "propagate": False,
            },
            "botocore": {
                "level": "WARNING",
            },
        },
        "root": {
            "handlers": ["default", "file"],
            "level": settings.log_level,
        },
    }
    logging.config.dictConfig(logging_config)


logger = logging.getLogger("app")


def set_request_id(request_id: Optional[str]) -> None:
    _request_id_ctx.set(request_id)


@contextmanager
def room_log_context(room_name: str) -> Iterator[None]:
    """在代码块内为日志附加房间名。"""
    token = _room_ctx.set(room_name)
    try:
        yield
    finally:
        _room_ctx.reset(token)
