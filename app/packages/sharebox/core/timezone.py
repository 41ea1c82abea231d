"""时区工具方法：条目时间戳统一按配置时区输出 ISO-8601 字符串。"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from zoneinfo import ZoneInfo

from app.packages.sharebox.core.config import get_settings


def get_timezone() -> ZoneInfo:
    """返回配置指定的时区信息。"""
    return get_settings().timezone_info


def now() -> datetime:
    """返回当前时区的时间。"""
    return datetime.now(get_timezone())


def now_iso() -> str:
    return now().isoformat()


def to_local(value: Optional[datetime]) -> Optional[datetime]:
    """将 ``datetime`` 转换为配置时区，支持处理空值与无时区对象。"""
    if value is None:
        return None
    tz = get_timezone()
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    localized = to_local(value)
    return localized.isoformat() if localized is not None else None


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """解析条目中保存的 ISO 时间；无法解析时返回 ``None``。"""
    if not value:
        return None
    try:
        return to_local(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None
