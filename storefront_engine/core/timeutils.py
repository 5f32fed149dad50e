"""
时间工具

引擎内部所有时间都是带时区的UTC时间; 不带时区的输入按UTC解释。
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """当前UTC时间"""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """统一转换为带时区的UTC时间"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
