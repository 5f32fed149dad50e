"""
跨数据库的列类型
"""

from sqlalchemy.types import TypeDecorator, DateTime

from storefront_engine.core.timeutils import as_utc


class UTCDateTime(TypeDecorator):
    """带时区的UTC时间列

    PostgreSQL 按 timestamptz 存储; SQLite 不保存时区, 写入前统一换算为UTC,
    读出的无时区值按UTC解释。
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)
