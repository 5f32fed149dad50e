from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from sqlalchemy import event, text
from sqlalchemy.exc import InterfaceError, OperationalError
from typing import AsyncGenerator, Iterator, Optional
from contextlib import contextmanager
import logging

from storefront_engine.core.config import settings
from storefront_engine.core.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

# 创建基础模型类
Base = declarative_base()

# 全局数据库引擎
engine: Optional[AsyncEngine] = None
async_session_maker: Optional[async_sessionmaker] = None


def _use_immediate_transactions(sqlite_engine: AsyncEngine) -> None:
    """SQLite下由SQLAlchemy显式发出 BEGIN IMMEDIATE, 写事务在开始时即取得写锁"""

    @event.listens_for(sqlite_engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """按URL创建异步引擎"""
    if database_url.startswith("sqlite"):
        new_engine = create_async_engine(
            database_url,
            echo=echo,
            poolclass=NullPool,
            connect_args={"timeout": 30},
        )
        _use_immediate_transactions(new_engine)
        return new_engine

    options = {
        "echo": echo,
        "pool_pre_ping": True,  # 连接前ping检查
        "pool_recycle": 3600,   # 连接回收时间1小时
    }
    if settings.is_testing:
        options["poolclass"] = NullPool
    return create_async_engine(database_url, **options)


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    """创建异步session工厂"""
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """把驱动层的连接/锁错误转换为可重试的 StoreUnavailableError"""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        logger.error(f"存储操作失败 {operation}: {e}")
        raise StoreUnavailableError(
            f"store unavailable during {operation}",
            details={"operation": operation}
        ) from e


async def init_database() -> None:
    """初始化数据库连接"""
    global engine, async_session_maker

    try:
        engine = build_engine(settings.database_url_computed, echo=settings.debug)
        async_session_maker = build_session_maker(engine)
        logger.info("数据库连接初始化成功")

    except Exception as e:
        logger.error(f"数据库连接初始化失败: {e}")
        raise


async def close_database() -> None:
    """关闭数据库连接"""
    if engine:
        await engine.dispose()
        logger.info("数据库连接已关闭")


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """获取数据库会话依赖注入函数"""
    if not async_session_maker:
        raise RuntimeError("数据库未初始化，请先调用 init_database()")

    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


class DatabaseService:
    """数据库服务类"""

    @property
    def engine(self):
        return engine

    async def health_check(self) -> dict:
        """数据库健康检查"""
        try:
            if not self.engine:
                return {"status": "error", "message": "数据库引擎未初始化"}

            async with self.engine.begin() as conn:
                result = await conn.execute(text("SELECT 1"))
                row = result.fetchone()

            return {
                "status": "healthy",
                "message": "数据库连接正常",
                "test_query_result": row[0] if row else None
            }

        except Exception as e:
            return {
                "status": "error",
                "message": f"数据库连接失败: {str(e)}"
            }


# 全局数据库服务实例
database_service = DatabaseService()
