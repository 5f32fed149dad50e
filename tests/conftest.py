"""
测试配置文件 - pytest fixtures和共用配置
"""

import pytest
import pytest_asyncio
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from storefront_engine.core.config import RecoveryPolicy
from storefront_engine.core.database import Base, build_engine, build_session_maker
from storefront_engine.models.cart import CartContext, CartItem

# 导入所有数据库模型以确保表被注册
import storefront_engine.models.database  # noqa: F401


# 配置pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


@pytest_asyncio.fixture(scope="function")
async def test_db_engine(tmp_path):
    """测试数据库引擎 - 文件型SQLite, 每个测试独立"""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront_test.db'}")

    # 创建表结构
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_db_engine):
    """测试会话工厂, 并发测试中每个任务各开一个会话"""
    return build_session_maker(test_db_engine)


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncSession:
    """测试数据库会话"""
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@pytest.fixture
def recovery_policy():
    """默认召回策略: 闲置60分钟, 提醒 +1h / +24h / +72h"""
    return RecoveryPolicy()


@pytest.fixture
def sample_cart():
    """示例购物车: 小计1000"""
    return CartContext(
        subtotal=Decimal("1000"),
        items=[
            CartItem(product_id="p1", name="Kurta", quantity=2, unit_price=Decimal("300"), category_id="apparel"),
            CartItem(product_id="p2", name="Scarf", quantity=1, unit_price=Decimal("400"), category_id="accessories"),
        ],
        customer_id="customer_001",
        shipping_cost=Decimal("60")
    )
