"""
测试数据构造工具
"""

from decimal import Decimal
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from storefront_engine.models.database import CartSnapshotDB, CouponDB, AutoDiscountRuleDB
from storefront_engine.repositories.coupon_repository import CouponRepository
from storefront_engine.repositories.discount_rule_repository import DiscountRuleRepository

# 固定的测试时间基准
T0 = datetime(2026, 3, 2, 10, 0, 0, tzinfo=timezone.utc)


def hours(value: float) -> timedelta:
    return timedelta(hours=value)


def minutes(value: float) -> timedelta:
    return timedelta(minutes=value)


async def insert_coupon(session_maker, **overrides: Any) -> CouponDB:
    """写入一张优惠券并提交"""
    coupon_data: Dict[str, Any] = {
        "code": "SAVE10",
        "discount_type": "percentage",
        "discount_value": Decimal("10"),
    }
    coupon_data.update(overrides)
    async with session_maker() as session:
        repo = CouponRepository(session)
        db_coupon = await repo.create(coupon_data)
        await session.commit()
        return db_coupon


async def insert_rule(session_maker, **overrides: Any) -> AutoDiscountRuleDB:
    """写入一条自动折扣规则并提交"""
    rule_data: Dict[str, Any] = {
        "name": "满额立减",
        "rule_type": "cart_total",
        "discount_type": "fixed",
        "discount_value": Decimal("100"),
        "priority": 0,
    }
    rule_data.update(overrides)
    async with session_maker() as session:
        repo = DiscountRuleRepository(session)
        db_rule = await repo.create(rule_data)
        await session.commit()
        return db_rule


async def insert_cart(
    session_maker,
    session_id: str = "session_001",
    last_activity_at: Optional[datetime] = None,
    **overrides: Any
) -> CartSnapshotDB:
    """写入一个购物车快照并提交"""
    snapshot_data: Dict[str, Any] = {
        "id": f"cart_{session_id}",
        "session_id": session_id,
        "user_id": "customer_001",
        "customer_email": "buyer@example.com",
        "customer_name": "Rahim",
        "items": [{"product_id": "p1", "name": "Kurta", "quantity": 1, "unit_price": "500.00"}],
        "item_count": 1,
        "cart_total": Decimal("500"),
        "last_activity_at": last_activity_at or T0,
        "reminder_sent_count": 0,
    }
    snapshot_data.update(overrides)
    async with session_maker() as session:
        db_snapshot = CartSnapshotDB(**snapshot_data)
        session.add(db_snapshot)
        await session.commit()
        return db_snapshot
