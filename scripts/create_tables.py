"""
定价与召回引擎数据库表创建脚本
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import text

from storefront_engine.core.config import settings
from storefront_engine.core.database import Base, build_engine, build_session_maker
from storefront_engine.core.timeutils import utcnow

# 导入所有数据库模型以确保表被注册
from storefront_engine.models.database import CouponDB, AutoDiscountRuleDB, DiscountRedemptionDB, CartSnapshotDB
from storefront_engine.repositories.coupon_repository import CouponRepository
from storefront_engine.repositories.discount_rule_repository import DiscountRuleRepository


async def create_tables(engine):
    """创建所有数据表"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("所有数据表创建成功")


async def create_indexes(engine):
    """创建额外的索引"""
    indexes = [
        # 优惠券有效期
        "CREATE INDEX IF NOT EXISTS idx_coupons_validity ON coupons(starts_at, expires_at);",

        # 核销记录按客户统计
        "CREATE INDEX IF NOT EXISTS idx_redemptions_customer_coupon ON discount_redemptions(customer_id, applied_id);",

        # 扫描任务查询
        "CREATE INDEX IF NOT EXISTS idx_cart_snapshots_open_activity ON cart_snapshots(abandoned_at, last_activity_at);",
        "CREATE INDEX IF NOT EXISTS idx_cart_snapshots_reminders ON cart_snapshots(abandoned_at, reminder_sent_count);"
    ]

    async with engine.begin() as conn:
        for index_sql in indexes:
            await conn.execute(text(index_sql))
    print("所有索引创建成功")


async def insert_sample_data(engine):
    """插入示例优惠券与自动折扣规则"""
    session_maker = build_session_maker(engine)
    now = utcnow()

    sample_coupons = [
        {
            "code": "SAVE10",
            "title": "全场9折",
            "discount_type": "percentage",
            "discount_value": Decimal("10"),
            "maximum_discount": Decimal("500"),
            "usage_limit": 100,
            "expires_at": now + timedelta(days=30),
        },
        {
            "code": settings.recovery.comeback_coupon_code,
            "title": "召回专享9折",
            "discount_type": "percentage",
            "discount_value": Decimal("10"),
            "per_user_limit": 1,
        },
    ]

    sample_rules = [
        {
            "name": "满1000减100",
            "rule_type": "cart_total",
            "discount_type": "fixed",
            "discount_value": Decimal("100"),
            "min_purchase": Decimal("1000"),
            "priority": 10,
        },
        {
            "name": "首单95折",
            "rule_type": "first_order",
            "discount_type": "percentage",
            "discount_value": Decimal("5"),
            "priority": 5,
        },
    ]

    async with session_maker() as session:
        coupon_repo = CouponRepository(session)
        for coupon in sample_coupons:
            if await coupon_repo.get_by_code(coupon["code"]):
                print(f"优惠券已存在: {coupon['code']}")
                continue
            await coupon_repo.create(dict(coupon))
            print(f"插入优惠券: {coupon['code']}")

        rule_repo = DiscountRuleRepository(session)
        existing = {rule.name for rule in await rule_repo.list_rules()}
        for rule in sample_rules:
            if rule["name"] in existing:
                print(f"规则已存在: {rule['name']}")
                continue
            await rule_repo.create(dict(rule))
            print(f"插入规则: {rule['name']}")

        await session.commit()


async def main():
    engine = build_engine(settings.database_url_computed)
    try:
        await create_tables(engine)
        await create_indexes(engine)
        await insert_sample_data(engine)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
