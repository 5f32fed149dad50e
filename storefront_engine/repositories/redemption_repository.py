"""
订单折扣核销记录数据库操作层
"""

from typing import Optional
from datetime import datetime
from decimal import Decimal
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_engine.core.timeutils import as_utc, utcnow
from storefront_engine.models.discount import DiscountRedemption
from storefront_engine.models.database.discount_db import DiscountRedemptionDB


class RedemptionRepository:
    """核销记录操作类, order_id 唯一约束保证同一订单只核销一次"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_order_id(self, order_id: str) -> Optional[DiscountRedemptionDB]:
        result = await self.db.execute(
            select(DiscountRedemptionDB).where(DiscountRedemptionDB.order_id == order_id)
        )
        return result.scalar_one_or_none()

    async def add(
        self,
        order_id: str,
        source: str,
        applied_id: str,
        customer_id: Optional[str] = None,
        coupon_code: Optional[str] = None,
        discount_amount: Optional[Decimal] = None,
        redeemed_at: Optional[datetime] = None
    ) -> DiscountRedemptionDB:
        """写入核销记录; 重复订单在 flush 时抛出 IntegrityError"""
        redemption = DiscountRedemptionDB(
            id=str(uuid.uuid4()),
            order_id=order_id,
            source=source,
            applied_id=applied_id,
            coupon_code=coupon_code,
            customer_id=customer_id,
            discount_amount=discount_amount,
            redeemed_at=as_utc(redeemed_at) or utcnow()
        )
        self.db.add(redemption)
        await self.db.flush()
        return redemption

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    def to_model(self, db_redemption: DiscountRedemptionDB) -> DiscountRedemption:
        return DiscountRedemption.model_validate(db_redemption)
