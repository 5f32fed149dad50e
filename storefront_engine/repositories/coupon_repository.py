"""
优惠券数据库操作层
"""

from typing import List, Optional, Dict, Any
import uuid

from sqlalchemy import select, update, delete, and_, or_, desc, func
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_engine.models.coupon import Coupon, normalize_coupon_code
from storefront_engine.models.database.coupon_db import CouponDB
from storefront_engine.models.database.discount_db import DiscountRedemptionDB


class CouponRepository:
    """优惠券数据库操作类"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_code(self, code: str) -> Optional[CouponDB]:
        """根据优惠券代码获取优惠券（代码入库时已统一为大写）"""
        result = await self.db.execute(
            select(CouponDB).where(CouponDB.code == normalize_coupon_code(code))
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, coupon_id: str) -> Optional[CouponDB]:
        """根据优惠券ID获取优惠券"""
        result = await self.db.execute(
            select(CouponDB).where(CouponDB.id == coupon_id)
        )
        return result.scalar_one_or_none()

    async def list_coupons(
        self,
        is_active: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[CouponDB]:
        """后台优惠券列表"""
        query = select(CouponDB)
        if is_active is not None:
            query = query.where(CouponDB.is_active == is_active)
        query = query.order_by(desc(CouponDB.created_at)).limit(limit).offset(offset)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def create(self, coupon_data: Dict[str, Any]) -> CouponDB:
        """创建优惠券"""
        db_coupon = CouponDB(
            id=coupon_data.pop("id", None) or str(uuid.uuid4()),
            used_count=0,
            **coupon_data
        )
        self.db.add(db_coupon)
        await self.db.flush()
        return db_coupon

    async def update(self, coupon_id: str, coupon_data: Dict[str, Any]) -> Optional[CouponDB]:
        """更新优惠券（不含 used_count）"""
        coupon_data.pop("used_count", None)
        if coupon_data:
            await self.db.execute(
                update(CouponDB)
                .where(CouponDB.id == coupon_id)
                .values(**coupon_data)
            )
        db_coupon = await self.get_by_id(coupon_id)
        if db_coupon:
            await self.db.refresh(db_coupon)
        return db_coupon

    async def delete(self, coupon_id: str) -> bool:
        """删除优惠券"""
        result = await self.db.execute(
            delete(CouponDB).where(CouponDB.id == coupon_id)
        )
        return result.rowcount > 0

    async def increment_usage(self, coupon_id: str) -> bool:
        """原子条件自增：仅当未达到 usage_limit 时 used_count + 1

        返回 False 表示优惠券不存在或已用完，调用方需回滚同一事务中的核销记录。
        """
        result = await self.db.execute(
            update(CouponDB)
            .where(
                and_(
                    CouponDB.id == coupon_id,
                    or_(
                        CouponDB.usage_limit.is_(None),
                        CouponDB.used_count < CouponDB.usage_limit
                    )
                )
            )
            .values(used_count=CouponDB.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def get_customer_usage_count(self, coupon_id: str, customer_id: str) -> int:
        """获取客户对特定优惠券的已核销次数"""
        result = await self.db.execute(
            select(func.count(DiscountRedemptionDB.id)).where(
                and_(
                    DiscountRedemptionDB.source == "coupon",
                    DiscountRedemptionDB.applied_id == coupon_id,
                    DiscountRedemptionDB.customer_id == customer_id
                )
            )
        )
        return result.scalar() or 0

    async def get_coupon_stats(self, coupon_id: str) -> Dict[str, Any]:
        """获取优惠券统计信息"""
        coupon = await self.get_by_id(coupon_id)
        if not coupon:
            return {}

        usage_stats = await self.db.execute(
            select(
                func.count(DiscountRedemptionDB.id).label("total_usage"),
                func.sum(DiscountRedemptionDB.discount_amount).label("total_discount"),
                func.count(func.distinct(DiscountRedemptionDB.customer_id)).label("unique_customers")
            ).where(
                and_(
                    DiscountRedemptionDB.source == "coupon",
                    DiscountRedemptionDB.applied_id == coupon_id
                )
            )
        )
        stats_row = usage_stats.fetchone()

        remaining = None
        if coupon.usage_limit is not None:
            remaining = coupon.usage_limit - coupon.used_count

        return {
            "coupon_id": coupon.id,
            "code": coupon.code,
            "usage_limit": coupon.usage_limit,
            "used_count": coupon.used_count,
            "remaining_count": remaining,
            "total_usage": stats_row.total_usage or 0,
            "total_discount": stats_row.total_discount or 0,
            "unique_customers": stats_row.unique_customers or 0
        }

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    def to_model(self, db_coupon: CouponDB) -> Coupon:
        """转换为Pydantic模型"""
        return Coupon.model_validate(db_coupon)
