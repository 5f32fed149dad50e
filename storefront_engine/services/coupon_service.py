"""
优惠券业务服务层
提供优惠券校验流水线与后台管理操作
"""

from typing import List, Optional
from datetime import datetime

import structlog
from pydantic import ValidationError

from storefront_engine.core.config import settings
from storefront_engine.core.exceptions import InvalidInputError, NotFoundError
from storefront_engine.core.timeutils import as_utc, utcnow
from storefront_engine.models.cart import CartContext
from storefront_engine.models.coupon import (
    Coupon,
    CouponCreate,
    CouponUpdate,
    CouponRejection,
    CouponRejectionReason,
    CouponValidation,
    normalize_coupon_code,
)
from storefront_engine.models.discount import ZERO
from storefront_engine.repositories.coupon_repository import CouponRepository

logger = structlog.get_logger()


class CouponService:
    """优惠券业务服务

    校验时总是直接读库，不使用缓存，保证使用次数是最新值。
    """

    def __init__(self, coupon_repo: CouponRepository):
        self.coupon_repo = coupon_repo
        self.currency_symbol = settings.pricing.currency_symbol

    def _reject(self, reason: CouponRejectionReason, code: str, coupon: Optional[Coupon] = None) -> CouponValidation:
        rejection = CouponRejection.build(
            reason,
            coupon_code=code,
            minimum_order_amount=coupon.minimum_order_amount if coupon else None,
            currency_symbol=self.currency_symbol
        )
        return CouponValidation(is_valid=False, coupon=coupon, rejection=rejection)

    async def validate_coupon(
        self,
        coupon_code: str,
        cart: CartContext,
        now: Optional[datetime] = None
    ) -> CouponValidation:
        """按固定顺序校验优惠券, 遇到第一个失败原因即返回"""
        now = as_utc(now) or utcnow()
        code = normalize_coupon_code(coupon_code)

        db_coupon = await self.coupon_repo.get_by_code(code)
        if not db_coupon:
            return self._reject(CouponRejectionReason.NOT_FOUND, code)
        coupon = self.coupon_repo.to_model(db_coupon)

        if not coupon.is_active:
            return self._reject(CouponRejectionReason.INACTIVE, code, coupon)

        if coupon.starts_at and now < coupon.starts_at:
            return self._reject(CouponRejectionReason.NOT_YET_VALID, code, coupon)
        if coupon.expires_at and now > coupon.expires_at:
            return self._reject(CouponRejectionReason.EXPIRED, code, coupon)

        if cart.subtotal < (coupon.minimum_order_amount or ZERO):
            return self._reject(CouponRejectionReason.BELOW_MINIMUM, code, coupon)

        if coupon.is_exhausted():
            return self._reject(CouponRejectionReason.USAGE_EXHAUSTED, code, coupon)

        # 游客没有身份，无法统计单用户次数
        if coupon.per_user_limit is not None and cart.customer_id:
            used = await self.coupon_repo.get_customer_usage_count(coupon.id, cart.customer_id)
            if used >= coupon.per_user_limit:
                return self._reject(CouponRejectionReason.PER_USER_LIMIT_REACHED, code, coupon)

        if coupon.first_order_only and not cart.is_first_order:
            return self._reject(CouponRejectionReason.NOT_FIRST_ORDER, code, coupon)

        if coupon.has_allow_list and not any(
            coupon.is_applicable_to(item.product_id, item.category_id) for item in cart.items
        ):
            return self._reject(CouponRejectionReason.NOT_APPLICABLE, code, coupon)

        return CouponValidation(
            is_valid=True,
            coupon=coupon,
            discount_amount=coupon.calculate_discount(cart.subtotal, cart.shipping_cost)
        )

    # ---- 后台管理 ----

    async def get_coupon(self, coupon_id: str) -> Coupon:
        db_coupon = await self.coupon_repo.get_by_id(coupon_id)
        if not db_coupon:
            raise NotFoundError(f"coupon {coupon_id} not found")
        return self.coupon_repo.to_model(db_coupon)

    async def list_coupons(self, is_active: Optional[bool] = None, limit: int = 50, offset: int = 0) -> List[Coupon]:
        db_coupons = await self.coupon_repo.list_coupons(is_active=is_active, limit=limit, offset=offset)
        return [self.coupon_repo.to_model(db_coupon) for db_coupon in db_coupons]

    async def create_coupon(self, coupon_create: CouponCreate) -> Coupon:
        """创建优惠券, 代码重复时报错"""
        if await self.coupon_repo.get_by_code(coupon_create.code):
            raise InvalidInputError(
                f"coupon code {coupon_create.code} already exists",
                details={"code": coupon_create.code}
            )
        db_coupon = await self.coupon_repo.create(coupon_create.model_dump())
        await self.coupon_repo.commit()
        logger.info("优惠券已创建", coupon_id=db_coupon.id, code=db_coupon.code)
        return self.coupon_repo.to_model(db_coupon)

    async def update_coupon(self, coupon_id: str, coupon_update: CouponUpdate) -> Coupon:
        """更新优惠券; 新的 usage_limit 不能低于已使用次数"""
        current = await self.get_coupon(coupon_id)
        update_data = coupon_update.model_dump(exclude_unset=True)

        usage_limit = update_data.get("usage_limit")
        if usage_limit is not None and usage_limit < current.used_count:
            raise InvalidInputError(
                "usage_limit cannot be lower than used_count",
                details={"usage_limit": usage_limit, "used_count": current.used_count}
            )

        # 合并后的记录需满足与创建时相同的约束
        merged = current.model_dump(include=set(CouponCreate.model_fields))
        merged.update(update_data)
        try:
            CouponCreate(**merged)
        except ValidationError as e:
            raise InvalidInputError(
                "coupon update is invalid",
                details={"errors": [error["msg"] for error in e.errors()]}
            )

        db_coupon = await self.coupon_repo.update(coupon_id, update_data)
        await self.coupon_repo.commit()
        logger.info("优惠券已更新", coupon_id=coupon_id, fields=sorted(update_data))
        return self.coupon_repo.to_model(db_coupon)

    async def delete_coupon(self, coupon_id: str) -> None:
        if not await self.coupon_repo.delete(coupon_id):
            raise NotFoundError(f"coupon {coupon_id} not found")
        await self.coupon_repo.commit()
        logger.info("优惠券已删除", coupon_id=coupon_id)

    async def get_coupon_stats(self, coupon_id: str) -> dict:
        stats = await self.coupon_repo.get_coupon_stats(coupon_id)
        if not stats:
            raise NotFoundError(f"coupon {coupon_id} not found")
        return stats
