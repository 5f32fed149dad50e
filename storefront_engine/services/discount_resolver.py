"""
折扣决策服务
在手工输入的优惠券与自动触发的折扣规则之间二选一, 并在下单后核销
"""

from typing import Optional
from decimal import Decimal
from datetime import datetime

import structlog
from sqlalchemy.exc import IntegrityError

from storefront_engine.core.config import settings
from storefront_engine.core.database import store_errors
from storefront_engine.core.exceptions import InvalidInputError
from storefront_engine.core.timeutils import as_utc, utcnow
from storefront_engine.models.cart import CartContext
from storefront_engine.models.coupon import normalize_coupon_code
from storefront_engine.models.discount import ZERO
from storefront_engine.models.resolution import (
    AutoRuleDiscount,
    CouponDiscount,
    DiscountResolution,
    DiscountSource,
    NoDiscount,
    RedemptionOutcome,
)
from storefront_engine.repositories.coupon_repository import CouponRepository
from storefront_engine.repositories.discount_rule_repository import DiscountRuleRepository
from storefront_engine.repositories.redemption_repository import RedemptionRepository
from storefront_engine.services.common_cache import SimpleCache
from storefront_engine.services.coupon_service import CouponService
from storefront_engine.services.discount_rule_service import DiscountRuleService

logger = structlog.get_logger()


class DiscountResolver:
    """折扣决策服务

    优惠券和自动规则从不叠加: 取金额较大者, 相等时优惠券优先。
    """

    def __init__(
        self,
        coupon_repo: CouponRepository,
        rule_repo: DiscountRuleRepository,
        redemption_repo: RedemptionRepository,
        rule_cache: Optional[SimpleCache] = None
    ):
        self.coupon_repo = coupon_repo
        self.rule_repo = rule_repo
        self.redemption_repo = redemption_repo
        self.coupon_service = CouponService(coupon_repo)
        self.rule_service = DiscountRuleService(rule_repo, cache=rule_cache)
        self.max_code_length = settings.pricing.max_coupon_code_length

    def _check_input(self, cart: CartContext, coupon_code: Optional[str]) -> None:
        """格式错误的输入直接拒绝"""
        if cart.subtotal < ZERO:
            raise InvalidInputError("subtotal cannot be negative", details={"subtotal": str(cart.subtotal)})
        if cart.shipping_cost < ZERO:
            raise InvalidInputError("shipping_cost cannot be negative", details={"shipping_cost": str(cart.shipping_cost)})
        for item in cart.items:
            if item.quantity < 0 or item.unit_price < ZERO:
                raise InvalidInputError(
                    "item quantity and unit_price cannot be negative",
                    details={"product_id": item.product_id}
                )
        if coupon_code is not None:
            code = normalize_coupon_code(coupon_code)
            if not code:
                raise InvalidInputError("coupon code cannot be blank")
            if len(code) > self.max_code_length:
                raise InvalidInputError(
                    "coupon code is too long",
                    details={"max_length": self.max_code_length}
                )

    async def resolve(
        self,
        cart: CartContext,
        coupon_code: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> DiscountResolution:
        """计算本单应用的唯一折扣（只读, 不扣减任何次数）"""
        self._check_input(cart, coupon_code)
        now = as_utc(now) or utcnow()

        with store_errors("resolve"):
            validation = None
            if coupon_code is not None:
                validation = await self.coupon_service.validate_coupon(coupon_code, cart, now)
            rule, rule_amount = await self.rule_service.evaluate(cart, now)

        coupon_rejection = validation.rejection if validation and not validation.is_valid else None

        if validation and validation.is_valid and validation.discount_amount >= rule_amount:
            logger.info(
                "折扣决策: 优惠券",
                coupon_code=validation.coupon.code,
                amount=str(validation.discount_amount),
                rule_amount=str(rule_amount)
            )
            return CouponDiscount(
                amount=validation.discount_amount,
                applied_id=validation.coupon.id,
                coupon_code=validation.coupon.code
            )

        if rule is not None and rule_amount > ZERO:
            logger.info("折扣决策: 自动规则", rule_id=rule.id, amount=str(rule_amount))
            return AutoRuleDiscount(
                amount=rule_amount,
                applied_id=rule.id,
                rule_name=rule.name,
                coupon_rejection=coupon_rejection
            )

        if coupon_rejection:
            logger.info("优惠券被拒绝", coupon_code=coupon_rejection.coupon_code, reason=coupon_rejection.reason.value)
        return NoDiscount(coupon_rejection=coupon_rejection)

    async def commit(
        self,
        applied_id: Optional[str],
        source: DiscountSource,
        order_id: str,
        customer_id: Optional[str] = None,
        discount_amount: Optional[Decimal] = None,
        coupon_code: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> RedemptionOutcome:
        """订单持久化后核销折扣

        以 order_id 幂等; 优惠券的次数扣减是单条条件 UPDATE,
        并发超过上限时整笔回滚并返回 USAGE_EXHAUSTED。
        """
        source = DiscountSource(source)
        if source == DiscountSource.NONE or not applied_id:
            return RedemptionOutcome.NOTHING_TO_COMMIT
        if not order_id or not order_id.strip():
            raise InvalidInputError("order_id cannot be blank")

        with store_errors("commit"):
            if await self.redemption_repo.get_by_order_id(order_id):
                logger.info("订单折扣已核销", order_id=order_id)
                return RedemptionOutcome.ALREADY_COMMITTED

            if source == DiscountSource.COUPON:
                db_coupon = await self.coupon_repo.get_by_id(applied_id)
                if not db_coupon:
                    return RedemptionOutcome.NOT_FOUND
                coupon_code = db_coupon.code
            elif not await self.rule_repo.get_by_id(applied_id):
                return RedemptionOutcome.NOT_FOUND

            try:
                await self.redemption_repo.add(
                    order_id=order_id,
                    source=source.value,
                    applied_id=applied_id,
                    customer_id=customer_id,
                    coupon_code=coupon_code,
                    discount_amount=discount_amount,
                    redeemed_at=now
                )
            except IntegrityError:
                await self.redemption_repo.rollback()
                logger.info("订单折扣已被并发核销", order_id=order_id)
                return RedemptionOutcome.ALREADY_COMMITTED

            if source == DiscountSource.COUPON:
                if not await self.coupon_repo.increment_usage(applied_id):
                    await self.redemption_repo.rollback()
                    logger.warning("优惠券已达使用上限, 核销回滚", coupon_id=applied_id, order_id=order_id)
                    return RedemptionOutcome.USAGE_EXHAUSTED

            await self.redemption_repo.commit()

        logger.info("折扣已核销", order_id=order_id, source=source.value, applied_id=applied_id)
        return RedemptionOutcome.COMMITTED
