"""
DiscountResolver测试 - 优惠券与自动规则二选一, 下单后核销
"""

import asyncio
import pytest
from decimal import Decimal
from datetime import timedelta

from storefront_engine.core.exceptions import InvalidInputError
from storefront_engine.models.cart import CartContext
from storefront_engine.models.coupon import CouponRejectionReason
from storefront_engine.models.resolution import (
    AutoRuleDiscount,
    CouponDiscount,
    DiscountSource,
    NoDiscount,
    RedemptionOutcome,
)
from storefront_engine.repositories.coupon_repository import CouponRepository
from storefront_engine.repositories.discount_rule_repository import DiscountRuleRepository
from storefront_engine.repositories.redemption_repository import RedemptionRepository
from storefront_engine.services.discount_resolver import DiscountResolver
from factories import T0, insert_coupon, insert_rule


def build_resolver(session) -> DiscountResolver:
    return DiscountResolver(
        CouponRepository(session),
        DiscountRuleRepository(session),
        RedemptionRepository(session)
    )


@pytest.mark.asyncio
class TestResolve:
    """折扣决策测试"""

    async def test_percentage_coupon(self, session_maker, sample_cart):
        """SAVE10 作用于小计1000, 折扣100"""
        await insert_coupon(session_maker, code="SAVE10", minimum_order_amount=Decimal("500"))

        async with session_maker() as session:
            resolution = await build_resolver(session).resolve(sample_cart, "save10", T0)

        assert isinstance(resolution, CouponDiscount)
        assert resolution.amount == Decimal("100")
        assert resolution.coupon_code == "SAVE10"

    async def test_larger_rule_beats_coupon(self, session_maker, sample_cart):
        """满额规则300 大于 FIXED200 优惠券, 规则胜出"""
        await insert_coupon(session_maker, code="FIXED200", discount_type="fixed", discount_value=Decimal("200"))
        db_rule = await insert_rule(
            session_maker, name="满1000减300", discount_value=Decimal("300"), min_purchase=Decimal("1000")
        )

        async with session_maker() as session:
            resolution = await build_resolver(session).resolve(sample_cart, "FIXED200", T0)

        assert isinstance(resolution, AutoRuleDiscount)
        assert resolution.amount == Decimal("300")
        assert resolution.applied_id == db_rule.id
        assert resolution.coupon_rejection is None

    async def test_tie_goes_to_coupon(self, session_maker, sample_cart):
        """金额相同时优惠券优先"""
        await insert_coupon(session_maker, code="FIXED100", discount_type="fixed", discount_value=Decimal("100"))
        await insert_rule(session_maker, discount_value=Decimal("100"))

        async with session_maker() as session:
            resolution = await build_resolver(session).resolve(sample_cart, "FIXED100", T0)

        assert isinstance(resolution, CouponDiscount)
        assert resolution.amount == Decimal("100")

    async def test_rule_applies_without_coupon(self, session_maker, sample_cart):
        await insert_rule(session_maker, name="满1000减100", min_purchase=Decimal("1000"))

        async with session_maker() as session:
            resolution = await build_resolver(session).resolve(sample_cart, None, T0)

        assert isinstance(resolution, AutoRuleDiscount)
        assert resolution.rule_name == "满1000减100"

    async def test_rejected_coupon_falls_back_to_rule(self, session_maker, sample_cart):
        """优惠券无效时使用规则, 并带回失败原因"""
        await insert_coupon(session_maker, code="OLD", expires_at=T0 - timedelta(days=1))
        await insert_rule(session_maker, discount_value=Decimal("50"))

        async with session_maker() as session:
            resolution = await build_resolver(session).resolve(sample_cart, "OLD", T0)

        assert isinstance(resolution, AutoRuleDiscount)
        assert resolution.amount == Decimal("50")
        assert resolution.coupon_rejection.reason == CouponRejectionReason.EXPIRED
        assert resolution.coupon_rejection.message == "This coupon has expired"

    async def test_no_discount_carries_rejection(self, session_maker, sample_cart):
        async with session_maker() as session:
            resolution = await build_resolver(session).resolve(sample_cart, "MISSING", T0)

        assert isinstance(resolution, NoDiscount)
        assert resolution.amount == Decimal("0")
        assert resolution.coupon_rejection.reason == CouponRejectionReason.NOT_FOUND

    async def test_no_discount_without_code_or_rule(self, session_maker, sample_cart):
        async with session_maker() as session:
            resolution = await build_resolver(session).resolve(sample_cart, None, T0)

        assert isinstance(resolution, NoDiscount)
        assert resolution.coupon_rejection is None

    @pytest.mark.parametrize("cart_data, code", [
        ({"subtotal": Decimal("-1")}, None),
        ({"subtotal": Decimal("100"), "shipping_cost": Decimal("-5")}, None),
        ({"subtotal": Decimal("100"), "items": [{"product_id": "p1", "quantity": -1}]}, None),
        ({"subtotal": Decimal("100")}, "   "),
        ({"subtotal": Decimal("100")}, "X" * 51),
    ])
    async def test_invalid_input(self, session_maker, cart_data, code):
        """格式错误的输入直接拒绝"""
        async with session_maker() as session:
            with pytest.raises(InvalidInputError):
                await build_resolver(session).resolve(CartContext(**cart_data), code, T0)

    async def test_resolve_does_not_consume_usage(self, session_maker, sample_cart):
        db_coupon = await insert_coupon(session_maker, usage_limit=1)

        async with session_maker() as session:
            resolver = build_resolver(session)
            first = await resolver.resolve(sample_cart, "SAVE10", T0)
            second = await resolver.resolve(sample_cart, "SAVE10", T0)
            refreshed = await CouponRepository(session).get_by_id(db_coupon.id)

        assert isinstance(first, CouponDiscount)
        assert isinstance(second, CouponDiscount)
        assert refreshed.used_count == 0


@pytest.mark.asyncio
class TestCommit:
    """下单核销测试"""

    async def test_single_use_coupon(self, session_maker, sample_cart):
        """一次性优惠券核销后, 其他订单得到 USAGE_EXHAUSTED"""
        db_coupon = await insert_coupon(session_maker, code="ONCE", usage_limit=1)

        async with session_maker() as session:
            resolver = build_resolver(session)
            resolution = await resolver.resolve(sample_cart, "ONCE", T0)
            outcome = await resolver.commit(
                resolution.applied_id, DiscountSource.COUPON, "order_1",
                customer_id="customer_001", discount_amount=resolution.amount, now=T0
            )
            assert outcome == RedemptionOutcome.COMMITTED

        async with session_maker() as session:
            resolver = build_resolver(session)
            again = await resolver.resolve(sample_cart, "ONCE", T0)
            late = await resolver.commit(db_coupon.id, DiscountSource.COUPON, "order_2", now=T0)

        assert isinstance(again, NoDiscount)
        assert again.coupon_rejection.reason == CouponRejectionReason.USAGE_EXHAUSTED
        assert late == RedemptionOutcome.USAGE_EXHAUSTED

    async def test_commit_is_idempotent_per_order(self, session_maker):
        """同一订单重复核销只扣减一次"""
        db_coupon = await insert_coupon(session_maker, usage_limit=10)

        async with session_maker() as session:
            resolver = build_resolver(session)
            first = await resolver.commit(db_coupon.id, DiscountSource.COUPON, "order_1", now=T0)
            second = await resolver.commit(db_coupon.id, DiscountSource.COUPON, "order_1", now=T0)
            refreshed = await CouponRepository(session).get_by_id(db_coupon.id)
            await session.refresh(refreshed)

        assert first == RedemptionOutcome.COMMITTED
        assert second == RedemptionOutcome.ALREADY_COMMITTED
        assert refreshed.used_count == 1

    async def test_commit_rule_records_redemption(self, session_maker):
        db_rule = await insert_rule(session_maker)

        async with session_maker() as session:
            outcome = await build_resolver(session).commit(db_rule.id, "auto_rule", "order_9", now=T0)
            redemption = await RedemptionRepository(session).get_by_order_id("order_9")

        assert outcome == RedemptionOutcome.COMMITTED
        assert redemption.applied_id == db_rule.id
        assert redemption.source == "auto_rule"

    async def test_nothing_to_commit(self, session_maker):
        async with session_maker() as session:
            resolver = build_resolver(session)
            assert await resolver.commit(None, DiscountSource.NONE, "order_1") == RedemptionOutcome.NOTHING_TO_COMMIT
            assert await resolver.commit(None, DiscountSource.COUPON, "order_1") == RedemptionOutcome.NOTHING_TO_COMMIT

    async def test_unknown_coupon(self, session_maker):
        async with session_maker() as session:
            outcome = await build_resolver(session).commit("missing", DiscountSource.COUPON, "order_1")
        assert outcome == RedemptionOutcome.NOT_FOUND

    async def test_blank_order_id(self, session_maker):
        async with session_maker() as session:
            with pytest.raises(InvalidInputError):
                await build_resolver(session).commit("c1", DiscountSource.COUPON, "  ")

    async def test_concurrent_commits_never_exceed_limit(self, session_maker):
        """N+K 个订单并发核销 N 次额度的优惠券, 恰好 N 个成功"""
        limit, extra = 3, 5
        db_coupon = await insert_coupon(session_maker, usage_limit=limit)

        async def place_order(index: int) -> RedemptionOutcome:
            async with session_maker() as session:
                return await build_resolver(session).commit(
                    db_coupon.id, DiscountSource.COUPON, f"order_{index}", now=T0
                )

        outcomes = await asyncio.gather(*[place_order(i) for i in range(limit + extra)])

        assert outcomes.count(RedemptionOutcome.COMMITTED) == limit
        assert outcomes.count(RedemptionOutcome.USAGE_EXHAUSTED) == extra

        async with session_maker() as session:
            refreshed = await CouponRepository(session).get_by_id(db_coupon.id)
            assert refreshed.used_count == limit
