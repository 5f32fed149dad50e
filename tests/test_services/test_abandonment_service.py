"""
AbandonmentService测试 - 放弃检测、召回对账与统计
"""

import pytest
from decimal import Decimal
from datetime import timedelta, timezone

from storefront_engine.core.exceptions import InvalidInputError
from storefront_engine.models.cart import CartState, RecoveryOutcome
from storefront_engine.repositories.cart_repository import CartRepository
from storefront_engine.services.abandonment_service import AbandonmentService
from factories import T0, hours, minutes, insert_cart


async def run(session_maker, method: str, *args, **kwargs):
    async with session_maker() as session:
        service = AbandonmentService(CartRepository(session))
        return await getattr(service, method)(*args, **kwargs)


@pytest.mark.asyncio
class TestAbandonmentService:
    """放弃检测与召回对账测试类"""

    async def test_detect_after_idle_threshold(self, session_maker):
        await insert_cart(session_maker, "s1", last_activity_at=T0)

        assert await run(session_maker, "detect_abandoned", T0 + minutes(30)) == 0
        assert await run(session_maker, "detect_abandoned", T0 + minutes(61)) == 1
        assert await run(session_maker, "detect_abandoned", T0 + minutes(62)) == 0

        carts = await run(session_maker, "list_carts", CartState.ABANDONED)
        assert [cart.abandoned_at for cart in carts] == [T0 + minutes(61)]

    async def test_order_after_abandonment_recovers(self, session_maker):
        """放弃后下单记为召回"""
        await insert_cart(session_maker, "s1", abandoned_at=T0 + minutes(61))

        result = await run(
            session_maker, "reconcile_recovery", "order_1", T0 + minutes(70), session_id="s1"
        )

        assert result.outcome == RecoveryOutcome.RECOVERED
        assert result.snapshot.state == CartState.RECOVERED
        assert result.snapshot.recovered_order_id == "order_1"
        assert result.snapshot.recovered_at == T0 + minutes(70)

    async def test_order_time_with_offset(self, session_maker):
        """带时区偏移的订单时间按同一时刻比较"""
        await insert_cart(session_maker, "s1", abandoned_at=T0 + minutes(61))
        dhaka = timezone(timedelta(hours=6))

        result = await run(
            session_maker, "reconcile_recovery", "order_1", (T0 + minutes(70)).astimezone(dhaka), session_id="s1"
        )

        assert result.outcome == RecoveryOutcome.RECOVERED
        assert result.snapshot.recovered_at == T0 + minutes(70)
        assert result.snapshot.recovered_at.tzinfo == timezone.utc

    async def test_naive_order_time_is_utc(self, session_maker):
        await insert_cart(session_maker, "s1", abandoned_at=T0 + minutes(61))

        result = await run(
            session_maker, "reconcile_recovery", "order_1", (T0 + minutes(60)).replace(tzinfo=None), session_id="s1"
        )

        assert result.outcome == RecoveryOutcome.CONVERTED

    async def test_reconcile_is_idempotent(self, session_maker):
        """同一订单重复对账返回相同结果"""
        await insert_cart(session_maker, "s1", abandoned_at=T0)

        first = await run(session_maker, "reconcile_recovery", "order_1", T0 + hours(2), session_id="s1")
        second = await run(session_maker, "reconcile_recovery", "order_1", T0 + hours(2), session_id="s1")

        assert first.outcome == second.outcome == RecoveryOutcome.RECOVERED
        assert first.snapshot.id == second.snapshot.id
        assert second.snapshot.recovered_at == T0 + hours(2)

    async def test_order_before_abandonment_converts(self, session_maker):
        """未放弃即下单的快照以 converted 关闭, 不计入召回"""
        await insert_cart(session_maker, "s1", last_activity_at=T0)

        result = await run(session_maker, "reconcile_recovery", "order_1", T0 + minutes(20), session_id="s1")

        assert result.outcome == RecoveryOutcome.CONVERTED
        assert result.snapshot.state == CartState.CONVERTED

        stats = await run(session_maker, "get_recovery_stats")
        assert stats.total_abandoned == 0
        assert stats.recovered == 0

    async def test_match_by_customer(self, session_maker):
        await insert_cart(session_maker, "other_device", abandoned_at=T0, user_id="customer_042")

        result = await run(
            session_maker, "reconcile_recovery", "order_1", T0 + hours(3),
            session_id="new_session", customer_id="customer_042"
        )

        assert result.outcome == RecoveryOutcome.RECOVERED
        assert result.snapshot.session_id == "other_device"

    async def test_no_match(self, session_maker):
        result = await run(session_maker, "reconcile_recovery", "order_1", T0, session_id="unknown")

        assert result.outcome == RecoveryOutcome.NO_MATCH
        assert result.snapshot is None

    async def test_blank_order_id(self, session_maker):
        with pytest.raises(InvalidInputError):
            await run(session_maker, "reconcile_recovery", " ", T0, session_id="s1")

    async def test_recovery_stats(self, session_maker):
        """4个放弃, 1个召回: 召回率25%"""
        await insert_cart(session_maker, "a1", abandoned_at=T0, cart_total=Decimal("400"), reminder_sent_count=2)
        await insert_cart(session_maker, "a2", abandoned_at=T0, cart_total=Decimal("600"), reminder_sent_count=1)
        await insert_cart(session_maker, "a3", abandoned_at=T0, cart_total=Decimal("200"))
        await insert_cart(
            session_maker, "r1", abandoned_at=T0, recovered_at=T0 + hours(5),
            recovered_order_id="order_9", cart_total=Decimal("800"), reminder_sent_count=1
        )

        stats = await run(session_maker, "get_recovery_stats")

        assert stats.total_abandoned == 4
        assert stats.recovered == 1
        assert stats.pending == 3
        assert stats.recovery_rate == 25
        assert stats.total_lost_revenue == Decimal("1200.00")
        assert stats.total_recovered_revenue == Decimal("800.00")
        assert stats.avg_cart_value == Decimal("500.00")
        assert stats.reminders_sent == 4

    async def test_recovery_rate_rounds_half_up(self, session_maker):
        # 1/8 = 12.5% -> 13
        for index in range(8):
            await insert_cart(session_maker, f"a{index}", abandoned_at=T0)
        await run(session_maker, "reconcile_recovery", "order_1", T0 + hours(1), session_id="a0")

        stats = await run(session_maker, "get_recovery_stats")

        assert stats.recovery_rate == 13

    async def test_empty_stats(self, session_maker):
        stats = await run(session_maker, "get_recovery_stats")

        assert stats.recovery_rate == 0
        assert stats.avg_cart_value == Decimal("0")
