"""
规则缓存与通知通道测试
"""

import json
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock

from redis.exceptions import ConnectionError as RedisConnectionError

from storefront_engine.config.reminder_templates import get_reminder_template
from storefront_engine.core.exceptions import NotificationError
from storefront_engine.core.redis import RedisManager
from storefront_engine.models.cart import CartSnapshot, ReminderCheckpoint
from storefront_engine.services.common_cache import SimpleCache
from storefront_engine.services.notification import EMAIL_CHANNEL, RedisOutboxSender
from factories import T0


@pytest.fixture
def abandoned_cart():
    return CartSnapshot(
        id="cart_001",
        session_id="session_001",
        customer_email="buyer@example.com",
        customer_name="Rahim",
        items=[{"product_id": "p1", "name": "Kurta", "quantity": 2, "unit_price": "750"}],
        item_count=2,
        cart_total=Decimal("1500"),
        last_activity_at=T0,
        abandoned_at=T0
    )


@pytest.mark.asyncio
class TestSimpleCache:
    """规则缓存测试"""

    async def test_unbound_cache_is_noop(self):
        cache = SimpleCache(key_prefix="discount_rule:")

        assert await cache.set("active", [1, 2]) is False
        assert await cache.get("active") is None
        assert await cache.delete("active") is False

    async def test_set_and_get_with_prefix(self):
        client = AsyncMock()
        cache = SimpleCache(key_prefix="discount_rule:")
        cache.bind(client)

        assert await cache.set("active", [{"id": "r1", "discount_value": Decimal("10")}], ttl=60)
        key, ttl, payload = client.setex.call_args.args
        assert key == "discount_rule:active"
        assert ttl == 60
        assert json.loads(payload) == [{"id": "r1", "discount_value": "10"}]

        client.get.return_value = payload
        assert await cache.get("active") == [{"id": "r1", "discount_value": "10"}]

    async def test_zero_ttl_disables_caching(self):
        client = AsyncMock()
        cache = SimpleCache(client)

        assert await cache.set("active", [], ttl=0) is False
        client.setex.assert_not_called()

    async def test_redis_errors_fall_back(self):
        """Redis异常时视为未命中"""
        client = AsyncMock()
        client.get.side_effect = RedisConnectionError("down")
        cache = SimpleCache(client)

        assert await cache.get("active") is None


class TestReminderTemplates:
    """提醒文案测试"""

    def test_final_reminder_carries_comeback_code(self, abandoned_cart):
        template = get_reminder_template(ReminderCheckpoint.FINAL)
        message = template.render(abandoned_cart)

        assert message["discount_code"] == "COMEBACK10"
        assert message["urgency_text"] == "Use code COMEBACK10 for 10% off - valid for 24 hours only!"
        assert message["cart_total"] == "৳1,500"
        assert message["items"] == [{"name": "Kurta", "quantity": 2}]

    def test_first_reminder_has_no_code(self, abandoned_cart):
        message = get_reminder_template(ReminderCheckpoint.FIRST).render(abandoned_cart)

        assert message["discount_code"] is None
        assert message["to"] == "buyer@example.com"
        assert message["customer_name"] == "Rahim"


@pytest.mark.asyncio
class TestRedisOutboxSender:
    """Redis发件箱通道测试"""

    async def test_pushes_rendered_message(self, abandoned_cart):
        manager = AsyncMock(spec=RedisManager)
        manager.push.return_value = True
        sender = RedisOutboxSender(manager, outbox_key="outbox:test")

        await sender.send(EMAIL_CHANNEL, get_reminder_template(ReminderCheckpoint.SECOND), abandoned_cart)

        key, message = manager.push.call_args.args
        assert key == "outbox:test"
        assert message["channel"] == "email"
        assert message["template"] == "second"
        assert message["cart_id"] == "cart_001"

    async def test_push_failure_raises(self, abandoned_cart):
        manager = AsyncMock(spec=RedisManager)
        manager.push.return_value = False
        sender = RedisOutboxSender(manager)

        with pytest.raises(NotificationError):
            await sender.send(EMAIL_CHANNEL, get_reminder_template(ReminderCheckpoint.FIRST), abandoned_cart)
