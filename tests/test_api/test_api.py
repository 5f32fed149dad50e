"""
HTTP接口测试 - 使用文件型SQLite替换数据库会话依赖
"""

import asyncio
import pytest
from decimal import Decimal
from fastapi.testclient import TestClient

from storefront_engine.api.dependencies import get_notification_sender
from storefront_engine.core.database import Base, build_engine, build_session_maker, get_db_session
from storefront_engine.main import app
from storefront_engine.services.notification import LoggingNotificationSender
from factories import T0, hours, minutes

CART = {
    "subtotal": "1000",
    "customer_id": "customer_001",
    "items": [
        {"product_id": "p1", "name": "Kurta", "quantity": 2, "unit_price": "300"},
        {"product_id": "p2", "name": "Scarf", "quantity": 1, "unit_price": "400"},
    ],
}


@pytest.fixture
def sender():
    return LoggingNotificationSender()


@pytest.fixture
def client(tmp_path, sender):
    """不启动lifespan, 数据库会话与通知通道由测试提供"""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'api_test.db'}")

    async def create_schema():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(create_schema())
    session_maker = build_session_maker(engine)

    async def override_db_session():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_notification_sender] = lambda: sender

    yield TestClient(app)

    app.dependency_overrides.clear()
    asyncio.run(engine.dispose())


def create_coupon(client, **overrides):
    payload = {"code": "save10", "discount_type": "percentage", "discount_value": "10", "minimum_order_amount": "500"}
    payload.update(overrides)
    response = client.post("/coupons", json=payload)
    assert response.status_code == 201
    return response.json()


class TestHealthApi:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestCouponApi:
    """优惠券管理接口"""

    def test_create_get_update_delete(self, client):
        coupon = create_coupon(client)
        assert coupon["code"] == "SAVE10"
        assert coupon["used_count"] == 0

        fetched = client.get(f"/coupons/{coupon['id']}")
        assert fetched.status_code == 200

        updated = client.patch(f"/coupons/{coupon['id']}", json={"usage_limit": 5, "title": "九折"})
        assert updated.status_code == 200
        assert updated.json()["usage_limit"] == 5

        assert client.delete(f"/coupons/{coupon['id']}").status_code == 204
        missing = client.get(f"/coupons/{coupon['id']}")
        assert missing.status_code == 404
        assert missing.json()["error_code"] == "NOT_FOUND"

    def test_duplicate_code_rejected(self, client):
        create_coupon(client)

        response = client.post("/coupons", json={"code": "SAVE10", "discount_type": "fixed", "discount_value": "50"})

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_INPUT"

    def test_invalid_payload(self, client):
        response = client.post("/coupons", json={"code": "BIG", "discount_type": "percentage", "discount_value": "150"})

        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"


class TestCheckoutApi:
    """结账折扣接口"""

    def test_resolve_and_commit(self, client):
        coupon = create_coupon(client)

        resolved = client.post("/checkout/discounts/resolve", json={"cart": CART, "coupon_code": "save10"})
        assert resolved.status_code == 200
        body = resolved.json()
        assert body["source"] == "coupon"
        assert Decimal(body["amount"]) == Decimal("100")
        assert body["applied_id"] == coupon["id"]

        commit_payload = {
            "order_id": "order_1",
            "source": "coupon",
            "applied_id": coupon["id"],
            "customer_id": "customer_001",
            "discount_amount": body["amount"],
        }
        first = client.post("/checkout/discounts/commit", json=commit_payload)
        second = client.post("/checkout/discounts/commit", json=commit_payload)

        assert first.json()["outcome"] == "committed"
        assert second.json()["outcome"] == "already_committed"

        stats = client.get(f"/coupons/{coupon['id']}/stats").json()
        assert stats["total_usage"] == 1

    def test_rule_beats_smaller_coupon(self, client):
        create_coupon(client, code="FIXED200", discount_type="fixed", discount_value="200", minimum_order_amount=None)
        rule = client.post("/discount-rules", json={
            "name": "满1000减300",
            "rule_type": "cart_total",
            "discount_type": "fixed",
            "discount_value": "300",
            "min_purchase": "1000"
        })
        assert rule.status_code == 201

        body = client.post("/checkout/discounts/resolve", json={"cart": CART, "coupon_code": "FIXED200"}).json()

        assert body["source"] == "auto_rule"
        assert Decimal(body["amount"]) == Decimal("300")
        assert body["applied_id"] == rule.json()["id"]

    def test_rejected_coupon_message(self, client):
        body = client.post("/checkout/discounts/resolve", json={"cart": CART, "coupon_code": "NOPE"}).json()

        assert body["source"] == "none"
        assert body["coupon_rejection"]["reason"] == "not_found"
        assert body["coupon_rejection"]["message"] == "Invalid coupon code"

    def test_negative_subtotal(self, client):
        response = client.post("/checkout/discounts/resolve", json={"cart": {"subtotal": "-1"}})

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_INPUT"


class TestRecoveryApi:
    """购物车召回接口"""

    def test_abandon_remind_recover(self, client, sender):
        touched = client.post("/carts/activity", json={
            "session_id": "session_001",
            "items": [{"product_id": "p1", "name": "Kurta", "quantity": 1, "unit_price": "500"}],
            "total": "500",
            "customer_email": "buyer@example.com",
            "now": T0.isoformat()
        })
        assert touched.status_code == 200
        assert touched.json()["created"]

        detected = client.post("/internal/recovery/sweep", params={"now": (T0 + minutes(61)).isoformat()}).json()
        assert detected["detected"] == 1

        reminded = client.post("/internal/recovery/sweep", params={"now": (T0 + hours(3)).isoformat()}).json()
        assert reminded["sent"]["first"] == 1
        assert sender.sent[0]["to"] == "buyer@example.com"

        recovered = client.post("/carts/recovery", json={
            "order_id": "order_1",
            "order_created_at": (T0 + hours(4)).isoformat(),
            "session_id": "session_001"
        }).json()
        assert recovered["outcome"] == "recovered"

        stats = client.get("/carts/stats").json()
        assert stats["total_abandoned"] == 1
        assert stats["recovered"] == 1
        assert stats["recovery_rate"] == 100
        assert stats["reminders_sent"] == 1

        carts = client.get("/carts", params={"state": "recovered"}).json()
        assert [cart["session_id"] for cart in carts] == ["session_001"]

    def test_blank_session_rejected(self, client):
        response = client.post("/carts/activity", json={"session_id": " ", "items": [], "total": "0"})

        assert response.status_code == 400

    def test_cart_listing_includes_state(self, client):
        client.post("/carts/activity", json={
            "session_id": "session_001",
            "items": [{"product_id": "p1", "quantity": 1, "unit_price": "500"}],
            "total": "500",
            "now": T0.isoformat()
        })

        carts = client.get("/carts").json()

        assert carts[0]["state"] == "active"

    def test_utc_designator_timestamps(self, client):
        """带 Z 后缀的时间与带偏移的时间比较不报错"""
        client.post("/carts/activity", json={
            "session_id": "session_001",
            "items": [{"product_id": "p1", "quantity": 1, "unit_price": "500"}],
            "total": "500",
            "customer_email": "buyer@example.com",
            "now": "2026-03-02T10:00:00Z"
        })

        swept = client.post("/internal/recovery/sweep", params={"now": "2026-03-02T17:01:00+06:00"})
        assert swept.status_code == 200
        assert swept.json()["detected"] == 1

        recovered = client.post("/carts/recovery", json={
            "order_id": "order_1",
            "order_created_at": "2026-03-02T11:10:00Z",
            "session_id": "session_001"
        })
        assert recovered.status_code == 200
        assert recovered.json()["outcome"] == "recovered"
        assert recovered.json()["snapshot"]["recovered_at"].startswith("2026-03-02T11:10:00")

    def test_manual_reminder(self, client, sender):
        """手动发送提醒: 首次成功, 重复发送 409, 购物车不存在 404"""
        client.post("/carts/activity", json={
            "session_id": "session_001",
            "items": [{"product_id": "p1", "quantity": 1, "unit_price": "500"}],
            "total": "500",
            "customer_email": "buyer@example.com",
            "now": T0.isoformat()
        })
        client.post("/internal/recovery/sweep", params={"now": (T0 + minutes(61)).isoformat()})
        cart_id = client.get("/carts", params={"state": "abandoned"}).json()[0]["id"]
        payload = {"checkpoint": "first", "now": (T0 + minutes(70)).isoformat()}

        sent = client.post(f"/carts/{cart_id}/reminders", json=payload)
        assert sent.status_code == 200
        assert sent.json()["reminder_sent_count"] == 1
        assert sent.json()["state"] == "abandoned"
        assert len(sender.sent) == 1

        repeated = client.post(f"/carts/{cart_id}/reminders", json=payload)
        assert repeated.status_code == 409
        assert repeated.json()["error_code"] == "STATE_CONFLICT"
        assert len(sender.sent) == 1

        missing = client.post("/carts/cart_missing/reminders", json=payload)
        assert missing.status_code == 404
