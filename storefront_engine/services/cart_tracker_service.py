"""
购物车快照跟踪服务
记录会话中购物车的最新内容与最后活动时间, 供放弃检测使用
"""

from typing import List, Optional, Union, Dict, Any
from decimal import Decimal
from datetime import datetime

import structlog
from sqlalchemy.exc import IntegrityError

from storefront_engine.core.config import settings
from storefront_engine.core.database import store_errors
from storefront_engine.core.exceptions import InvalidInputError
from storefront_engine.core.timeutils import as_utc, utcnow
from storefront_engine.models.cart import CartItem, TouchResult
from storefront_engine.models.discount import ZERO, to_money
from storefront_engine.repositories.cart_repository import CartRepository

logger = structlog.get_logger()


class CartTrackerService:
    """购物车快照跟踪服务"""

    def __init__(self, cart_repo: CartRepository):
        self.cart_repo = cart_repo
        self.throttle = settings.recovery.touch_throttle

    async def touch(
        self,
        session_id: str,
        items: List[Union[CartItem, Dict[str, Any]]],
        total: Decimal,
        user_id: Optional[str] = None,
        customer_email: Optional[str] = None,
        customer_name: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> TouchResult:
        """上报购物车活动

        同一会话只保留一个未关闭的快照; 内容未变化且距上次写入不足节流窗口时不落库。
        已放弃的购物车再次活动只刷新内容, 不会回退为进行中。
        """
        if not session_id or not session_id.strip():
            raise InvalidInputError("session_id cannot be blank")
        total = Decimal(total)
        if total < ZERO:
            raise InvalidInputError("cart total cannot be negative", details={"total": str(total)})

        cart_items = [item if isinstance(item, CartItem) else CartItem(**item) for item in items]
        for item in cart_items:
            if item.quantity < 0 or item.unit_price < ZERO:
                raise InvalidInputError(
                    "item quantity and unit_price cannot be negative",
                    details={"product_id": item.product_id}
                )

        now = as_utc(now) or utcnow()
        activity = {
            "items": [item.model_dump(mode="json") for item in cart_items],
            "item_count": sum(item.quantity for item in cart_items),
            "cart_total": to_money(total),
        }

        with store_errors("touch"):
            db_snapshot = await self.cart_repo.get_open_by_session(session_id)

            if db_snapshot is None:
                try:
                    db_snapshot = await self.cart_repo.create({
                        "session_id": session_id,
                        "user_id": user_id,
                        "customer_email": customer_email,
                        "customer_name": customer_name,
                        "last_activity_at": now,
                        **activity
                    })
                    await self.cart_repo.commit()
                except IntegrityError:
                    # 同一会话的并发上报已创建快照, 转为更新
                    await self.cart_repo.rollback()
                    db_snapshot = await self.cart_repo.get_open_by_session(session_id)
                    if db_snapshot is None:
                        raise
                    logger.info("购物车快照已被并发创建", snapshot_id=db_snapshot.id, session_id=session_id)
                else:
                    logger.info("购物车快照已创建", snapshot_id=db_snapshot.id, session_id=session_id)
                    return TouchResult(snapshot=self.cart_repo.to_model(db_snapshot), created=True)

            contact = {
                "user_id": user_id or db_snapshot.user_id,
                "customer_email": customer_email or db_snapshot.customer_email,
                "customer_name": customer_name or db_snapshot.customer_name,
            }
            unchanged = (
                db_snapshot.items == activity["items"]
                and Decimal(db_snapshot.cart_total) == activity["cart_total"]
                and all(getattr(db_snapshot, field) == value for field, value in contact.items())
            )
            if unchanged and now - db_snapshot.last_activity_at < self.throttle:
                return TouchResult(snapshot=self.cart_repo.to_model(db_snapshot), written=False)

            db_snapshot = await self.cart_repo.update_activity(db_snapshot.id, {
                "last_activity_at": max(now, db_snapshot.last_activity_at),
                **contact,
                **activity
            })
            await self.cart_repo.commit()

        return TouchResult(snapshot=self.cart_repo.to_model(db_snapshot))
