"""
购物车放弃检测与召回对账服务
"""

from typing import List, Optional
from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime

import structlog

from storefront_engine.core.config import settings
from storefront_engine.core.database import store_errors
from storefront_engine.core.exceptions import InvalidInputError
from storefront_engine.core.timeutils import as_utc, utcnow
from storefront_engine.models.cart import (
    CartSnapshot,
    CartState,
    RecoveryOutcome,
    RecoveryResult,
    RecoveryStats,
)
from storefront_engine.models.discount import ZERO, to_money
from storefront_engine.repositories.cart_repository import CartRepository

logger = structlog.get_logger()


class AbandonmentService:
    """放弃检测与召回对账

    状态迁移: active -> abandoned -> recovered; 放弃前下单的快照直接关闭为 converted。
    """

    def __init__(self, cart_repo: CartRepository):
        self.cart_repo = cart_repo
        self.policy = settings.recovery

    async def detect_abandoned(self, now: Optional[datetime] = None) -> int:
        """标记闲置超过阈值的购物车, 返回新标记数量"""
        now = as_utc(now) or utcnow()
        with store_errors("detect_abandoned"):
            marked = await self.cart_repo.mark_abandoned(now, now - self.policy.idle_threshold)
            await self.cart_repo.commit()

        if marked:
            logger.info("检测到放弃的购物车", count=marked, now=now.isoformat())
        return marked

    async def reconcile_recovery(
        self,
        order_id: str,
        order_created_at: datetime,
        session_id: Optional[str] = None,
        customer_id: Optional[str] = None
    ) -> RecoveryResult:
        """订单落库后与购物车快照对账

        优先按会话匹配, 其次按客户匹配。订单时间晚于放弃时间才算召回,
        否则快照以 converted 关闭。同一订单重复调用返回相同结果。
        """
        if not order_id or not order_id.strip():
            raise InvalidInputError("order_id cannot be blank")
        order_created_at = as_utc(order_created_at) or utcnow()

        with store_errors("reconcile_recovery"):
            reconciled = await self._already_reconciled(order_id)
            if reconciled:
                return reconciled

            db_snapshot = await self.cart_repo.find_open_for_order(session_id=session_id, customer_id=customer_id)
            if db_snapshot is None:
                return RecoveryResult(outcome=RecoveryOutcome.NO_MATCH)

            if db_snapshot.abandoned_at is not None and order_created_at > db_snapshot.abandoned_at:
                changed = await self.cart_repo.mark_recovered(db_snapshot.id, order_id, order_created_at)
                outcome = RecoveryOutcome.RECOVERED
            else:
                changed = await self.cart_repo.mark_converted(db_snapshot.id, order_id, order_created_at)
                outcome = RecoveryOutcome.CONVERTED
            await self.cart_repo.commit()

            if not changed:
                # 并发的对账已经关闭了该快照
                reconciled = await self._already_reconciled(order_id)
                return reconciled or RecoveryResult(outcome=RecoveryOutcome.NO_MATCH)

            db_snapshot = await self.cart_repo.reload(db_snapshot.id)

        logger.info(
            "订单对账完成",
            order_id=order_id,
            snapshot_id=db_snapshot.id,
            outcome=outcome.value
        )
        return RecoveryResult(outcome=outcome, snapshot=self.cart_repo.to_model(db_snapshot))

    async def _already_reconciled(self, order_id: str) -> Optional[RecoveryResult]:
        db_snapshot = await self.cart_repo.get_by_order_id(order_id)
        if db_snapshot is None:
            return None
        outcome = (
            RecoveryOutcome.RECOVERED
            if db_snapshot.recovered_order_id == order_id
            else RecoveryOutcome.CONVERTED
        )
        return RecoveryResult(outcome=outcome, snapshot=self.cart_repo.to_model(db_snapshot))

    async def list_carts(
        self,
        state: Optional[CartState] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[CartSnapshot]:
        """后台购物车列表"""
        with store_errors("list_carts"):
            db_snapshots = await self.cart_repo.list_carts(state=state, limit=limit, offset=offset)
        return [self.cart_repo.to_model(db_snapshot) for db_snapshot in db_snapshots]

    async def get_recovery_stats(self) -> RecoveryStats:
        """放弃/召回统计"""
        with store_errors("recovery_stats"):
            totals = await self.cart_repo.get_recovery_totals()

        total_abandoned = totals["total_abandoned"]
        recovery_rate = 0
        if total_abandoned:
            rate = Decimal(totals["recovered"]) * 100 / total_abandoned
            recovery_rate = int(rate.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

        avg_cart_value = ZERO
        if totals["total_carts"]:
            avg_cart_value = to_money(totals["total_value"] / totals["total_carts"])

        return RecoveryStats(
            total_abandoned=total_abandoned,
            recovered=totals["recovered"],
            pending=totals["pending"],
            recovery_rate=recovery_rate,
            total_lost_revenue=to_money(totals["lost_revenue"]),
            total_recovered_revenue=to_money(totals["recovered_revenue"]),
            avg_cart_value=avg_cart_value,
            reminders_sent=totals["reminders_sent"]
        )
