"""
放弃购物车提醒升级服务

每个提醒节点的发送流程: 条件占用(租约) -> 调用通知通道 -> 成功后条件写入节点时间戳,
失败则释放占用留待下一轮。任何数据库事务都不会跨越通知发送。
"""

from typing import Optional
from datetime import datetime
import uuid

import structlog

from storefront_engine.config.reminder_templates import get_reminder_template
from storefront_engine.core.config import settings, RecoveryPolicy
from storefront_engine.core.database import store_errors
from storefront_engine.core.exceptions import NotFoundError, NotificationError, StateConflictError
from storefront_engine.core.timeutils import as_utc, utcnow
from storefront_engine.models.cart import CartSnapshot, ReminderCheckpoint, ReminderOutcome, SweepReport
from storefront_engine.repositories.cart_repository import CartRepository
from storefront_engine.services.notification import EMAIL_CHANNEL, NotificationSender

logger = structlog.get_logger()

CHECKPOINTS = list(ReminderCheckpoint)


def next_due_checkpoint(
    cart: CartSnapshot,
    now: datetime,
    policy: RecoveryPolicy
) -> Optional[ReminderCheckpoint]:
    """当前应发送的提醒节点; 节点按顺序发送, 一次最多一个"""
    now = as_utc(now)
    if cart.abandoned_at is None or cart.recovered_at or cart.converted_at:
        return None
    if cart.reminder_sent_count >= len(CHECKPOINTS):
        return None

    checkpoint = CHECKPOINTS[cart.reminder_sent_count]
    if cart.reminder_sent_at(checkpoint) is not None:
        return None
    if now < cart.abandoned_at + policy.checkpoint_offsets[checkpoint.index]:
        return None

    last_sent = cart.last_reminder_sent_at
    if last_sent is not None and now - last_sent < policy.min_reminder_gap:
        return None
    return checkpoint


class ReminderService:
    """提醒升级服务"""

    def __init__(self, cart_repo: CartRepository, sender: NotificationSender, policy: Optional[RecoveryPolicy] = None):
        self.cart_repo = cart_repo
        self.sender = sender
        self.policy = policy or settings.recovery

    async def escalate(self, now: Optional[datetime] = None, report: Optional[SweepReport] = None) -> SweepReport:
        """为到期的放弃购物车发送下一条提醒"""
        now = as_utc(now) or utcnow()
        report = report or SweepReport(started_at=now)

        with store_errors("list_reminder_candidates"):
            db_candidates = await self.cart_repo.list_reminder_candidates(limit=self.policy.sweep_batch_size)
            candidates = [self.cart_repo.to_model(db_cart) for db_cart in db_candidates]
            await self.cart_repo.commit()

        for cart in candidates:
            checkpoint = next_due_checkpoint(cart, now, self.policy)
            if checkpoint is None:
                continue
            report.considered += 1
            outcome = await self._send_checkpoint(
                cart,
                checkpoint,
                now,
                due_cutoff=now - self.policy.checkpoint_offsets[checkpoint.index],
                gap_cutoff=now - self.policy.min_reminder_gap
            )
            if outcome == ReminderOutcome.SENT:
                report.sent[checkpoint.value] += 1
            elif outcome == ReminderOutcome.FAILED:
                report.failed += 1
            else:
                report.skipped += 1

        return report

    async def send_reminder(
        self,
        cart_id: str,
        checkpoint: ReminderCheckpoint,
        now: Optional[datetime] = None
    ) -> CartSnapshot:
        """后台手动发送指定提醒节点

        不等待节点时间和最小间隔, 其余条件与定时扫描相同: 节点按顺序发送且只发一次,
        已召回或已关闭的购物车不发送。
        """
        checkpoint = ReminderCheckpoint(checkpoint)
        now = as_utc(now) or utcnow()

        with store_errors("load_reminder_cart"):
            db_cart = await self.cart_repo.get_by_id(cart_id)
            if db_cart is None:
                raise NotFoundError(f"cart {cart_id} not found")
            cart = self.cart_repo.to_model(db_cart)
            await self.cart_repo.commit()

        details = {
            "cart_id": cart_id,
            "checkpoint": checkpoint.value,
            "state": cart.state.value,
            "reminder_sent_count": cart.reminder_sent_count,
        }
        if not cart.customer_email:
            raise StateConflictError("cart has no contact email", details=details)

        outcome = await self._send_checkpoint(cart, checkpoint, now, due_cutoff=now, gap_cutoff=now)
        if outcome == ReminderOutcome.FAILED:
            raise NotificationError("reminder delivery failed", details=details)
        if outcome == ReminderOutcome.SKIPPED:
            raise StateConflictError(f"reminder {checkpoint.value} cannot be sent for this cart", details=details)

        with store_errors("reload_reminder_cart"):
            db_cart = await self.cart_repo.reload(cart_id)
            return self.cart_repo.to_model(db_cart)

    async def _send_checkpoint(
        self,
        cart: CartSnapshot,
        checkpoint: ReminderCheckpoint,
        now: datetime,
        due_cutoff: datetime,
        gap_cutoff: datetime
    ) -> ReminderOutcome:
        token = uuid.uuid4().hex

        with store_errors("claim_checkpoint"):
            claimed = await self.cart_repo.claim_checkpoint(
                cart.id,
                checkpoint,
                token,
                now=now,
                due_cutoff=due_cutoff,
                gap_cutoff=gap_cutoff,
                lease_cutoff=now - self.policy.claim_lease
            )
            await self.cart_repo.commit()

        if not claimed:
            return ReminderOutcome.SKIPPED

        template = get_reminder_template(checkpoint)
        try:
            await self.sender.send(EMAIL_CHANNEL, template, cart)
        except Exception as e:
            logger.warning(
                "提醒发送失败, 释放占用",
                cart_id=cart.id,
                checkpoint=checkpoint.value,
                error=str(e)
            )
            with store_errors("release_claim"):
                await self.cart_repo.release_claim(cart.id, token)
                await self.cart_repo.commit()
            return ReminderOutcome.FAILED

        with store_errors("mark_reminder_sent"):
            marked = await self.cart_repo.mark_reminder_sent(cart.id, checkpoint, token, now)
            await self.cart_repo.commit()

        if not marked:
            # 发送期间购物车已被召回或关闭
            logger.warning("提醒已发送但购物车状态已变化", cart_id=cart.id, checkpoint=checkpoint.value)
            return ReminderOutcome.SKIPPED

        logger.info("提醒已发送", cart_id=cart.id, checkpoint=checkpoint.value)
        return ReminderOutcome.SENT
