"""
购物车召回定时扫描
先做放弃检测, 再做提醒升级; 无状态, 可任意频率、可重叠执行
"""

from typing import Optional
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_engine.core.timeutils import as_utc, utcnow
from storefront_engine.models.cart import SweepReport
from storefront_engine.repositories.cart_repository import CartRepository
from storefront_engine.services.abandonment_service import AbandonmentService
from storefront_engine.services.notification import NotificationSender
from storefront_engine.services.reminder_service import ReminderService

logger = structlog.get_logger()


class RecoverySweepService:
    """定时扫描服务"""

    def __init__(self, abandonment_service: AbandonmentService, reminder_service: ReminderService):
        self.abandonment_service = abandonment_service
        self.reminder_service = reminder_service

    @classmethod
    def for_session(cls, db: AsyncSession, sender: NotificationSender) -> "RecoverySweepService":
        cart_repo = CartRepository(db)
        return cls(AbandonmentService(cart_repo), ReminderService(cart_repo, sender))

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """执行一次扫描"""
        now = as_utc(now) or utcnow()
        report = SweepReport(started_at=now)

        report.detected = await self.abandonment_service.detect_abandoned(now)
        await self.reminder_service.escalate(now, report)

        logger.info(
            "召回扫描完成",
            now=now.isoformat(),
            detected=report.detected,
            considered=report.considered,
            sent=report.sent,
            failed=report.failed,
            skipped=report.skipped
        )
        return report
