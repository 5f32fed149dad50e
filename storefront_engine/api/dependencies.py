"""
路由依赖注入: 每个请求一个数据库会话, 服务按需组装
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_engine.core.database import get_db_session
from storefront_engine.repositories.cart_repository import CartRepository
from storefront_engine.repositories.coupon_repository import CouponRepository
from storefront_engine.repositories.discount_rule_repository import DiscountRuleRepository
from storefront_engine.repositories.redemption_repository import RedemptionRepository
from storefront_engine.services.abandonment_service import AbandonmentService
from storefront_engine.services.cart_tracker_service import CartTrackerService
from storefront_engine.services.coupon_service import CouponService
from storefront_engine.services.discount_resolver import DiscountResolver
from storefront_engine.services.discount_rule_service import DiscountRuleService
from storefront_engine.services.notification import NotificationSender, build_notification_sender
from storefront_engine.services.recovery_sweep_service import RecoverySweepService
from storefront_engine.services.reminder_service import ReminderService


def get_coupon_service(db: AsyncSession = Depends(get_db_session)) -> CouponService:
    return CouponService(CouponRepository(db))


def get_rule_service(db: AsyncSession = Depends(get_db_session)) -> DiscountRuleService:
    return DiscountRuleService(DiscountRuleRepository(db))


def get_discount_resolver(db: AsyncSession = Depends(get_db_session)) -> DiscountResolver:
    return DiscountResolver(
        CouponRepository(db),
        DiscountRuleRepository(db),
        RedemptionRepository(db)
    )


def get_cart_tracker(db: AsyncSession = Depends(get_db_session)) -> CartTrackerService:
    return CartTrackerService(CartRepository(db))


def get_abandonment_service(db: AsyncSession = Depends(get_db_session)) -> AbandonmentService:
    return AbandonmentService(CartRepository(db))


def get_notification_sender() -> NotificationSender:
    return build_notification_sender()


def get_reminder_service(
    db: AsyncSession = Depends(get_db_session),
    sender: NotificationSender = Depends(get_notification_sender)
) -> ReminderService:
    return ReminderService(CartRepository(db), sender)


def get_sweep_service(
    db: AsyncSession = Depends(get_db_session),
    sender: NotificationSender = Depends(get_notification_sender)
) -> RecoverySweepService:
    return RecoverySweepService.for_session(db, sender)
