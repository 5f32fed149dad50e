"""
服务包初始化文件
"""

from .coupon_service import CouponService
from .discount_rule_service import DiscountRuleService
from .discount_resolver import DiscountResolver
from .cart_tracker_service import CartTrackerService
from .abandonment_service import AbandonmentService
from .reminder_service import ReminderService
from .recovery_sweep_service import RecoverySweepService

__all__ = [
    "CouponService",
    "DiscountRuleService",
    "DiscountResolver",
    "CartTrackerService",
    "AbandonmentService",
    "ReminderService",
    "RecoverySweepService"
]
