"""
数据模型包初始化文件
"""

from .discount import (
    DiscountType,
    AutoDiscountRuleType,
    AutoDiscountRule,
    AutoDiscountRuleCreate,
    AutoDiscountRuleUpdate,
    DiscountRedemption,
    calculate_discount_amount
)
from .coupon import (
    Coupon,
    CouponCreate,
    CouponUpdate,
    CouponRejection,
    CouponRejectionReason,
    CouponValidation,
    normalize_coupon_code
)
from .cart import (
    CartItem,
    CartContext,
    CartSnapshot,
    CartState,
    ReminderCheckpoint,
    TouchResult,
    RecoveryOutcome,
    RecoveryResult,
    RecoveryStats,
    SweepReport
)
from .resolution import (
    DiscountSource,
    CouponDiscount,
    AutoRuleDiscount,
    NoDiscount,
    DiscountResolution,
    RedemptionOutcome
)

__all__ = [
    "DiscountType",
    "AutoDiscountRuleType",
    "AutoDiscountRule",
    "AutoDiscountRuleCreate",
    "AutoDiscountRuleUpdate",
    "DiscountRedemption",
    "calculate_discount_amount",
    "Coupon",
    "CouponCreate",
    "CouponUpdate",
    "CouponRejection",
    "CouponRejectionReason",
    "CouponValidation",
    "normalize_coupon_code",
    "CartItem",
    "CartContext",
    "CartSnapshot",
    "CartState",
    "ReminderCheckpoint",
    "TouchResult",
    "RecoveryOutcome",
    "RecoveryResult",
    "RecoveryStats",
    "SweepReport",
    "DiscountSource",
    "CouponDiscount",
    "AutoRuleDiscount",
    "NoDiscount",
    "DiscountResolution",
    "RedemptionOutcome"
]
