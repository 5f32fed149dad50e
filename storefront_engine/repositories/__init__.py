"""
仓库包初始化文件 - 数据库访问层
"""

from .coupon_repository import CouponRepository
from .discount_rule_repository import DiscountRuleRepository
from .redemption_repository import RedemptionRepository
from .cart_repository import CartRepository

__all__ = [
    "CouponRepository",
    "DiscountRuleRepository",
    "RedemptionRepository",
    "CartRepository"
]
