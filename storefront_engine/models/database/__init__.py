"""
数据库模型包初始化文件
"""

from .coupon_db import CouponDB
from .discount_db import AutoDiscountRuleDB, DiscountRedemptionDB
from .cart_db import CartSnapshotDB

__all__ = [
    "CouponDB",
    "AutoDiscountRuleDB",
    "DiscountRedemptionDB",
    "CartSnapshotDB"
]
