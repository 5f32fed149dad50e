"""
折扣决策与核销结果模型

优惠券与自动规则二选一，结果用 source 字段区分的联合类型表示，
结构上保证不会同时返回两种折扣。
"""

from decimal import Decimal
from typing import Annotated, Literal, Optional, Union
from pydantic import BaseModel, Field
from enum import Enum

from storefront_engine.models.coupon import CouponRejection
from storefront_engine.models.discount import ZERO


class DiscountSource(str, Enum):
    """折扣来源"""
    COUPON = "coupon"
    AUTO_RULE = "auto_rule"
    NONE = "none"


class CouponDiscount(BaseModel):
    """优惠券胜出"""

    source: Literal["coupon"] = "coupon"
    amount: Decimal
    applied_id: str
    coupon_code: str


class AutoRuleDiscount(BaseModel):
    """自动规则胜出；若输入了优惠券但无效，附带失败原因"""

    source: Literal["auto_rule"] = "auto_rule"
    amount: Decimal
    applied_id: str
    rule_name: str
    coupon_rejection: Optional[CouponRejection] = None


class NoDiscount(BaseModel):
    """无折扣"""

    source: Literal["none"] = "none"
    amount: Decimal = ZERO
    applied_id: None = None
    coupon_rejection: Optional[CouponRejection] = None


DiscountResolution = Annotated[
    Union[CouponDiscount, AutoRuleDiscount, NoDiscount],
    Field(discriminator="source")
]


class RedemptionOutcome(str, Enum):
    """核销结果"""
    COMMITTED = "committed"
    ALREADY_COMMITTED = "already_committed"  # 同一订单重复调用
    USAGE_EXHAUSTED = "usage_exhausted"  # 并发下已超过使用上限, 未扣减
    NOT_FOUND = "not_found"
    NOTHING_TO_COMMIT = "nothing_to_commit"  # source 为 none
