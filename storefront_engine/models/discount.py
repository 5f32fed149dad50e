"""
折扣相关数据模型 - 自动折扣规则与金额计算
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, validator
from enum import Enum

from storefront_engine.core.timeutils import as_utc, utcnow


MONEY_QUANTUM = Decimal("0.01")
ZERO = Decimal("0")


class DiscountType(str, Enum):
    """折扣计算类型枚举"""
    PERCENTAGE = "percentage"  # 百分比折扣, 10 表示 10%
    FIXED = "fixed"  # 固定金额折扣
    FREE_SHIPPING = "free_shipping"  # 免运费, 金额等于调用方传入的运费


class AutoDiscountRuleType(str, Enum):
    """自动折扣规则类型枚举"""
    CART_TOTAL = "cart_total"  # 订单满额
    FIRST_ORDER = "first_order"  # 首单
    BULK_PURCHASE = "bulk_purchase"  # 批量购买, conditions.min_quantity
    LOYALTY_TIER = "loyalty_tier"  # 会员等级, conditions.tiers
    BIRTHDAY = "birthday"  # 生日
    ABANDONED_CART = "abandoned_cart"  # 放弃购物车召回


def to_money(value) -> Decimal:
    """金额保留两位小数（四舍五入）"""
    return Decimal(value).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def format_money(value: Decimal, currency_symbol: str = "৳") -> str:
    """面向用户的金额文本, 整数金额不显示小数"""
    value = Decimal(value)
    if value == value.to_integral_value():
        return f"{currency_symbol}{value:,.0f}"
    return f"{currency_symbol}{value:,.2f}"


def calculate_discount_amount(
    discount_type: DiscountType,
    discount_value: Decimal,
    subtotal: Decimal,
    cap: Optional[Decimal] = None,
    shipping_cost: Decimal = ZERO
) -> Decimal:
    """计算折扣金额

    优惠券与自动规则共用；结果不小于0、不超过小计、不超过封顶值。
    """
    discount_type = DiscountType(discount_type)

    if discount_type == DiscountType.PERCENTAGE:
        amount = subtotal * Decimal(discount_value) / 100
    elif discount_type == DiscountType.FIXED:
        amount = Decimal(discount_value)
    else:  # FREE_SHIPPING
        amount = Decimal(shipping_cost)

    amount = to_money(amount)
    if cap is not None:
        amount = min(amount, Decimal(cap))
    amount = min(amount, subtotal)
    return max(amount, ZERO)


class AutoDiscountRule(BaseModel):
    """自动折扣规则"""

    id: str = Field(..., description="规则ID")
    name: str = Field(..., description="规则名称")
    description: Optional[str] = Field(None, description="规则描述")
    rule_type: AutoDiscountRuleType = Field(..., description="规则类型")
    conditions: Dict[str, Any] = Field(default_factory=dict, description="规则类型相关条件")
    discount_type: DiscountType = Field(..., description="折扣计算类型")
    discount_value: Decimal = Field(..., ge=0, description="折扣值")
    min_purchase: Optional[Decimal] = Field(None, ge=0, description="最低消费")
    max_discount: Optional[Decimal] = Field(None, ge=0, description="最大折扣金额")
    priority: int = Field(default=0, description="优先级, 越大越优先")
    is_active: bool = Field(default=True, description="是否启用")
    starts_at: Optional[datetime] = Field(None, description="生效时间")
    expires_at: Optional[datetime] = Field(None, description="失效时间")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Config:
        from_attributes = True

    @validator('conditions', pre=True)
    def default_conditions(cls, v):
        return v or {}

    @validator('starts_at', 'expires_at', 'created_at', 'updated_at')
    def normalize_times(cls, v):
        return as_utc(v)

    def is_within_window(self, now: datetime) -> bool:
        """检查是否处于有效期内（空边界视为无限）"""
        now = as_utc(now)
        if self.starts_at and now < self.starts_at:
            return False
        if self.expires_at and now > self.expires_at:
            return False
        return True

    def calculate_discount(self, subtotal: Decimal, shipping_cost: Decimal = ZERO) -> Decimal:
        """计算该规则对应的折扣金额"""
        return calculate_discount_amount(
            self.discount_type,
            self.discount_value,
            subtotal,
            cap=self.max_discount,
            shipping_cost=shipping_cost
        )


class AutoDiscountRuleCreate(BaseModel):
    """创建自动折扣规则"""

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=500)
    rule_type: AutoDiscountRuleType
    conditions: Dict[str, Any] = Field(default_factory=dict)
    discount_type: DiscountType
    discount_value: Decimal = Field(..., ge=0)
    min_purchase: Optional[Decimal] = Field(None, ge=0)
    max_discount: Optional[Decimal] = Field(None, ge=0)
    priority: int = 0
    is_active: bool = True
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @validator('discount_value')
    def validate_discount_value(cls, v, values):
        """百分比折扣不能超过100"""
        if values.get('discount_type') == DiscountType.PERCENTAGE and v > 100:
            raise ValueError('percentage discount cannot exceed 100')
        return v

    @validator('starts_at')
    def normalize_starts_at(cls, v):
        return as_utc(v)

    @validator('expires_at')
    def validate_window(cls, v, values):
        """结束时间必须晚于开始时间"""
        v = as_utc(v)
        starts_at = values.get('starts_at')
        if v and starts_at and v <= starts_at:
            raise ValueError('expires_at must be after starts_at')
        return v

    @validator('conditions', always=True)
    def validate_conditions(cls, v, values):
        """批量购买规则必须给出数量门槛"""
        if values.get('rule_type') == AutoDiscountRuleType.BULK_PURCHASE:
            min_quantity = v.get('min_quantity')
            if not isinstance(min_quantity, int) or min_quantity < 1:
                raise ValueError('bulk_purchase rules need conditions.min_quantity >= 1')
        if values.get('rule_type') == AutoDiscountRuleType.LOYALTY_TIER:
            if not v.get('tiers'):
                raise ValueError('loyalty_tier rules need a non-empty conditions.tiers')
        return v


class AutoDiscountRuleUpdate(BaseModel):
    """更新自动折扣规则"""

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=500)
    conditions: Optional[Dict[str, Any]] = None
    discount_value: Optional[Decimal] = Field(None, ge=0)
    min_purchase: Optional[Decimal] = Field(None, ge=0)
    max_discount: Optional[Decimal] = Field(None, ge=0)
    priority: Optional[int] = None
    is_active: Optional[bool] = None
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @validator('starts_at', 'expires_at')
    def normalize_times(cls, v):
        return as_utc(v)


class DiscountRedemption(BaseModel):
    """订单折扣核销记录"""

    id: str
    order_id: str
    source: str
    applied_id: str
    coupon_code: Optional[str] = None
    customer_id: Optional[str] = None
    discount_amount: Optional[Decimal] = None
    redeemed_at: datetime

    class Config:
        from_attributes = True

    @validator('redeemed_at')
    def normalize_redeemed_at(cls, v):
        return as_utc(v)
