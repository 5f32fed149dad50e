"""
优惠券相关数据模型
"""

from decimal import Decimal
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, validator
from enum import Enum

from storefront_engine.core.timeutils import as_utc, utcnow
from storefront_engine.models.discount import (
    DiscountType,
    ZERO,
    calculate_discount_amount,
    format_money,
)


def normalize_coupon_code(code: str) -> str:
    """优惠券代码统一去空格并转大写"""
    return (code or "").strip().upper()


class CouponRejectionReason(str, Enum):
    """优惠券校验失败原因, 按校验顺序排列"""
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    BELOW_MINIMUM = "below_minimum"
    USAGE_EXHAUSTED = "usage_exhausted"
    PER_USER_LIMIT_REACHED = "per_user_limit_reached"
    NOT_FIRST_ORDER = "not_first_order"
    NOT_APPLICABLE = "not_applicable"


REJECTION_MESSAGES = {
    CouponRejectionReason.NOT_FOUND: "Invalid coupon code",
    CouponRejectionReason.INACTIVE: "This coupon is no longer active",
    CouponRejectionReason.NOT_YET_VALID: "This coupon is not yet active",
    CouponRejectionReason.EXPIRED: "This coupon has expired",
    CouponRejectionReason.USAGE_EXHAUSTED: "This coupon has reached its usage limit",
    CouponRejectionReason.PER_USER_LIMIT_REACHED: "You have already used this coupon the maximum number of times",
    CouponRejectionReason.NOT_FIRST_ORDER: "This coupon is only valid on your first order",
    CouponRejectionReason.NOT_APPLICABLE: "This coupon does not apply to any item in your cart",
}


class CouponRejection(BaseModel):
    """优惠券校验失败结果（面向用户的具体提示）"""

    reason: CouponRejectionReason
    message: str
    coupon_code: Optional[str] = None
    minimum_order_amount: Optional[Decimal] = None

    @classmethod
    def build(
        cls,
        reason: CouponRejectionReason,
        coupon_code: Optional[str] = None,
        minimum_order_amount: Optional[Decimal] = None,
        currency_symbol: str = "৳"
    ) -> "CouponRejection":
        if reason == CouponRejectionReason.BELOW_MINIMUM:
            message = (
                "This coupon requires a minimum order of "
                f"{format_money(minimum_order_amount or ZERO, currency_symbol)}"
            )
        else:
            message = REJECTION_MESSAGES[reason]
        return cls(
            reason=reason,
            message=message,
            coupon_code=coupon_code,
            minimum_order_amount=minimum_order_amount
        )


class Coupon(BaseModel):
    """优惠券基础模型"""

    id: str = Field(..., description="优惠券ID")
    code: str = Field(..., min_length=1, max_length=50, description="优惠券代码")
    title: Optional[str] = Field(None, description="优惠券标题")
    description: Optional[str] = Field(None, description="优惠券描述")
    discount_type: DiscountType = Field(..., description="折扣类型")
    discount_value: Decimal = Field(..., ge=0, description="折扣值")
    minimum_order_amount: Optional[Decimal] = Field(None, ge=0, description="最小订单金额")
    maximum_discount: Optional[Decimal] = Field(None, ge=0, description="最大折扣金额")
    usage_limit: Optional[int] = Field(None, ge=0, description="总使用次数限制")
    used_count: int = Field(default=0, ge=0, description="已使用次数")
    per_user_limit: Optional[int] = Field(None, ge=1, description="单用户使用次数限制")
    first_order_only: bool = Field(default=False, description="仅限首单")
    applicable_product_ids: Optional[List[str]] = Field(None, description="适用商品ID列表")
    applicable_category_ids: Optional[List[str]] = Field(None, description="适用分类ID列表")
    starts_at: Optional[datetime] = Field(None, description="有效开始时间")
    expires_at: Optional[datetime] = Field(None, description="有效结束时间")
    is_active: bool = Field(default=True, description="是否启用")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Config:
        from_attributes = True

    @validator('used_count', pre=True)
    def default_used_count(cls, v):
        return v or 0

    @validator('starts_at', 'expires_at', 'created_at', 'updated_at')
    def normalize_times(cls, v):
        return as_utc(v)

    @property
    def has_allow_list(self) -> bool:
        return bool(self.applicable_product_ids) or bool(self.applicable_category_ids)

    def is_exhausted(self) -> bool:
        """检查总使用次数是否已用完"""
        return self.usage_limit is not None and self.used_count >= self.usage_limit

    def is_applicable_to(self, product_id: str, category_id: Optional[str] = None) -> bool:
        """检查是否适用于指定商品"""
        if not self.has_allow_list:
            return True  # 无限制则适用于所有商品
        if product_id in (self.applicable_product_ids or []):
            return True
        return category_id is not None and category_id in (self.applicable_category_ids or [])

    def calculate_discount(self, subtotal: Decimal, shipping_cost: Decimal = ZERO) -> Decimal:
        """计算具体折扣金额"""
        return calculate_discount_amount(
            self.discount_type,
            self.discount_value,
            subtotal,
            cap=self.maximum_discount,
            shipping_cost=shipping_cost
        )


class CouponCreate(BaseModel):
    """创建优惠券模型"""

    code: str = Field(..., min_length=1, max_length=50)
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=500)
    discount_type: DiscountType
    discount_value: Decimal = Field(..., ge=0)
    minimum_order_amount: Optional[Decimal] = Field(None, ge=0)
    maximum_discount: Optional[Decimal] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    per_user_limit: Optional[int] = Field(None, ge=1)
    first_order_only: bool = False
    applicable_product_ids: Optional[List[str]] = None
    applicable_category_ids: Optional[List[str]] = None
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True

    @validator('code')
    def normalize_code(cls, v):
        code = normalize_coupon_code(v)
        if not code:
            raise ValueError('coupon code cannot be blank')
        return code

    @validator('discount_value')
    def validate_discount_value(cls, v, values):
        """验证折扣值"""
        discount_type = values.get('discount_type')
        if discount_type == DiscountType.PERCENTAGE and v > 100:
            raise ValueError('percentage discount cannot exceed 100')
        if discount_type == DiscountType.FIXED and v <= 0:
            raise ValueError('fixed discount must be greater than 0')
        return v

    @validator('starts_at')
    def normalize_starts_at(cls, v):
        return as_utc(v)

    @validator('expires_at')
    def validate_validity_period(cls, v, values):
        """验证有效期"""
        v = as_utc(v)
        starts_at = values.get('starts_at')
        if v and starts_at and v <= starts_at:
            raise ValueError('expires_at must be after starts_at')
        return v


class CouponUpdate(BaseModel):
    """更新优惠券模型（used_count 不允许手工修改）"""

    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=500)
    discount_value: Optional[Decimal] = Field(None, ge=0)
    minimum_order_amount: Optional[Decimal] = Field(None, ge=0)
    maximum_discount: Optional[Decimal] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    per_user_limit: Optional[int] = Field(None, ge=1)
    first_order_only: Optional[bool] = None
    applicable_product_ids: Optional[List[str]] = None
    applicable_category_ids: Optional[List[str]] = None
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None

    @validator('starts_at', 'expires_at')
    def normalize_times(cls, v):
        return as_utc(v)


class CouponValidation(BaseModel):
    """优惠券验证结果"""

    is_valid: bool = Field(..., description="是否有效")
    coupon: Optional[Coupon] = Field(None, description="优惠券信息")
    rejection: Optional[CouponRejection] = Field(None, description="失败原因")
    discount_amount: Decimal = Field(default=ZERO, description="折扣金额")
