from typing import Optional
from datetime import datetime
from decimal import Decimal
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, validator

from storefront_engine.api.dependencies import get_discount_resolver
from storefront_engine.core.timeutils import as_utc
from storefront_engine.models.cart import CartContext
from storefront_engine.models.resolution import DiscountResolution, DiscountSource, RedemptionOutcome
from storefront_engine.services.discount_resolver import DiscountResolver

router = APIRouter(prefix="/checkout/discounts", tags=["结账折扣"])


class ResolveRequest(BaseModel):
    """结账折扣计算请求"""

    cart: CartContext
    coupon_code: Optional[str] = None
    now: Optional[datetime] = None

    @validator('now')
    def normalize_now(cls, v):
        return as_utc(v)


class CommitRequest(BaseModel):
    """订单落库后核销请求"""

    order_id: str = Field(..., min_length=1)
    source: DiscountSource
    applied_id: Optional[str] = None
    customer_id: Optional[str] = None
    discount_amount: Optional[Decimal] = None
    coupon_code: Optional[str] = None
    now: Optional[datetime] = None

    @validator('now')
    def normalize_now(cls, v):
        return as_utc(v)


class CommitResponse(BaseModel):
    order_id: str
    outcome: RedemptionOutcome


@router.post("/resolve", response_model=DiscountResolution)
async def resolve_discount(request: ResolveRequest, resolver: DiscountResolver = Depends(get_discount_resolver)):
    """优惠券与自动规则二选一, 只读"""
    return await resolver.resolve(request.cart, coupon_code=request.coupon_code, now=request.now)


@router.post("/commit", response_model=CommitResponse)
async def commit_discount(request: CommitRequest, resolver: DiscountResolver = Depends(get_discount_resolver)):
    outcome = await resolver.commit(
        applied_id=request.applied_id,
        source=request.source,
        order_id=request.order_id,
        customer_id=request.customer_id,
        discount_amount=request.discount_amount,
        coupon_code=request.coupon_code,
        now=request.now
    )
    return CommitResponse(order_id=request.order_id, outcome=outcome)
