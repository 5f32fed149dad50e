from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from storefront_engine.api.dependencies import get_coupon_service
from storefront_engine.models.coupon import Coupon, CouponCreate, CouponUpdate
from storefront_engine.services.coupon_service import CouponService

router = APIRouter(prefix="/coupons", tags=["优惠券管理"])


@router.get("", response_model=List[Coupon])
async def list_coupons(
    is_active: Optional[bool] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: CouponService = Depends(get_coupon_service)
):
    return await service.list_coupons(is_active=is_active, limit=limit, offset=offset)


@router.post("", response_model=Coupon, status_code=201)
async def create_coupon(coupon: CouponCreate, service: CouponService = Depends(get_coupon_service)):
    """创建优惠券, 代码统一转为大写"""
    return await service.create_coupon(coupon)


@router.get("/{coupon_id}", response_model=Coupon)
async def get_coupon(coupon_id: str, service: CouponService = Depends(get_coupon_service)):
    return await service.get_coupon(coupon_id)


@router.patch("/{coupon_id}", response_model=Coupon)
async def update_coupon(
    coupon_id: str,
    coupon: CouponUpdate,
    service: CouponService = Depends(get_coupon_service)
):
    return await service.update_coupon(coupon_id, coupon)


@router.delete("/{coupon_id}", status_code=204)
async def delete_coupon(coupon_id: str, service: CouponService = Depends(get_coupon_service)):
    await service.delete_coupon(coupon_id)


@router.get("/{coupon_id}/stats")
async def get_coupon_stats(coupon_id: str, service: CouponService = Depends(get_coupon_service)):
    """使用次数与核销统计"""
    return await service.get_coupon_stats(coupon_id)
