from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, validator

from storefront_engine.api.dependencies import get_abandonment_service, get_cart_tracker, get_reminder_service
from storefront_engine.core.timeutils import as_utc
from storefront_engine.models.cart import (
    CartItem,
    CartSnapshot,
    CartState,
    RecoveryResult,
    RecoveryStats,
    ReminderCheckpoint,
    TouchResult,
)
from storefront_engine.services.abandonment_service import AbandonmentService
from storefront_engine.services.cart_tracker_service import CartTrackerService
from storefront_engine.services.reminder_service import ReminderService

router = APIRouter(prefix="/carts", tags=["购物车召回"])


class CartActivityRequest(BaseModel):
    """购物车活动上报"""

    session_id: str
    items: List[CartItem] = Field(default_factory=list)
    total: Decimal
    user_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    now: Optional[datetime] = None

    @validator('now')
    def normalize_now(cls, v):
        return as_utc(v)


class OrderPlacedRequest(BaseModel):
    """订单落库通知"""

    order_id: str
    order_created_at: datetime
    session_id: Optional[str] = None
    customer_id: Optional[str] = None

    @validator('order_created_at')
    def normalize_order_time(cls, v):
        """不带时区的时间按UTC处理"""
        return as_utc(v)


class ReminderSendRequest(BaseModel):
    """后台手动发送提醒"""

    checkpoint: ReminderCheckpoint
    now: Optional[datetime] = None

    @validator('now')
    def normalize_now(cls, v):
        return as_utc(v)


@router.post("/activity", response_model=TouchResult)
async def touch_cart(request: CartActivityRequest, tracker: CartTrackerService = Depends(get_cart_tracker)):
    return await tracker.touch(
        session_id=request.session_id,
        items=request.items,
        total=request.total,
        user_id=request.user_id,
        customer_email=request.customer_email,
        customer_name=request.customer_name,
        now=request.now
    )


@router.post("/recovery", response_model=RecoveryResult)
async def reconcile_order(
    request: OrderPlacedRequest,
    service: AbandonmentService = Depends(get_abandonment_service)
):
    """订单与购物车快照对账"""
    return await service.reconcile_recovery(
        order_id=request.order_id,
        order_created_at=request.order_created_at,
        session_id=request.session_id,
        customer_id=request.customer_id
    )


@router.get("/stats", response_model=RecoveryStats)
async def recovery_stats(service: AbandonmentService = Depends(get_abandonment_service)):
    return await service.get_recovery_stats()


@router.get("", response_model=List[CartSnapshot])
async def list_carts(
    state: Optional[CartState] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: AbandonmentService = Depends(get_abandonment_service)
):
    return await service.list_carts(state=state, limit=limit, offset=offset)


@router.post("/{cart_id}/reminders", response_model=CartSnapshot)
async def send_cart_reminder(
    cart_id: str,
    request: ReminderSendRequest,
    service: ReminderService = Depends(get_reminder_service)
):
    """后台手动发送指定提醒节点; 已发送或已召回返回 409"""
    return await service.send_reminder(cart_id, request.checkpoint, now=request.now)
