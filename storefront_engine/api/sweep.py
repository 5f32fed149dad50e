from typing import Optional
from datetime import datetime
from fastapi import APIRouter, Depends

from storefront_engine.api.dependencies import get_sweep_service
from storefront_engine.models.cart import SweepReport
from storefront_engine.services.recovery_sweep_service import RecoverySweepService

router = APIRouter(prefix="/internal/recovery", tags=["定时任务"])


@router.post("/sweep", response_model=SweepReport)
async def run_sweep(now: Optional[datetime] = None, service: RecoverySweepService = Depends(get_sweep_service)):
    """由定时任务调用; 可重叠执行"""
    return await service.sweep(now)
