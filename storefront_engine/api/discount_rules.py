from typing import List, Optional
from fastapi import APIRouter, Depends

from storefront_engine.api.dependencies import get_rule_service
from storefront_engine.models.discount import AutoDiscountRule, AutoDiscountRuleCreate, AutoDiscountRuleUpdate
from storefront_engine.services.discount_rule_service import DiscountRuleService

router = APIRouter(prefix="/discount-rules", tags=["自动折扣规则"])


@router.get("", response_model=List[AutoDiscountRule])
async def list_rules(is_active: Optional[bool] = None, service: DiscountRuleService = Depends(get_rule_service)):
    return await service.list_rules(is_active=is_active)


@router.post("", response_model=AutoDiscountRule, status_code=201)
async def create_rule(rule: AutoDiscountRuleCreate, service: DiscountRuleService = Depends(get_rule_service)):
    return await service.create_rule(rule)


@router.get("/{rule_id}", response_model=AutoDiscountRule)
async def get_rule(rule_id: str, service: DiscountRuleService = Depends(get_rule_service)):
    return await service.get_rule(rule_id)


@router.patch("/{rule_id}", response_model=AutoDiscountRule)
async def update_rule(
    rule_id: str,
    rule: AutoDiscountRuleUpdate,
    service: DiscountRuleService = Depends(get_rule_service)
):
    return await service.update_rule(rule_id, rule)


@router.delete("/{rule_id}", status_code=204)
async def delete_rule(rule_id: str, service: DiscountRuleService = Depends(get_rule_service)):
    await service.delete_rule(rule_id)
