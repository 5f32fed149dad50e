"""
自动折扣规则服务
规则条件判断、最佳规则选择以及后台管理
"""

from typing import List, Optional, Tuple
from decimal import Decimal
from datetime import datetime

import structlog
from pydantic import ValidationError

from storefront_engine.core.config import settings
from storefront_engine.core.exceptions import InvalidInputError, NotFoundError
from storefront_engine.core.timeutils import as_utc, utcnow
from storefront_engine.models.cart import CartContext
from storefront_engine.models.discount import (
    AutoDiscountRule,
    AutoDiscountRuleCreate,
    AutoDiscountRuleType,
    AutoDiscountRuleUpdate,
)
from storefront_engine.repositories.discount_rule_repository import DiscountRuleRepository
from storefront_engine.services.common_cache import SimpleCache, rule_cache

logger = structlog.get_logger()

ACTIVE_RULES_CACHE_KEY = "active"


def is_rule_eligible(rule: AutoDiscountRule, cart: CartContext, now: datetime) -> bool:
    """判断规则对当前购物车是否成立"""
    now = as_utc(now)
    if not rule.is_active or not rule.is_within_window(now):
        return False

    # 设置了最低消费的规则, 无论类型都要满足
    if rule.min_purchase is not None and cart.subtotal < rule.min_purchase:
        return False

    conditions = rule.conditions or {}
    if rule.rule_type == AutoDiscountRuleType.CART_TOTAL:
        return True
    if rule.rule_type == AutoDiscountRuleType.FIRST_ORDER:
        return cart.is_first_order
    if rule.rule_type == AutoDiscountRuleType.BULK_PURCHASE:
        min_quantity = conditions.get("min_quantity")
        return min_quantity is not None and cart.total_quantity >= int(min_quantity)
    if rule.rule_type == AutoDiscountRuleType.LOYALTY_TIER:
        return cart.loyalty_tier is not None and cart.loyalty_tier in (conditions.get("tiers") or [])
    if rule.rule_type == AutoDiscountRuleType.BIRTHDAY:
        return cart.is_birthday
    if rule.rule_type == AutoDiscountRuleType.ABANDONED_CART:
        return cart.has_abandoned_cart
    return False


def rule_sort_key(rule: AutoDiscountRule) -> Tuple[int, datetime]:
    """优先级高者在前, 同优先级较新的在前"""
    return (rule.priority, rule.created_at)


class DiscountRuleService:
    """自动折扣规则服务"""

    def __init__(self, rule_repo: DiscountRuleRepository, cache: Optional[SimpleCache] = None):
        self.rule_repo = rule_repo
        self.cache = cache or rule_cache
        self.cache_ttl = settings.pricing.rule_cache_ttl

    async def get_enabled_rules(self, use_cache: bool = True) -> List[AutoDiscountRule]:
        """所有启用的规则（有效期在使用时判断, 缓存内容与时间无关）"""
        if use_cache:
            cached_rules = await self.cache.get(ACTIVE_RULES_CACHE_KEY)
            if cached_rules is not None:
                return [AutoDiscountRule(**rule_data) for rule_data in cached_rules]

        db_rules = await self.rule_repo.list_rules(is_active=True)
        rules = [self.rule_repo.to_model(db_rule) for db_rule in db_rules]

        if use_cache:
            await self.cache.set(
                ACTIVE_RULES_CACHE_KEY,
                [rule.model_dump(mode="json") for rule in rules],
                ttl=self.cache_ttl
            )
        return rules

    async def find_best_rule(
        self,
        cart: CartContext,
        now: Optional[datetime] = None
    ) -> Optional[AutoDiscountRule]:
        """选出唯一一条成立的规则, 规则之间从不叠加"""
        now = as_utc(now) or utcnow()
        eligible = [rule for rule in await self.get_enabled_rules() if is_rule_eligible(rule, cart, now)]
        if not eligible:
            return None
        return max(eligible, key=rule_sort_key)

    async def evaluate(
        self,
        cart: CartContext,
        now: Optional[datetime] = None
    ) -> Tuple[Optional[AutoDiscountRule], Decimal]:
        """最佳规则及其折扣金额"""
        rule = await self.find_best_rule(cart, now)
        if rule is None:
            return None, Decimal("0")
        return rule, rule.calculate_discount(cart.subtotal, cart.shipping_cost)

    # ---- 后台管理 ----

    async def get_rule(self, rule_id: str) -> AutoDiscountRule:
        db_rule = await self.rule_repo.get_by_id(rule_id)
        if not db_rule:
            raise NotFoundError(f"discount rule {rule_id} not found")
        return self.rule_repo.to_model(db_rule)

    async def list_rules(self, is_active: Optional[bool] = None) -> List[AutoDiscountRule]:
        db_rules = await self.rule_repo.list_rules(is_active=is_active)
        return [self.rule_repo.to_model(db_rule) for db_rule in db_rules]

    async def create_rule(self, rule_create: AutoDiscountRuleCreate) -> AutoDiscountRule:
        db_rule = await self.rule_repo.create(rule_create.model_dump())
        await self.rule_repo.commit()
        await self._invalidate()
        logger.info("自动折扣规则已创建", rule_id=db_rule.id, rule_type=db_rule.rule_type)
        return self.rule_repo.to_model(db_rule)

    async def update_rule(self, rule_id: str, rule_update: AutoDiscountRuleUpdate) -> AutoDiscountRule:
        """更新规则, 合并后的规则需满足与创建时相同的约束"""
        current = await self.get_rule(rule_id)
        update_data = rule_update.model_dump(exclude_unset=True)

        merged = current.model_dump(include=set(AutoDiscountRuleCreate.model_fields))
        merged.update(update_data)
        try:
            AutoDiscountRuleCreate(**merged)
        except ValidationError as e:
            raise InvalidInputError(
                "discount rule update is invalid",
                details={"errors": [error["msg"] for error in e.errors()]}
            )

        db_rule = await self.rule_repo.update(rule_id, update_data)
        await self.rule_repo.commit()
        await self._invalidate()
        logger.info("自动折扣规则已更新", rule_id=rule_id, fields=sorted(update_data))
        return self.rule_repo.to_model(db_rule)

    async def delete_rule(self, rule_id: str) -> None:
        if not await self.rule_repo.delete(rule_id):
            raise NotFoundError(f"discount rule {rule_id} not found")
        await self.rule_repo.commit()
        await self._invalidate()
        logger.info("自动折扣规则已删除", rule_id=rule_id)

    async def _invalidate(self) -> None:
        await self.cache.delete(ACTIVE_RULES_CACHE_KEY)
