"""
自动折扣规则数据库操作层
"""

from typing import List, Optional, Dict, Any
import uuid

from sqlalchemy import select, update, delete, desc
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_engine.models.discount import AutoDiscountRule
from storefront_engine.models.database.discount_db import AutoDiscountRuleDB


class DiscountRuleRepository:
    """自动折扣规则数据库操作层"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, rule_id: str) -> Optional[AutoDiscountRuleDB]:
        result = await self.db.execute(
            select(AutoDiscountRuleDB).where(AutoDiscountRuleDB.id == rule_id)
        )
        return result.scalar_one_or_none()

    async def list_rules(self, is_active: Optional[bool] = None) -> List[AutoDiscountRuleDB]:
        """后台规则列表, 按优先级降序"""
        query = select(AutoDiscountRuleDB)
        if is_active is not None:
            query = query.where(AutoDiscountRuleDB.is_active == is_active)
        query = query.order_by(desc(AutoDiscountRuleDB.priority), desc(AutoDiscountRuleDB.created_at))

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def create(self, rule_data: Dict[str, Any]) -> AutoDiscountRuleDB:
        """创建规则"""
        db_rule = AutoDiscountRuleDB(
            id=rule_data.pop("id", None) or str(uuid.uuid4()),
            **rule_data
        )
        self.db.add(db_rule)
        await self.db.flush()
        return db_rule

    async def update(self, rule_id: str, rule_data: Dict[str, Any]) -> Optional[AutoDiscountRuleDB]:
        """更新规则"""
        if rule_data:
            await self.db.execute(
                update(AutoDiscountRuleDB)
                .where(AutoDiscountRuleDB.id == rule_id)
                .values(**rule_data)
            )
        db_rule = await self.get_by_id(rule_id)
        if db_rule:
            await self.db.refresh(db_rule)
        return db_rule

    async def delete(self, rule_id: str) -> bool:
        """删除规则"""
        result = await self.db.execute(
            delete(AutoDiscountRuleDB).where(AutoDiscountRuleDB.id == rule_id)
        )
        return result.rowcount > 0

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    def to_model(self, db_rule: AutoDiscountRuleDB) -> AutoDiscountRule:
        """转换为Pydantic模型"""
        return AutoDiscountRule.model_validate(db_rule)
