"""
折扣相关数据库模型
"""

from sqlalchemy import Column, String, Integer, Numeric, Text, Boolean, JSON
from sqlalchemy.sql import func
from storefront_engine.core.database import Base
from storefront_engine.core.timeutils import utcnow
from storefront_engine.models.database.types import UTCDateTime


class AutoDiscountRuleDB(Base):
    """自动折扣规则表"""

    __tablename__ = "auto_discount_rules"

    # 主键和基本信息
    id = Column(String(50), primary_key=True, comment="规则ID")
    name = Column(String(200), nullable=False, comment="规则名称")
    description = Column(Text, comment="规则描述")
    rule_type = Column(String(30), nullable=False, index=True, comment="规则类型")
    conditions = Column(JSON, comment="规则类型相关条件")

    # 折扣信息
    discount_type = Column(String(20), nullable=False, comment="折扣计算类型")
    discount_value = Column(Numeric(10, 2), nullable=False, comment="折扣值")
    min_purchase = Column(Numeric(10, 2), comment="最低消费")
    max_discount = Column(Numeric(10, 2), comment="最大折扣金额")
    priority = Column(Integer, nullable=False, default=0, index=True, comment="优先级")

    # 有效期和状态
    starts_at = Column(UTCDateTime(), comment="生效时间")
    expires_at = Column(UTCDateTime(), comment="失效时间")
    is_active = Column(Boolean, nullable=False, default=True, index=True, comment="是否启用")

    # 时间戳
    created_at = Column(UTCDateTime(), default=utcnow, server_default=func.now(), comment="创建时间")
    updated_at = Column(UTCDateTime(), default=utcnow, onupdate=utcnow, comment="更新时间")

    __table_args__ = (
        {'comment': '自动折扣规则表'}
    )


class DiscountRedemptionDB(Base):
    """订单折扣核销记录表, 每个订单最多一条"""

    __tablename__ = "discount_redemptions"

    id = Column(String(50), primary_key=True, comment="核销记录ID")
    order_id = Column(String(50), nullable=False, unique=True, comment="订单ID")
    source = Column(String(20), nullable=False, comment="折扣来源 coupon/auto_rule")
    applied_id = Column(String(50), nullable=False, index=True, comment="优惠券ID或规则ID")
    coupon_code = Column(String(50), comment="优惠券代码")
    customer_id = Column(String(50), index=True, comment="客户ID")
    discount_amount = Column(Numeric(10, 2), comment="折扣金额")
    redeemed_at = Column(UTCDateTime(), default=utcnow, server_default=func.now(), comment="核销时间")

    __table_args__ = (
        {'comment': '订单折扣核销记录表'}
    )
