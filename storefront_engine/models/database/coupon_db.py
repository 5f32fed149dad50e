"""
优惠券数据库模型
"""

from sqlalchemy import Column, String, Integer, Numeric, Text, Boolean, JSON, CheckConstraint
from sqlalchemy.sql import func
from storefront_engine.core.database import Base
from storefront_engine.core.timeutils import utcnow
from storefront_engine.models.database.types import UTCDateTime


class CouponDB(Base):
    """优惠券数据库表"""

    __tablename__ = "coupons"

    # 主键和基本信息
    id = Column(String(50), primary_key=True, comment="优惠券ID")
    code = Column(String(50), nullable=False, unique=True, index=True, comment="优惠券代码(大写)")
    title = Column(String(200), comment="优惠券标题")
    description = Column(Text, comment="优惠券描述")

    # 折扣信息
    discount_type = Column(String(20), nullable=False, comment="折扣类型")
    discount_value = Column(Numeric(10, 2), nullable=False, comment="折扣值")
    minimum_order_amount = Column(Numeric(10, 2), comment="最小订单金额")
    maximum_discount = Column(Numeric(10, 2), comment="最大折扣金额")

    # 使用限制
    usage_limit = Column(Integer, comment="总使用次数限制")
    used_count = Column(Integer, nullable=False, default=0, comment="已使用次数")
    per_user_limit = Column(Integer, comment="单用户使用次数限制")
    first_order_only = Column(Boolean, nullable=False, default=False, comment="仅限首单")

    # 适用范围
    applicable_product_ids = Column(JSON, comment="适用商品ID列表")
    applicable_category_ids = Column(JSON, comment="适用分类ID列表")

    # 有效期
    starts_at = Column(UTCDateTime(), index=True, comment="有效开始时间")
    expires_at = Column(UTCDateTime(), index=True, comment="有效结束时间")
    is_active = Column(Boolean, nullable=False, default=True, index=True, comment="是否启用")

    # 时间戳
    created_at = Column(UTCDateTime(), default=utcnow, server_default=func.now(), comment="创建时间")
    updated_at = Column(UTCDateTime(), default=utcnow, onupdate=utcnow, comment="更新时间")

    __table_args__ = (
        CheckConstraint(
            "usage_limit IS NULL OR used_count <= usage_limit",
            name="ck_coupons_used_count_within_limit"
        ),
        {'comment': '优惠券信息表'}
    )
