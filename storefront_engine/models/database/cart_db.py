"""
购物车快照数据库模型
"""

from sqlalchemy import Column, String, Integer, Numeric, JSON, CheckConstraint, Index, text
from sqlalchemy.sql import func
from storefront_engine.core.database import Base
from storefront_engine.core.timeutils import utcnow
from storefront_engine.models.database.types import UTCDateTime

OPEN_SNAPSHOT_CLAUSE = "recovered_at IS NULL AND converted_at IS NULL"


class CartSnapshotDB(Base):
    """购物车快照表（历史记录, 不做物理删除）"""

    __tablename__ = "cart_snapshots"

    # 主键和会话信息
    id = Column(String(50), primary_key=True, comment="快照ID")
    session_id = Column(String(128), nullable=False, index=True, comment="会话ID")
    user_id = Column(String(50), index=True, comment="用户ID, 游客为空")
    customer_email = Column(String(255), comment="联系邮箱")
    customer_name = Column(String(255), comment="客户称呼")

    # 购物车内容
    items = Column(JSON, nullable=False, comment="商品行列表")
    item_count = Column(Integer, nullable=False, default=0, comment="商品件数")
    cart_total = Column(Numeric(12, 2), nullable=False, default=0, comment="购物车金额")
    last_activity_at = Column(UTCDateTime(), nullable=False, index=True, comment="最后活动时间")

    # 生命周期
    abandoned_at = Column(UTCDateTime(), index=True, comment="放弃时间")
    recovered_at = Column(UTCDateTime(), comment="召回时间")
    recovered_order_id = Column(String(50), comment="召回订单ID")
    converted_at = Column(UTCDateTime(), comment="放弃前下单时间")
    converted_order_id = Column(String(50), comment="放弃前下单订单ID")

    # 提醒
    reminder_sent_count = Column(Integer, nullable=False, default=0, comment="已发送提醒数")
    first_reminder_sent_at = Column(UTCDateTime(), comment="第一次提醒时间")
    second_reminder_sent_at = Column(UTCDateTime(), comment="第二次提醒时间")
    final_reminder_sent_at = Column(UTCDateTime(), comment="最后一次提醒时间")
    reminder_claim_token = Column(String(50), comment="发送中占用标识")
    reminder_claimed_at = Column(UTCDateTime(), comment="占用时间")

    # 时间戳
    created_at = Column(UTCDateTime(), default=utcnow, server_default=func.now(), comment="创建时间")
    updated_at = Column(UTCDateTime(), default=utcnow, onupdate=utcnow, comment="更新时间")

    __table_args__ = (
        CheckConstraint(
            "reminder_sent_count >= 0 AND reminder_sent_count <= 3",
            name="ck_cart_snapshots_reminder_count"
        ),
        # 每个会话最多一个未关闭的快照
        Index(
            "uq_cart_snapshots_open_session",
            "session_id",
            unique=True,
            postgresql_where=text(OPEN_SNAPSHOT_CLAUSE),
            sqlite_where=text(OPEN_SNAPSHOT_CLAUSE)
        ),
        {'comment': '购物车快照表'}
    )
