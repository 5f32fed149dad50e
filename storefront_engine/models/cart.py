"""
购物车相关数据模型 - 定价输入与购物车快照
"""

from decimal import Decimal
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, computed_field, validator
from enum import Enum

from storefront_engine.core.timeutils import as_utc
from storefront_engine.models.discount import ZERO


class CartState(str, Enum):
    """购物车快照状态"""
    ACTIVE = "active"  # 进行中
    ABANDONED = "abandoned"  # 已放弃
    RECOVERED = "recovered"  # 放弃后下单召回
    CONVERTED = "converted"  # 放弃前即已下单


class ReminderCheckpoint(str, Enum):
    """提醒节点, 顺序即发送顺序"""
    FIRST = "first"
    SECOND = "second"
    FINAL = "final"

    @property
    def index(self) -> int:
        return list(ReminderCheckpoint).index(self)

    @property
    def timestamp_field(self) -> str:
        return f"{self.value}_reminder_sent_at"


class CartItem(BaseModel):
    """购物车商品行"""

    product_id: str = Field(..., min_length=1, description="商品ID")
    name: str = Field(default="", description="商品名称")
    quantity: int = Field(default=1, description="数量")
    unit_price: Decimal = Field(default=ZERO, description="单价")
    category_id: Optional[str] = Field(None, description="分类ID")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class CartContext(BaseModel):
    """折扣计算输入：结账时的购物车信息

    数值合法性由 DiscountResolver 检查，这里不做范围限制。
    """

    subtotal: Decimal = Field(..., description="商品小计")
    items: List[CartItem] = Field(default_factory=list, description="商品行")
    is_first_order: bool = Field(default=False, description="是否首单")
    customer_id: Optional[str] = Field(None, description="客户ID, 游客为空")
    shipping_cost: Decimal = Field(default=ZERO, description="运费, 免运费券直接使用")
    loyalty_tier: Optional[str] = Field(None, description="会员等级")
    is_birthday: bool = Field(default=False, description="是否生日期间")
    has_abandoned_cart: bool = Field(default=False, description="是否来自被放弃的购物车")

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)


class CartSnapshot(BaseModel):
    """购物车快照"""

    id: str
    session_id: str
    user_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    items: List[CartItem] = Field(default_factory=list)
    item_count: int = 0
    cart_total: Decimal = ZERO
    last_activity_at: datetime
    abandoned_at: Optional[datetime] = None
    recovered_at: Optional[datetime] = None
    recovered_order_id: Optional[str] = None
    converted_at: Optional[datetime] = None
    converted_order_id: Optional[str] = None
    reminder_sent_count: int = 0
    first_reminder_sent_at: Optional[datetime] = None
    second_reminder_sent_at: Optional[datetime] = None
    final_reminder_sent_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @validator('items', pre=True)
    def default_items(cls, v):
        return v or []

    @validator(
        'last_activity_at', 'abandoned_at', 'recovered_at', 'converted_at',
        'first_reminder_sent_at', 'second_reminder_sent_at', 'final_reminder_sent_at',
        'created_at', 'updated_at'
    )
    def normalize_times(cls, v):
        return as_utc(v)

    @computed_field
    @property
    def state(self) -> CartState:
        """由时间戳推导状态"""
        if self.recovered_at:
            return CartState.RECOVERED
        if self.converted_at:
            return CartState.CONVERTED
        if self.abandoned_at:
            return CartState.ABANDONED
        return CartState.ACTIVE

    def reminder_sent_at(self, checkpoint: ReminderCheckpoint) -> Optional[datetime]:
        return getattr(self, checkpoint.timestamp_field)

    @property
    def last_reminder_sent_at(self) -> Optional[datetime]:
        sent = [self.reminder_sent_at(checkpoint) for checkpoint in ReminderCheckpoint]
        sent = [value for value in sent if value]
        return max(sent) if sent else None


class TouchResult(BaseModel):
    """购物车活动上报结果"""

    snapshot: CartSnapshot
    created: bool = False
    written: bool = True


class RecoveryStats(BaseModel):
    """放弃购物车统计"""

    total_abandoned: int = 0
    recovered: int = 0
    pending: int = 0
    recovery_rate: int = 0  # 百分比取整
    total_lost_revenue: Decimal = ZERO
    total_recovered_revenue: Decimal = ZERO
    avg_cart_value: Decimal = ZERO
    reminders_sent: int = 0


class RecoveryOutcome(str, Enum):
    """订单与购物车快照的对账结果"""
    RECOVERED = "recovered"
    CONVERTED = "converted"
    NO_MATCH = "no_match"


class ReminderOutcome(str, Enum):
    """单个提醒节点的发送结果"""
    SENT = "sent"
    SKIPPED = "skipped"  # 未满足发送条件或被其他任务占用
    FAILED = "failed"  # 通知通道失败, 占用已释放


class RecoveryResult(BaseModel):
    """下单对账结果, 同一订单重复对账返回相同结果"""

    outcome: RecoveryOutcome
    snapshot: Optional[CartSnapshot] = None


def _empty_sent_counts() -> Dict[str, int]:
    return {checkpoint.value: 0 for checkpoint in ReminderCheckpoint}


class SweepReport(BaseModel):
    """一次扫描的执行结果"""

    started_at: datetime
    detected: int = 0  # 本次新标记为放弃
    considered: int = 0  # 检查过的候选购物车
    sent: Dict[str, int] = Field(default_factory=_empty_sent_counts)
    failed: int = 0  # 发送失败, 下一轮重试
    skipped: int = 0  # 被其他扫描占用或状态已变化

    @validator('started_at')
    def normalize_started_at(cls, v):
        return as_utc(v)

    @property
    def total_sent(self) -> int:
        return sum(self.sent.values())
