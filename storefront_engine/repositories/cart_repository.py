"""
购物车快照数据库操作层

所有状态迁移都是单条带条件的 UPDATE, 以受影响行数判断是否生效,
多个扫描任务并发执行时同一迁移只会成功一次。
"""

from typing import List, Optional, Dict, Any
from datetime import datetime
from decimal import Decimal
import uuid

from sqlalchemy import select, update, and_, or_, desc, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_engine.models.cart import CartSnapshot, CartState, ReminderCheckpoint
from storefront_engine.models.database.cart_db import CartSnapshotDB


MAX_REMINDERS = len(ReminderCheckpoint)


def _open_conditions():
    """未召回、未转化"""
    return [
        CartSnapshotDB.recovered_at.is_(None),
        CartSnapshotDB.converted_at.is_(None),
    ]


def _checkpoint_column(checkpoint: ReminderCheckpoint):
    return getattr(CartSnapshotDB, checkpoint.timestamp_field)


class CartRepository:
    """购物车快照数据库操作类"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, snapshot_id: str) -> Optional[CartSnapshotDB]:
        result = await self.db.execute(
            select(CartSnapshotDB).where(CartSnapshotDB.id == snapshot_id)
        )
        return result.scalar_one_or_none()

    async def reload(self, snapshot_id: str) -> Optional[CartSnapshotDB]:
        """条件 UPDATE 之后重新读取最新状态"""
        db_snapshot = await self.get_by_id(snapshot_id)
        if db_snapshot:
            await self.db.refresh(db_snapshot)
        return db_snapshot

    async def get_open_by_session(self, session_id: str) -> Optional[CartSnapshotDB]:
        """会话当前未关闭的快照"""
        result = await self.db.execute(
            select(CartSnapshotDB)
            .where(and_(CartSnapshotDB.session_id == session_id, *_open_conditions()))
            .order_by(desc(CartSnapshotDB.last_activity_at))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create(self, snapshot_data: Dict[str, Any]) -> CartSnapshotDB:
        db_snapshot = CartSnapshotDB(
            id=snapshot_data.pop("id", None) or str(uuid.uuid4()),
            reminder_sent_count=0,
            **snapshot_data
        )
        self.db.add(db_snapshot)
        await self.db.flush()
        return db_snapshot

    async def update_activity(self, snapshot_id: str, activity_data: Dict[str, Any]) -> Optional[CartSnapshotDB]:
        """写入新的购物车内容和活动时间（不触碰生命周期字段）"""
        await self.db.execute(
            update(CartSnapshotDB)
            .where(CartSnapshotDB.id == snapshot_id)
            .values(**activity_data)
        )
        return await self.reload(snapshot_id)

    # ---- 放弃检测 ----

    async def mark_abandoned(self, now: datetime, idle_cutoff: datetime) -> int:
        """把闲置超过阈值的非空购物车标记为放弃, 返回本次标记数量"""
        result = await self.db.execute(
            update(CartSnapshotDB)
            .where(
                and_(
                    CartSnapshotDB.abandoned_at.is_(None),
                    *_open_conditions(),
                    CartSnapshotDB.item_count > 0,
                    CartSnapshotDB.last_activity_at <= idle_cutoff
                )
            )
            .values(abandoned_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # ---- 召回 ----

    async def get_by_order_id(self, order_id: str) -> Optional[CartSnapshotDB]:
        """按召回/转化订单查找快照"""
        result = await self.db.execute(
            select(CartSnapshotDB).where(
                or_(
                    CartSnapshotDB.recovered_order_id == order_id,
                    CartSnapshotDB.converted_order_id == order_id
                )
            ).limit(1)
        )
        return result.scalar_one_or_none()

    async def find_open_for_order(
        self,
        session_id: Optional[str] = None,
        customer_id: Optional[str] = None
    ) -> Optional[CartSnapshotDB]:
        """查找订单对应的未关闭快照: 先按会话, 再按客户（最近活动优先）"""
        if session_id:
            snapshot = await self.get_open_by_session(session_id)
            if snapshot:
                return snapshot

        if customer_id:
            result = await self.db.execute(
                select(CartSnapshotDB)
                .where(and_(CartSnapshotDB.user_id == customer_id, *_open_conditions()))
                .order_by(desc(CartSnapshotDB.abandoned_at.is_not(None)), desc(CartSnapshotDB.last_activity_at))
                .limit(1)
            )
            return result.scalar_one_or_none()

        return None

    async def mark_recovered(self, snapshot_id: str, order_id: str, recovered_at: datetime) -> bool:
        """abandoned -> recovered, 仅当订单时间晚于放弃时间"""
        result = await self.db.execute(
            update(CartSnapshotDB)
            .where(
                and_(
                    CartSnapshotDB.id == snapshot_id,
                    *_open_conditions(),
                    CartSnapshotDB.abandoned_at.is_not(None),
                    CartSnapshotDB.abandoned_at < recovered_at
                )
            )
            .values(
                recovered_at=recovered_at,
                recovered_order_id=order_id,
                reminder_claim_token=None,
                reminder_claimed_at=None
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_converted(self, snapshot_id: str, order_id: str, converted_at: datetime) -> bool:
        """未构成召回的下单: 关闭快照, 不再参与放弃检测和提醒"""
        result = await self.db.execute(
            update(CartSnapshotDB)
            .where(and_(CartSnapshotDB.id == snapshot_id, *_open_conditions()))
            .values(
                converted_at=converted_at,
                converted_order_id=order_id,
                reminder_claim_token=None,
                reminder_claimed_at=None
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ---- 提醒 ----

    async def list_reminder_candidates(self, limit: int = 500) -> List[CartSnapshotDB]:
        """已放弃、未关闭、提醒未发满且有联系方式的快照"""
        result = await self.db.execute(
            select(CartSnapshotDB)
            .where(
                and_(
                    CartSnapshotDB.abandoned_at.is_not(None),
                    *_open_conditions(),
                    CartSnapshotDB.reminder_sent_count < MAX_REMINDERS,
                    CartSnapshotDB.customer_email.is_not(None)
                )
            )
            .order_by(CartSnapshotDB.abandoned_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    def _checkpoint_gates(
        self,
        checkpoint: ReminderCheckpoint,
        due_cutoff: datetime,
        gap_cutoff: datetime
    ) -> list:
        """提醒节点的全部发送条件"""
        conditions = [
            CartSnapshotDB.abandoned_at.is_not(None),
            *_open_conditions(),
            CartSnapshotDB.abandoned_at <= due_cutoff,
            _checkpoint_column(checkpoint).is_(None),
            CartSnapshotDB.reminder_sent_count == checkpoint.index,
            CartSnapshotDB.reminder_sent_count < MAX_REMINDERS,
        ]
        if checkpoint.index > 0:
            previous = list(ReminderCheckpoint)[checkpoint.index - 1]
            conditions.append(_checkpoint_column(previous) <= gap_cutoff)
        return conditions

    async def claim_checkpoint(
        self,
        snapshot_id: str,
        checkpoint: ReminderCheckpoint,
        token: str,
        now: datetime,
        due_cutoff: datetime,
        gap_cutoff: datetime,
        lease_cutoff: datetime
    ) -> bool:
        """占用提醒节点（租约）, 成功的扫描才允许调用通知发送"""
        result = await self.db.execute(
            update(CartSnapshotDB)
            .where(
                and_(
                    CartSnapshotDB.id == snapshot_id,
                    *self._checkpoint_gates(checkpoint, due_cutoff, gap_cutoff),
                    or_(
                        CartSnapshotDB.reminder_claim_token.is_(None),
                        CartSnapshotDB.reminder_claimed_at <= lease_cutoff
                    )
                )
            )
            .values(reminder_claim_token=token, reminder_claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_reminder_sent(
        self,
        snapshot_id: str,
        checkpoint: ReminderCheckpoint,
        token: str,
        sent_at: datetime
    ) -> bool:
        """发送成功后写入节点时间戳（提交点）: 仅当字段仍为空且占用者是自己"""
        column = _checkpoint_column(checkpoint)
        result = await self.db.execute(
            update(CartSnapshotDB)
            .where(
                and_(
                    CartSnapshotDB.id == snapshot_id,
                    *_open_conditions(),
                    column.is_(None),
                    CartSnapshotDB.reminder_sent_count == checkpoint.index,
                    CartSnapshotDB.reminder_claim_token == token
                )
            )
            .values(
                {
                    column: sent_at,
                    CartSnapshotDB.reminder_sent_count: CartSnapshotDB.reminder_sent_count + 1,
                    CartSnapshotDB.reminder_claim_token: None,
                    CartSnapshotDB.reminder_claimed_at: None,
                }
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release_claim(self, snapshot_id: str, token: str) -> bool:
        """发送失败时释放占用, 下一轮扫描重试"""
        result = await self.db.execute(
            update(CartSnapshotDB)
            .where(
                and_(
                    CartSnapshotDB.id == snapshot_id,
                    CartSnapshotDB.reminder_claim_token == token
                )
            )
            .values(reminder_claim_token=None, reminder_claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ---- 后台查询 ----

    async def list_carts(
        self,
        state: Optional[CartState] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[CartSnapshotDB]:
        """后台购物车列表"""
        query = select(CartSnapshotDB)
        if state == CartState.ACTIVE:
            query = query.where(and_(CartSnapshotDB.abandoned_at.is_(None), *_open_conditions()))
        elif state == CartState.ABANDONED:
            query = query.where(and_(CartSnapshotDB.abandoned_at.is_not(None), *_open_conditions()))
        elif state == CartState.RECOVERED:
            query = query.where(CartSnapshotDB.recovered_at.is_not(None))
        elif state == CartState.CONVERTED:
            query = query.where(CartSnapshotDB.converted_at.is_not(None))

        query = query.order_by(desc(CartSnapshotDB.created_at)).limit(limit).offset(offset)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_recovery_totals(self) -> Dict[str, Any]:
        """放弃/召回汇总数据"""
        is_abandoned = CartSnapshotDB.abandoned_at.is_not(None)
        is_recovered = CartSnapshotDB.recovered_at.is_not(None)
        is_pending = and_(is_abandoned, *_open_conditions())

        result = await self.db.execute(
            select(
                func.count(CartSnapshotDB.id).label("total_carts"),
                func.sum(case((is_abandoned, 1), else_=0)).label("total_abandoned"),
                func.sum(case((is_recovered, 1), else_=0)).label("recovered"),
                func.sum(case((is_pending, 1), else_=0)).label("pending"),
                func.sum(case((is_pending, CartSnapshotDB.cart_total), else_=0)).label("lost_revenue"),
                func.sum(case((is_recovered, CartSnapshotDB.cart_total), else_=0)).label("recovered_revenue"),
                func.sum(CartSnapshotDB.cart_total).label("total_value"),
                func.sum(CartSnapshotDB.reminder_sent_count).label("reminders_sent")
            )
        )
        row = result.fetchone()
        return {
            "total_carts": row.total_carts or 0,
            "total_abandoned": int(row.total_abandoned or 0),
            "recovered": int(row.recovered or 0),
            "pending": int(row.pending or 0),
            "lost_revenue": Decimal(str(row.lost_revenue or 0)),
            "recovered_revenue": Decimal(str(row.recovered_revenue or 0)),
            "total_value": Decimal(str(row.total_value or 0)),
            "reminders_sent": int(row.reminders_sent or 0)
        }

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    def to_model(self, db_snapshot: CartSnapshotDB) -> CartSnapshot:
        """转换为Pydantic模型"""
        return CartSnapshot.model_validate(db_snapshot)
