"""
通知发送通道

提醒服务只依赖 NotificationSender 协议; 发送失败抛出 NotificationError。
"""

from typing import Protocol, List, Dict, Any, Optional

import structlog

from storefront_engine.config.reminder_templates import ReminderTemplate
from storefront_engine.core.config import settings
from storefront_engine.core.exceptions import NotificationError
from storefront_engine.core.redis import RedisManager, redis_manager
from storefront_engine.models.cart import CartSnapshot

logger = structlog.get_logger()

EMAIL_CHANNEL = "email"


class NotificationSender(Protocol):
    """通知通道协议"""

    async def send(self, channel: str, template: ReminderTemplate, cart: CartSnapshot) -> None:
        ...


class RedisOutboxSender:
    """写入Redis发件箱队列, 由邮件投递进程消费"""

    def __init__(self, manager: Optional[RedisManager] = None, outbox_key: Optional[str] = None):
        self.manager = manager or redis_manager
        self.outbox_key = outbox_key or settings.notification_outbox_key

    async def send(self, channel: str, template: ReminderTemplate, cart: CartSnapshot) -> None:
        message = {"channel": channel, **template.render(cart)}
        if not await self.manager.push(self.outbox_key, message):
            raise NotificationError(
                "failed to enqueue reminder",
                details={"cart_id": cart.id, "template": template.checkpoint.value}
            )
        logger.info("提醒已写入发件箱", cart_id=cart.id, template=template.checkpoint.value)


class LoggingNotificationSender:
    """只记录日志不真正发送（本地调试 / 演练）"""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    async def send(self, channel: str, template: ReminderTemplate, cart: CartSnapshot) -> None:
        message = {"channel": channel, **template.render(cart)}
        self.sent.append(message)
        logger.info("提醒演练发送", cart_id=cart.id, template=template.checkpoint.value, to=cart.customer_email)


def build_notification_sender() -> NotificationSender:
    """启用Redis时写入发件箱, 否则仅记录日志"""
    if settings.cache_enabled:
        return RedisOutboxSender()
    return LoggingNotificationSender()
