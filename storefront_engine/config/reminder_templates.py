"""
购物车提醒文案静态配置 - 每个提醒节点一份
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from storefront_engine.core.config import settings
from storefront_engine.models.cart import CartSnapshot, ReminderCheckpoint
from storefront_engine.models.discount import format_money

# 提醒文案配置字典, {code} 为召回优惠券代码
REMINDER_TEMPLATES_CONFIG: Dict[ReminderCheckpoint, Dict[str, Any]] = {
    ReminderCheckpoint.FIRST: {
        "subject": "🛒 You left something behind!",
        "urgency_text": "Complete your purchase before items sell out!",
        "with_discount_code": False,
    },
    ReminderCheckpoint.SECOND: {
        "subject": "⏰ Your cart is waiting for you!",
        "urgency_text": "Items in your cart are selling fast. Don't miss out!",
        "with_discount_code": False,
    },
    ReminderCheckpoint.FINAL: {
        "subject": "🎁 Final reminder: 10% off your cart!",
        "urgency_text": "Use code {code} for 10% off - valid for 24 hours only!",
        "with_discount_code": True,
    },
}


class ReminderTemplate(BaseModel):
    """提醒模板"""

    checkpoint: ReminderCheckpoint
    subject: str
    urgency_text: str
    discount_code: Optional[str] = None

    def render(self, cart: CartSnapshot) -> Dict[str, Any]:
        """生成发给通知通道的消息体"""
        return {
            "template": self.checkpoint.value,
            "to": cart.customer_email,
            "customer_name": cart.customer_name or "there",
            "subject": self.subject,
            "urgency_text": self.urgency_text,
            "discount_code": self.discount_code,
            "cart_id": cart.id,
            "cart_url": settings.recovery.cart_url,
            "cart_total": format_money(cart.cart_total, settings.pricing.currency_symbol),
            "items": [
                {"name": item.name or item.product_id, "quantity": item.quantity}
                for item in cart.items
            ],
        }


def get_reminder_template(checkpoint: ReminderCheckpoint) -> ReminderTemplate:
    """获取提醒节点对应的模板"""
    config = REMINDER_TEMPLATES_CONFIG[checkpoint]
    code = settings.recovery.comeback_coupon_code if config["with_discount_code"] else None
    return ReminderTemplate(
        checkpoint=checkpoint,
        subject=config["subject"],
        urgency_text=config["urgency_text"].format(code=code),
        discount_code=code
    )
