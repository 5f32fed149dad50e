"""
引擎异常定义

业务规则拒绝（优惠券过期、次数用尽等）不走异常，见 models.coupon.CouponRejection。
"""

from typing import Any, Dict, Optional


class EngineException(Exception):
    """引擎异常基类"""

    status_code = 400

    def __init__(
        self,
        message: str,
        code: str = "ENGINE_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error_code": self.code,
            "message": self.message,
            "details": self.details
        }


class InvalidInputError(EngineException, ValueError):
    """输入格式错误，直接拒绝，不做任何处理"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="INVALID_INPUT", details=details)


class NotFoundError(EngineException):
    """后台管理操作的记录不存在"""

    status_code = 404

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="NOT_FOUND", details=details)


class StateConflictError(EngineException):
    """记录当前状态不允许该后台操作"""

    status_code = 409

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="STATE_CONFLICT", details=details)


class StoreUnavailableError(EngineException):
    """存储不可用，调用方可重试"""

    status_code = 503

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="STORE_UNAVAILABLE", details=details)


class NotificationError(EngineException):
    """通知通道发送失败，下一轮扫描会重试"""

    status_code = 503

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="NOTIFICATION_FAILED", details=details)
