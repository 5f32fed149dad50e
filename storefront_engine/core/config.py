from pydantic import BaseModel, Field, validator
from pydantic_settings import BaseSettings
from datetime import timedelta
from typing import Optional
from enum import Enum


class Environment(str, Enum):

    """运行环境枚举"""
    TESTING = "testing"
    PRODUCTION = "production"


class RecoveryPolicy(BaseModel):
    """购物车放弃检测与提醒策略"""

    # 闲置多久视为放弃
    idle_threshold_minutes: int = Field(default=60, gt=0)

    # 提醒节点，均从 abandoned_at 起算
    first_reminder_hours: int = Field(default=1, gt=0)
    second_reminder_hours: int = Field(default=24, gt=0)
    final_reminder_hours: int = Field(default=72, gt=0)

    # 同一购物车两次提醒之间的最小间隔
    min_reminder_gap_minutes: int = Field(default=60, ge=0)

    # 发送中占用(claim)的租约时长
    claim_lease_seconds: int = Field(default=300, gt=0)

    # 内容未变化时的写入节流窗口
    touch_throttle_seconds: int = Field(default=2, ge=0)

    sweep_batch_size: int = Field(default=500, gt=0)
    comeback_coupon_code: str = "COMEBACK10"
    cart_url: str = "/cart"

    @validator('second_reminder_hours')
    def validate_second_after_first(cls, v, values):
        """第二次提醒必须晚于第一次"""
        if 'first_reminder_hours' in values and v <= values['first_reminder_hours']:
            raise ValueError('second_reminder_hours must be greater than first_reminder_hours')
        return v

    @validator('final_reminder_hours')
    def validate_final_after_second(cls, v, values):
        """最后一次提醒必须晚于第二次"""
        if 'second_reminder_hours' in values and v <= values['second_reminder_hours']:
            raise ValueError('final_reminder_hours must be greater than second_reminder_hours')
        return v

    @property
    def idle_threshold(self) -> timedelta:
        return timedelta(minutes=self.idle_threshold_minutes)

    @property
    def checkpoint_offsets(self) -> tuple:
        """三个提醒节点相对 abandoned_at 的偏移"""
        return (
            timedelta(hours=self.first_reminder_hours),
            timedelta(hours=self.second_reminder_hours),
            timedelta(hours=self.final_reminder_hours),
        )

    @property
    def min_reminder_gap(self) -> timedelta:
        return timedelta(minutes=self.min_reminder_gap_minutes)

    @property
    def claim_lease(self) -> timedelta:
        return timedelta(seconds=self.claim_lease_seconds)

    @property
    def touch_throttle(self) -> timedelta:
        return timedelta(seconds=self.touch_throttle_seconds)


class PricingPolicy(BaseModel):
    """折扣计算相关配置"""

    currency_symbol: str = "৳"
    rule_cache_ttl: int = Field(default=60, ge=0)  # 自动折扣规则缓存秒数
    max_coupon_code_length: int = Field(default=50, gt=0)


class Settings(BaseSettings):

    # 应用基础配置
    app_name: str = "Storefront Pricing & Recovery Engine"
    app_version: str = "1.0.0"
    environment: Environment = Environment.TESTING
    debug: bool = True

    # 数据库配置
    database_url: Optional[str] = None
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "storefront_db"
    db_user: str = "storefront_user"
    db_password: str = "storefront_password"

    # Redis配置 (自动折扣规则缓存 + 提醒发件箱)
    redis_url: Optional[str] = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0
    cache_enabled: bool = True
    notification_outbox_key: str = "outbox:notifications"

    # 业务策略
    recovery: RecoveryPolicy = Field(default_factory=RecoveryPolicy)
    pricing: PricingPolicy = Field(default_factory=PricingPolicy)

    # 日志配置
    log_level: str = "INFO"

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def database_url_computed(self) -> str:
        """计算数据库URL"""
        if self.database_url:
            return self.database_url
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def redis_url_computed(self) -> str:
        """计算Redis URL"""
        if self.redis_url:
            return self.redis_url
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    class Config:
        env_file = ".env"
        case_sensitive = False
        env_nested_delimiter = "__"


# 全局配置实例
settings = Settings()
