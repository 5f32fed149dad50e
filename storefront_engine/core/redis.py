import redis.asyncio as aioredis
import json
from typing import Optional, Union
from storefront_engine.core.config import settings
import structlog

"redis连接管理器：规则缓存与提醒发件箱共用"

logger = structlog.get_logger()


class RedisManager:
    """Redis连接管理器"""

    def __init__(self):
        self.redis_pool: Optional[aioredis.Redis] = None

    async def init_redis(self) -> None:
        """初始化Redis连接池"""
        try:
            self.redis_pool = aioredis.from_url(
                settings.redis_url_computed,
                encoding="utf-8",
                decode_responses=True,
                max_connections=20,
                retry_on_timeout=True
            )
            # 测试连接
            await self.redis_pool.ping()
            logger.info("Redis连接初始化成功")
        except Exception as e:
            logger.error("Redis连接初始化失败", error=str(e))
            raise

    async def close_redis(self) -> None:
        """关闭Redis连接"""
        if self.redis_pool:
            await self.redis_pool.close()
            logger.info("Redis连接已关闭")

    async def ping(self) -> bool:
        """连接检查"""
        if not self.redis_pool:
            return False
        try:
            return bool(await self.redis_pool.ping())
        except Exception as e:
            logger.error("Redis ping失败", error=str(e))
            return False

    async def push(self, key: str, value: Union[str, dict, list]) -> bool:
        """追加到列表尾部（发件箱队列）"""
        if not self.redis_pool:
            logger.warning("Redis未初始化，无法写入队列", key=key)
            return False
        try:
            if isinstance(value, (dict, list)):
                value = json.dumps(value, ensure_ascii=False, default=str)
            await self.redis_pool.rpush(key, value)
            return True
        except Exception as e:
            logger.error("Redis写入队列失败", key=key, error=str(e))
            return False


# 全局Redis管理器实例
redis_manager = RedisManager()
