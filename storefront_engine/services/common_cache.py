"""
通用缓存工具
读多写少的自动折扣规则缓存, 复用 RedisManager 的连接池；未绑定连接时所有操作为空操作。
缓存读写失败只记录日志, 调用方回源数据库。
"""

import json
import logging
from typing import Optional, Any
import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class SimpleCache:
    """带key前缀的JSON缓存"""

    def __init__(self, redis_client: Optional[redis.Redis] = None, key_prefix: str = ""):
        self.redis_client = redis_client
        self.key_prefix = key_prefix

    def bind(self, redis_client: Optional[redis.Redis]) -> None:
        """绑定应用启动时创建的Redis连接池"""
        self.redis_client = redis_client
        if redis_client is not None:
            logger.info(f"{self.key_prefix}缓存已绑定Redis")

    def unbind(self) -> None:
        """应用关闭时解除绑定, 连接池由 RedisManager 关闭"""
        self.redis_client = None

    @property
    def enabled(self) -> bool:
        return self.redis_client is not None

    def _get_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> Optional[Any]:
        """读取缓存, 未命中返回None"""
        if not self.enabled:
            return None
        try:
            data = await self.redis_client.get(self._get_key(key))
        except RedisError as e:
            logger.error(f"获取缓存失败 {key}: {e}")
            return None
        return json.loads(data) if data else None

    async def set(self, key: str, value: Any, ttl: int = 60) -> bool:
        """写入缓存; ttl 为0表示不缓存"""
        if not self.enabled or ttl <= 0:
            return False
        try:
            await self.redis_client.setex(
                self._get_key(key), ttl, json.dumps(value, default=str, ensure_ascii=False)
            )
        except RedisError as e:
            logger.error(f"设置缓存失败 {key}: {e}")
            return False
        return True

    async def delete(self, key: str) -> bool:
        """规则变更后清除缓存"""
        if not self.enabled:
            return False
        try:
            return await self.redis_client.delete(self._get_key(key)) > 0
        except RedisError as e:
            logger.error(f"删除缓存失败 {key}: {e}")
            return False


# 自动折扣规则缓存实例
rule_cache = SimpleCache(key_prefix="discount_rule:")
