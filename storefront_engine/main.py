from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError
import uvicorn

from storefront_engine.core.config import settings
from storefront_engine.core.redis import redis_manager
from storefront_engine.core.database import init_database, close_database
from storefront_engine.core.exceptions import EngineException
from storefront_engine.services.common_cache import rule_cache
from storefront_engine.api.health import router as health_router
from storefront_engine.api.coupons import router as coupons_router
from storefront_engine.api.discount_rules import router as discount_rules_router
from storefront_engine.api.checkout import router as checkout_router
from storefront_engine.api.carts import router as carts_router
from storefront_engine.api.sweep import router as sweep_router
from storefront_engine.api.exceptions import (
    validation_exception_handler,
    http_exception_handler,
    database_exception_handler,
    general_exception_handler,
    engine_exception_handler
)

# 简化日志配置
import logging

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger.info("正在启动定价与召回引擎")

    try:
        await init_database()
        logger.info("数据库初始化成功")

        if settings.cache_enabled:
            await redis_manager.init_redis()
            rule_cache.bind(redis_manager.redis_pool)
            logger.info("Redis初始化成功")

        logger.info("应用启动完成")

    except Exception as e:
        logger.error(f"应用启动失败: {e}")
        raise

    yield

    logger.info("正在关闭应用")
    await close_database()
    if settings.cache_enabled:
        rule_cache.unbind()
        await redis_manager.close_redis()
    logger.info("应用关闭完成")


# 创建FastAPI应用
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="店铺定价与购物车召回引擎 - 优惠券/自动折扣决策, 放弃购物车检测与提醒",
    debug=settings.debug,
    lifespan=lifespan
)

# CORS中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# 注册路由
app.include_router(health_router)
app.include_router(coupons_router)
app.include_router(discount_rules_router)
app.include_router(checkout_router)
app.include_router(carts_router)
app.include_router(sweep_router)

# 注册异常处理器
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(SQLAlchemyError, database_exception_handler)
app.add_exception_handler(EngineException, engine_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)


@app.get("/")
async def root():
    """根路径"""
    return {
        "message": f"欢迎使用 {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    uvicorn.run(
        "storefront_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
