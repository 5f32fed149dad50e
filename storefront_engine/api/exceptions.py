from fastapi import Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
import logging

from storefront_engine.core.exceptions import EngineException

logger = logging.getLogger(__name__)


async def engine_exception_handler(request: Request, exc: EngineException) -> JSONResponse:
    """引擎异常: 输入错误 400, 记录不存在 404, 状态冲突 409, 存储/通知不可用 503"""
    if exc.status_code >= 500:
        logger.error(f"引擎异常 {request.url.path}: {exc.code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """请求体校验失败"""
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error_code": "VALIDATION_ERROR",
            "message": "请求参数校验失败",
            "details": {"errors": exc.errors()}
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error_code": "HTTP_ERROR",
            "message": str(exc.detail),
            "details": {}
        }
    )


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """未被服务层转换的数据库异常"""
    logger.error(f"数据库异常 {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={
            "success": False,
            "error_code": "STORE_UNAVAILABLE",
            "message": "存储暂不可用, 请稍后重试",
            "details": {}
        }
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"未处理异常 {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error_code": "INTERNAL_ERROR",
            "message": "服务器内部错误",
            "details": {}
        }
    )
