import logging
import time

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from pubflow.core.errors import PipelineError
from pubflow.models.results import PipelineResult

# === 结构化日志配置 ===
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("pubflow")


class ExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """
    统一异常捕获中间件

    - PipelineError -> {success, error:{kind, message}, details}
    - 其他 HTTPException -> {detail, type}
    - 未知异常 -> 500，记录完整堆栈
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        try:
            response = await call_next(request)
            process_time = time.time() - start_time
            logger.info(
                "Method: %s Path: %s Status: %s Time: %.4fs",
                request.method,
                request.url.path,
                response.status_code,
                process_time,
            )
            return response
        except PipelineError as exc:
            return JSONResponse(
                status_code=exc.status_code,
                content=PipelineResult.from_error(exc).model_dump(mode="json"),
            )
        except HTTPException as exc:
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": exc.detail, "type": "http_exception"},
            )
        except Exception as e:
            logger.error("Unhandled Exception: %s", e, exc_info=True)
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal server error", "type": "server_error"},
            )


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    """
    FastAPI 会先于中间件处理 HTTPException 子类，这里注册同样的信封格式。
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=PipelineResult.from_error(exc).model_dump(mode="json"),
    )
