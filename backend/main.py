import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# 在应用启动前加载环境变量
load_dotenv()

logger = logging.getLogger("pubflow")

_SENTRY_ENABLED = False
try:
    from pubflow.core.sentry_init import init_sentry

    _SENTRY_ENABLED = init_sentry()
    if _SENTRY_ENABLED:
        logger.info("[sentry] enabled")
except Exception as e:
    # 中文注释: Sentry 任何异常不得阻塞启动
    logger.warning("[sentry] init failed (ignored): %s", e)

from pubflow.api.v1 import doi, issues, submissions
from pubflow.core.config import CrossrefConfig
from pubflow.core.errors import PipelineError
from pubflow.core.middleware import ExceptionHandlerMiddleware, pipeline_error_handler
from pubflow.services.crossref_client import CrossrefClient


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 中文注释: 未配置 Crossref 时仍然启动，注册请求会落为 failed 行
    config = CrossrefConfig.from_env()
    if config is None:
        logger.warning("[crossref] CROSSREF_DEPOSITOR_EMAIL not set; DOI deposits will fail")
    app.state.crossref_client = CrossrefClient(config)
    yield


app = FastAPI(
    title="PubFlow API",
    description="Editorial decision, publication and DOI registration pipeline",
    version="1.0.0",
    lifespan=lifespan,
)


def _parse_frontend_origins() -> list[str]:
    """
    解析允许跨域的前端 Origins（FRONTEND_ORIGIN / FRONTEND_ORIGINS，逗号分隔）。
    """
    origins: list[str] = []

    single = (os.environ.get("FRONTEND_ORIGIN") or "").strip()
    if single:
        origins.append(single.rstrip("/"))

    many = (os.environ.get("FRONTEND_ORIGINS") or "").strip()
    for part in many.split(","):
        o = (part or "").strip().rstrip("/")
        if o:
            origins.append(o)

    if not origins:
        origins = ["http://localhost:3000"]
    return list(dict.fromkeys(origins))


# === 中间件配置 ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=_parse_frontend_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ExceptionHandlerMiddleware)
app.add_exception_handler(PipelineError, pipeline_error_handler)

# === 路由注册 ===
app.include_router(submissions.router, prefix="/api/v1")
app.include_router(issues.router, prefix="/api/v1")
app.include_router(doi.router, prefix="/api/v1")


@app.get("/")
async def root():
    return {"message": "PubFlow API is running", "docs": "/docs"}
