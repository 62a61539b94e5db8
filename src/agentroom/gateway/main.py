"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭、访问控制、掉线清理调度、路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from agentroom.core.access import SharedTokenAccess
from agentroom.core.config import get_db_path
from agentroom.core.exceptions import AgentRoomError
from agentroom.core.store import create_store_group
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from starlette.responses import JSONResponse

from .config import load_gateway_config
from .middleware.logging_config import setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import chatrooms, handoff, health, messages, participants, stream, tasks
from .services.sse_hub import SSEHub
from .services.sweeper import StaleAgentSweeper

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 DB 与后台清理，关闭时清理连接"""
    config = load_gateway_config()
    app.state.gateway_config = config

    store_group = await create_store_group(get_db_path())
    app.state.store_group = store_group
    app.state.sse_hub = SSEHub()
    app.state.access = SharedTokenAccess(
        store_group,
        token=config.access_token.get_secret_value() if config.access_token else None,
        allowed_chatrooms=config.allowed_chatrooms,
    )

    sweeper = None
    if config.sweeper_enabled:
        sweeper = StaleAgentSweeper(
            store_group,
            app.state.sse_hub,
            interval_s=config.sweep_interval_s,
        )
        sweeper.start()
    app.state.sweeper = sweeper

    log.info(
        "gateway_started",
        auth_enabled=app.state.access.enabled,
        sweeper_enabled=config.sweeper_enabled,
        sweep_interval_s=config.sweep_interval_s,
    )

    yield

    if sweeper is not None:
        await sweeper.stop()
    await store_group.close()


async def agentroom_error_handler(request: Request, exc: AgentRoomError) -> JSONResponse:
    """AgentRoomError -> {"error": {"code", "message", "details"}}"""
    log.warning(
        "request_rejected",
        code=exc.code,
        status_code=exc.status_code,
        error=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": exc.code,
                "message": exc.message,
                "details": jsonable_encoder(exc.details),
            }
        },
    )


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="AgentRoom Gateway",
        version="0.1.0",
        description="多 Agent 协作聊天室编排 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    app.add_exception_handler(AgentRoomError, agentroom_error_handler)

    setup_logging()

    app.include_router(chatrooms.router, tags=["chatrooms"])
    app.include_router(participants.router, tags=["participants"])
    app.include_router(messages.router, tags=["messages"])
    app.include_router(handoff.router, tags=["handoff"])
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(stream.router, tags=["stream"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
