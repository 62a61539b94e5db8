"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、WAL 模式、清理调度状态、磁盘空间。
"""

import shutil
from pathlib import Path

import structlog
from agentroom.core.config import get_db_path
from agentroom.core.store import verify_wal_mode
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 读连接可查询
    2. wal_mode: 写连接处于 WAL 模式
    3. sweeper: 后台清理状态（running / disabled / stopped）
    4. disk_space_mb: 数据库所在磁盘剩余空间
    """
    checks: dict = {}
    all_ok = True
    store_group = getattr(request.app.state, "store_group", None)

    # 1. SQLite 连通性
    try:
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        log.warning("ready_check_failed", check="sqlite", error=str(e))
        checks["sqlite"] = f"error: {str(e)}"
        all_ok = False

    # 2. WAL 模式
    try:
        checks["wal_mode"] = "ok" if await verify_wal_mode(store_group.write_conn) else "off"
    except Exception as e:
        checks["wal_mode"] = f"error: {str(e)}"
        all_ok = False

    # 3. 清理调度（不影响就绪判定）
    sweeper = getattr(request.app.state, "sweeper", None)
    if sweeper is None:
        checks["sweeper"] = "disabled"
    else:
        checks["sweeper"] = "running" if sweeper.running else "stopped"

    # 4. 磁盘空间
    try:
        db_dir = Path(get_db_path()).parent
        target = db_dir if db_dir.exists() else Path("/")
        checks["disk_space_mb"] = shutil.disk_usage(target).free // (1024 * 1024)
    except Exception:
        checks["disk_space_mb"] = 0
        all_ok = False

    status_code = 200 if all_ok else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": "ready" if all_ok else "not_ready",
            "checks": checks,
        },
    )
