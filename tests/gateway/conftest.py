"""tests/gateway 测试配置 -- FastAPI app + httpx AsyncClient

app.state 手动初始化（绕过 lifespan），复用根目录的 store_group fixture。
"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient


@pytest_asyncio.fixture
async def app(store_group, tmp_db_path: Path, monkeypatch):
    """创建测试用 FastAPI app 实例（未启用鉴权与后台清理）"""
    monkeypatch.setenv("AGENTROOM_DB_PATH", str(tmp_db_path))

    from agentroom.core.access import SharedTokenAccess
    from agentroom.gateway.main import create_app
    from agentroom.gateway.services.sse_hub import SSEHub

    application = create_app()

    # 手动初始化（绕过 lifespan）
    application.state.store_group = store_group
    application.state.sse_hub = SSEHub()
    application.state.access = SharedTokenAccess(store_group)
    application.state.sweeper = None

    yield application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def create_room(client: AsyncClient):
    """通过 API 创建聊天室并让指定角色 join，返回聊天室 JSON"""

    async def _create(
        team_roles: list[str] | None = None,
        join_roles: list[str] | None = None,
        name: str = "api room",
    ) -> dict:
        resp = await client.post(
            "/api/chatrooms",
            json={"name": name, "team_roles": team_roles or ["builder", "reviewer"]},
        )
        assert resp.status_code == 201, resp.text
        room = resp.json()
        for role in join_roles or []:
            joined = await client.post(
                f"/api/chatrooms/{room['chatroom_id']}/participants/{role}/join"
            )
            assert joined.status_code == 200, joined.text
        return room

    return _create
