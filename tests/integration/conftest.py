"""集成测试共享 fixture"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from agentroom.core.access import SharedTokenAccess
from agentroom.gateway.services.sse_hub import SSEHub
from httpx import ASGITransport, AsyncClient


@pytest_asyncio.fixture
async def integration_app(store_group, tmp_db_path: Path, monkeypatch):
    """集成测试用 FastAPI app"""
    monkeypatch.setenv("AGENTROOM_DB_PATH", str(tmp_db_path))

    from agentroom.gateway.main import create_app

    app = create_app()
    app.state.store_group = store_group
    app.state.sse_hub = SSEHub()
    app.state.access = SharedTokenAccess(store_group)
    app.state.sweeper = None

    yield app


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
    ) as ac:
        yield ac
