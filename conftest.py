"""全局 pytest 配置 -- 临时 SQLite StoreGroup、事务辅助与聊天室工厂 fixture"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "sqlite" / "test.db"


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path) -> AsyncGenerator:
    """提供已初始化的 StoreGroup（读连接 + 写连接）"""
    from agentroom.core.store import create_store_group

    group = await create_store_group(str(tmp_db_path))
    yield group
    await group.close()


@pytest.fixture
def run(store_group) -> Callable[..., Awaitable[Any]]:
    """在单个写事务内执行引擎操作：await run(operation, *args, **kwargs)"""

    async def _run(operation, *args, **kwargs):
        async with store_group.transaction() as uow:
            return await operation(uow, *args, **kwargs)

    return _run


@pytest.fixture
def now() -> datetime:
    return datetime.now(UTC)


@pytest.fixture
def make_room(run):
    """创建聊天室并让指定角色加入

    用法: room = await make_room(["builder", "reviewer"], join_roles=["builder"])
    """
    from agentroom.core.engine import create_chatroom, join

    async def _make(
        team_roles: list[str] | None = None,
        entry_point: str | None = None,
        join_roles: list[str] | None = None,
        name: str = "test room",
    ):
        room = await run(
            create_chatroom,
            team_roles or ["builder", "reviewer"],
            name=name,
            team_entry_point=entry_point,
        )
        for role in join_roles or []:
            await run(join, room.chatroom_id, role)
        return room

    return _make
