"""SC-2 持久性集成测试

进程重启后聊天室、队列位置计数器与任务状态完整。
"""

from pathlib import Path

from agentroom.core.access import SharedTokenAccess
from agentroom.core.store import create_store_group
from agentroom.gateway.main import create_app
from agentroom.gateway.services.sse_hub import SSEHub
from httpx import ASGITransport, AsyncClient


async def _start(db_path: str):
    app = create_app()
    store_group = await create_store_group(db_path)
    app.state.store_group = store_group
    app.state.sse_hub = SSEHub()
    app.state.access = SharedTokenAccess(store_group)
    app.state.sweeper = None
    return app, store_group


class TestSC2Durability:
    """SC-2: 进程重启后数据完整"""

    async def test_queue_survives_restart(self, tmp_path: Path, monkeypatch):
        """创建任务 -> 关闭 Store -> 重新打开 -> 队列与计数器延续"""
        db_path = str(tmp_path / "durable.db")
        monkeypatch.setenv("AGENTROOM_DB_PATH", db_path)

        # 第一次启动：建聊天室与两个任务
        app1, sg1 = await _start(db_path)
        async with AsyncClient(transport=ASGITransport(app=app1), base_url="http://test") as c1:
            room = (await c1.post("/api/chatrooms", json={"team_roles": ["builder"]})).json()
            base = f"/api/chatrooms/{room['chatroom_id']}"
            for content in ("first", "second"):
                resp = await c1.post(
                    f"{base}/tasks", json={"content": content, "created_by": "user"}
                )
                assert resp.status_code == 201

        # 关闭连接（模拟进程退出）
        await sg1.close()

        # 第二次启动：验证数据完整，新任务的位置继续递增
        app2, sg2 = await _start(db_path)
        try:
            async with AsyncClient(
                transport=ASGITransport(app=app2), base_url="http://test"
            ) as c2:
                tasks = (await c2.get(f"{base}/tasks")).json()["tasks"]
                assert [t["content"] for t in tasks] == ["first", "second"]
                assert [t["status"] for t in tasks] == ["pending", "queued"]

                third = (
                    await c2.post(f"{base}/tasks", json={"content": "third", "created_by": "user"})
                ).json()
                assert third["queue_position"] > max(t["queue_position"] for t in tasks)

                stored = (await c2.get(base)).json()
                assert stored["queue_position_counter"] == third["queue_position"]
        finally:
            await sg2.close()
