"""SC-1 端到端集成测试

用户消息 -> builder 认领并开始 -> 交接受限 -> 交给 reviewer -> reviewer 交还用户 -> 队列晋升
"""

from httpx import AsyncClient


class TestSC1EndToEnd:
    """SC-1: 一次完整的多 Agent 协作"""

    async def test_builder_reviewer_round_trip(self, client: AsyncClient):
        # 1. 建聊天室，两个 Agent 加入
        resp = await client.post(
            "/api/chatrooms",
            json={"name": "e2e", "team_roles": ["builder", "reviewer"]},
        )
        chatroom_id = resp.json()["chatroom_id"]
        base = f"/api/chatrooms/{chatroom_id}"
        for role in ("builder", "reviewer"):
            assert (await client.post(f"{base}/participants/{role}/join")).status_code == 200

        # 2. 用户发两条消息：第一条占据活跃槽位，第二条排队
        first = (
            await client.post(
                f"{base}/messages", json={"sender_role": "user", "content": "add csv export"}
            )
        ).json()
        second = (
            await client.post(
                f"{base}/messages", json={"sender_role": "user", "content": "then fix the footer"}
            )
        ).json()
        first_task_id = first["task"]["task_id"]
        second_task_id = second["task"]["task_id"]
        assert first["task"]["status"] == "pending"
        assert second["task"]["status"] == "queued"

        # 3. builder 取到第一条用户消息并认领
        polled = (await client.get(f"{base}/messages/next", params={"role": "builder"})).json()
        message_id = polled["message"]["message_id"]
        assert message_id == first["message"]["message_id"]
        claim = await client.post(f"{base}/messages/{message_id}/claim", json={"role": "builder"})
        assert claim.json()["claimed"] is True

        # 4. claim + start，标记为 new_feature
        claimed = await client.post(f"{base}/tasks/claim", json={"role": "builder"})
        assert claimed.json()["task_id"] == first_task_id
        started = await client.post(
            f"{base}/tasks/start", json={"role": "builder", "classification": "new_feature"}
        )
        assert started.json()["status"] == "in_progress"

        # 5. new_feature 不能直接交还用户
        restricted = (
            await client.post(
                f"{base}/handoff",
                json={"from_role": "builder", "to_role": "user", "content": "done"},
            )
        ).json()
        assert restricted["success"] is False
        assert restricted["restriction"]["suggested_target"] == "reviewer"

        # 6. 改交给 reviewer
        to_reviewer = (
            await client.post(
                f"{base}/handoff",
                json={"from_role": "builder", "to_role": "reviewer", "content": "please review"},
            )
        ).json()
        assert to_reviewer["success"] is True
        assert to_reviewer["completed_task_ids"] == [first_task_id]
        review_task_id = to_reviewer["new_task_id"]

        # 7. reviewer 收到交接消息并处理
        polled = (
            await client.get(
                f"{base}/messages/next", params={"role": "reviewer", "after": message_id}
            )
        ).json()
        assert polled["message"]["type"] == "handoff"
        assert polled["message"]["task_id"] == review_task_id

        claimed = await client.post(f"{base}/tasks/claim", json={"role": "reviewer"})
        assert claimed.json()["task_id"] == review_task_id
        await client.post(f"{base}/tasks/start", json={"role": "reviewer"})

        # 8. reviewer 交还用户，排队任务晋升
        to_user = (
            await client.post(
                f"{base}/handoff",
                json={"from_role": "reviewer", "to_role": "user", "content": "looks good"},
            )
        ).json()
        assert to_user["success"] is True
        assert to_user["new_task_id"] is None
        assert to_user["completed_task_ids"] == [review_task_id]
        assert to_user["promotion"]["promoted_task_id"] == second_task_id

        # 9. 最终状态
        counts = (await client.get(f"{base}/tasks/counts")).json()
        assert counts["completed"] == 2
        assert counts["pending"] == 1
        assert counts["queued"] == 0

        participants = (await client.get(f"{base}/participants")).json()["participants"]
        assert {p["status"] for p in participants} == {"waiting"}

        detail = (await client.get(f"/api/tasks/{second_task_id}")).json()
        assert [e["trigger"] for e in detail["events"]] == ["promote_next_task"]

    async def test_crashed_agent_rejoins(self, client: AsyncClient):
        """Agent 在 in_progress 时崩溃重连，遗留任务回到 pending 并可重新认领"""
        resp = await client.post("/api/chatrooms", json={"team_roles": ["builder"]})
        base = f"/api/chatrooms/{resp.json()['chatroom_id']}"
        await client.post(f"{base}/participants/builder/join")
        sent = (
            await client.post(f"{base}/messages", json={"sender_role": "user", "content": "x"})
        ).json()
        await client.post(f"{base}/tasks/claim", json={"role": "builder"})
        await client.post(f"{base}/tasks/start", json={"role": "builder"})

        rejoined = (await client.post(f"{base}/participants/builder/join")).json()

        assert rejoined["rejoined"] is True
        assert rejoined["recovered_task_ids"] == [sent["task"]["task_id"]]
        again = await client.post(f"{base}/tasks/claim", json={"role": "builder"})
        assert again.json()["task_id"] == sent["task"]["task_id"]
