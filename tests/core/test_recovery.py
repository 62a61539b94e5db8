"""掉线恢复测试 -- join 回收与过期参与者清理"""

from datetime import timedelta

import pytest
from agentroom.core.config import HEARTBEAT_TTL_S
from agentroom.core.engine import (
    claim_task,
    create_task,
    heartbeat,
    join,
    send_message,
    start_task,
    sweep_stale_participants,
    transition_task,
)
from agentroom.core.engine import recovery
from agentroom.core.exceptions import InvalidRoleError, NotFoundError
from agentroom.core.models import (
    MessageType,
    ParticipantStatus,
    PromotionSkipReason,
    TaskStatus,
    TaskTrigger,
)


async def _start_work(run, chatroom_id, role="builder", content="work"):
    sent = await run(send_message, chatroom_id, "user", content)
    await run(claim_task, chatroom_id, role)
    await run(start_task, chatroom_id, role)
    return sent.task


class TestSweepStaleParticipants:
    """ready_until 过期的参与者被软删除，其 in_progress 任务回到 pending"""

    async def test_stale_builder_task_reset_to_pending(self, make_room, run, store_group, now):
        room = await make_room(join_roles=["builder", "reviewer"])
        task = await _start_work(run, room.chatroom_id)

        later = now + timedelta(seconds=HEARTBEAT_TTL_S + 60)
        report = await sweep_stale_participants(store_group, now=later)

        assert f"{room.chatroom_id}:builder" in report.swept_participants
        assert report.recovered_task_ids == [task.task_id]
        assert report.failed_participants == []

        recovered = await store_group.task_store.get_task(task.task_id)
        assert recovered.status == TaskStatus.PENDING
        assert recovered.assigned_to is None
        assert recovered.started_at is None
        assert recovered.acknowledged_at is None

        builder = await store_group.participant_store.get_participant(room.chatroom_id, "builder")
        assert builder.is_gone
        assert builder.status == ParticipantStatus.IDLE
        assert builder.ready_until is None

        assert [e.trigger for e in report.events] == [TaskTrigger.RESET_STUCK]
        assert report.events[0].task_id == task.task_id

    async def test_fresh_participants_untouched(self, make_room, run, store_group, now):
        room = await make_room(join_roles=["builder"])
        task = await _start_work(run, room.chatroom_id)

        report = await sweep_stale_participants(store_group, now=now)

        assert report.swept_participants == []
        assert (await store_group.task_store.get_task(task.task_id)).status == TaskStatus.IN_PROGRESS

    async def test_heartbeat_prevents_sweep(self, make_room, run, store_group, now):
        room = await make_room(join_roles=["builder"])
        later = now + timedelta(seconds=HEARTBEAT_TTL_S + 60)
        await run(
            heartbeat,
            room.chatroom_id,
            "builder",
            ready_until=later + timedelta(seconds=HEARTBEAT_TTL_S),
        )

        report = await sweep_stale_participants(store_group, now=later)
        assert report.swept_participants == []

    async def test_idle_participants_never_swept(self, make_room, run, store_group, now):
        from agentroom.core.engine import update_participant_status

        room = await make_room(join_roles=["builder"])
        await run(update_participant_status, room.chatroom_id, "builder", ParticipantStatus.IDLE)

        report = await sweep_stale_participants(
            store_group, now=now + timedelta(seconds=HEARTBEAT_TTL_S * 10)
        )
        assert report.swept_participants == []

    async def test_swept_participant_is_swept_once(self, make_room, store_group, now):
        room = await make_room(join_roles=["builder"])
        later = now + timedelta(seconds=HEARTBEAT_TTL_S + 60)

        first = await sweep_stale_participants(store_group, now=later)
        second = await sweep_stale_participants(store_group, now=later)

        assert first.swept_participants == [f"{room.chatroom_id}:builder"]
        assert second.swept_participants == []

    async def test_failure_isolated_per_participant(
        self, make_room, run, store_group, now, monkeypatch
    ):
        room = await make_room(join_roles=["builder", "reviewer"])
        task = await _start_work(run, room.chatroom_id)
        original = recovery.recover_participant

        async def flaky(uow, participant, now=None):
            if participant.role == "builder":
                raise RuntimeError("disk on fire")
            return await original(uow, participant, now=now)

        monkeypatch.setattr("agentroom.core.engine.recovery.recover_participant", flaky)

        later = now + timedelta(seconds=HEARTBEAT_TTL_S + 60)
        report = await sweep_stale_participants(store_group, now=later)

        assert report.failed_participants == [f"{room.chatroom_id}:builder"]
        assert report.swept_participants == [f"{room.chatroom_id}:reviewer"]
        # 失败的参与者整体回滚，留给下一次清理
        builder = await store_group.participant_store.get_participant(room.chatroom_id, "builder")
        assert not builder.is_gone
        assert (await store_group.task_store.get_task(task.task_id)).status == TaskStatus.IN_PROGRESS


class TestJoin:
    """join：首次加入、重新加入、崩溃重连"""

    async def test_first_join_writes_join_message(self, make_room, run, store_group):
        room = await make_room()

        result = await run(join, room.chatroom_id, "Builder")

        assert result.rejoined is False
        assert result.participant.role == "builder"
        assert result.participant.status == ParticipantStatus.WAITING
        messages = await store_group.message_store.list_messages(room.chatroom_id, 10)
        assert [(m.type, m.content) for m in messages] == [
            (MessageType.JOIN, "builder joined the chatroom")
        ]

    async def test_rejoin_keeps_identity_without_new_message(self, make_room, run, store_group):
        room = await make_room()
        first = await run(join, room.chatroom_id, "builder", connection_id="conn-1")

        second = await run(join, room.chatroom_id, "builder", connection_id="conn-2")

        assert second.rejoined is True
        assert second.participant.participant_id == first.participant.participant_id
        stored = await store_group.participant_store.get_participant(room.chatroom_id, "builder")
        assert stored.participant_id == first.participant.participant_id
        assert stored.connection_id == "conn-2"
        messages = await store_group.message_store.list_messages(room.chatroom_id, 10)
        assert len(messages) == 1

    async def test_join_after_sweep_restores_participant(self, make_room, run, store_group, now):
        room = await make_room(join_roles=["builder"])
        await sweep_stale_participants(store_group, now=now + timedelta(seconds=HEARTBEAT_TTL_S + 60))

        result = await run(join, room.chatroom_id, "builder")

        assert result.rejoined is False
        assert not result.participant.is_gone
        stored = await store_group.participant_store.get_participant(room.chatroom_id, "builder")
        assert stored.departed_at is None
        assert stored.status == ParticipantStatus.WAITING
        messages = await store_group.message_store.list_messages(room.chatroom_id, 10)
        assert [m.type for m in messages] == [MessageType.JOIN, MessageType.JOIN]

    async def test_join_while_active_recovers_tasks(self, make_room, run, store_group):
        """进程崩溃后重连：先回收其 in_progress 任务"""
        room = await make_room(join_roles=["builder"])
        task = await _start_work(run, room.chatroom_id)

        result = await run(join, room.chatroom_id, "builder")

        assert result.recovered_task_ids == [task.task_id]
        recovered = await store_group.task_store.get_task(task.task_id)
        assert recovered.status == TaskStatus.PENDING
        assert recovered.assigned_to is None

    async def test_entry_point_join_promotes(self, make_room, run, store_group):
        room = await make_room(entry_point="builder")
        holder = await run(create_task, room.chatroom_id, "holder", "user")
        queued = await run(create_task, room.chatroom_id, "next", "user")
        await run(transition_task, holder.task_id, TaskStatus.CLOSED, TaskTrigger.CANCEL)

        result = await run(join, room.chatroom_id, "builder")

        assert result.promotion.promoted_task_id == queued.task_id
        assert (await store_group.task_store.get_task(queued.task_id)).status == TaskStatus.PENDING

    async def test_non_entry_point_join_does_not_promote(self, make_room, run):
        room = await make_room(entry_point="builder")
        result = await run(join, room.chatroom_id, "reviewer")
        assert result.promotion is None

    async def test_entry_point_join_reports_skip_reason(self, make_room, run):
        room = await make_room()
        result = await run(join, room.chatroom_id, "builder")
        assert result.promotion.reason == PromotionSkipReason.NO_QUEUED_TASKS

    async def test_join_unknown_role(self, make_room, run):
        room = await make_room()
        with pytest.raises(InvalidRoleError):
            await run(join, room.chatroom_id, "designer")

    async def test_join_unknown_chatroom(self, run):
        with pytest.raises(NotFoundError):
            await run(join, "01NOSUCHROOM00000000000000", "builder")
