"""队列位置分配与晋升测试"""

import asyncio

import pytest
from agentroom.core.engine import (
    cancel_task,
    create_task,
    get_active_task,
    move_to_queue,
    next_queue_position,
    promote_next,
    transition_task,
    update_participant_status,
)
from agentroom.core.exceptions import (
    ActiveSlotOccupiedError,
    NotFoundError,
    TaskLimitExceededError,
)
from agentroom.core.models import (
    BacklogStatus,
    ParticipantStatus,
    PromotionSkipReason,
    Task,
    TaskOrigin,
    TaskStatus,
    TaskTrigger,
)


class TestQueuePosition:
    """队列位置严格递增且永不复用"""

    async def test_positions_increment(self, make_room, run):
        room = await make_room()
        tasks = [await run(create_task, room.chatroom_id, f"t{i}", "user") for i in range(3)]
        assert [t.queue_position for t in tasks] == [1, 2, 3]

    async def test_positions_not_reused_after_cancel(self, make_room, run):
        room = await make_room()
        first = await run(create_task, room.chatroom_id, "a", "user")
        await run(cancel_task, first.task_id)
        second = await run(create_task, room.chatroom_id, "b", "user")
        assert second.queue_position == 2

    async def test_positions_are_per_chatroom(self, make_room, run):
        room_a = await make_room()
        room_b = await make_room()
        await run(create_task, room_a.chatroom_id, "a1", "user")
        await run(create_task, room_a.chatroom_id, "a2", "user")
        b1 = await run(create_task, room_b.chatroom_id, "b1", "user")
        assert b1.queue_position == 1

    async def test_concurrent_creates_get_distinct_positions(self, make_room, run):
        room = await make_room()
        tasks = await asyncio.gather(
            *(run(create_task, room.chatroom_id, f"c{i}", "user") for i in range(10))
        )
        positions = sorted(t.queue_position for t in tasks)
        assert positions == list(range(1, 11))
        # 并发创建后活跃槽位仍只有一个任务
        assert sum(1 for t in tasks if t.status == TaskStatus.PENDING) == 1

    async def test_unknown_chatroom(self, run):
        with pytest.raises(NotFoundError):
            await run(next_queue_position, "01NOSUCHROOM00000000000000")

    async def test_counter_survives_on_chatroom_row(self, make_room, run, store_group):
        room = await make_room()
        await run(create_task, room.chatroom_id, "a", "user")
        await run(create_task, room.chatroom_id, "b", "user")
        stored = await store_group.chatroom_store.get_chatroom(room.chatroom_id)
        assert stored.queue_position_counter == 2


class TestCreateTask:
    """初始状态分配"""

    async def test_first_task_pending_rest_queued(self, make_room, run):
        room = await make_room()
        first = await run(create_task, room.chatroom_id, "first", "user")
        second = await run(create_task, room.chatroom_id, "second", "user")

        assert first.status == TaskStatus.PENDING
        assert second.status == TaskStatus.QUEUED
        assert first.origin == TaskOrigin.NONE
        assert first.backlog_status is None

    async def test_backlog_task(self, make_room, run):
        room = await make_room()
        task = await run(create_task, room.chatroom_id, "someday", "user", is_backlog=True)

        assert task.status == TaskStatus.BACKLOG
        assert task.origin == TaskOrigin.BACKLOG
        assert task.backlog_status == BacklogStatus.NOT_STARTED

    async def test_backlog_does_not_take_slot(self, make_room, run):
        room = await make_room()
        await run(create_task, room.chatroom_id, "someday", "user", is_backlog=True)
        task = await run(create_task, room.chatroom_id, "now", "user")
        assert task.status == TaskStatus.PENDING

    async def test_claimed_task_keeps_new_work_queued(self, make_room, run):
        """acknowledged 任务即将开始，新任务与 backlog 入队都进入 queued"""
        room = await make_room()
        claimed = await run(create_task, room.chatroom_id, "claimed", "user")
        await run(
            transition_task,
            claimed.task_id,
            TaskStatus.ACKNOWLEDGED,
            TaskTrigger.CLAIM,
            overrides={"assigned_to": "builder"},
        )
        backlog = await run(create_task, room.chatroom_id, "someday", "user", is_backlog=True)

        task = await run(create_task, room.chatroom_id, "next", "user")
        moved = await run(move_to_queue, backlog.task_id)

        assert task.status == TaskStatus.QUEUED
        assert moved.status == TaskStatus.QUEUED
        started = await run(transition_task, claimed.task_id, TaskStatus.IN_PROGRESS, TaskTrigger.START)
        assert started.status == TaskStatus.IN_PROGRESS

    async def test_bypass_queue_with_occupied_slot_rejected(self, make_room, run, store_group):
        room = await make_room()
        await run(create_task, room.chatroom_id, "holder", "user")

        with pytest.raises(ActiveSlotOccupiedError):
            await run(
                create_task,
                room.chatroom_id,
                "handoff",
                "builder",
                assigned_to="reviewer",
                bypass_queue=True,
            )
        # 回滚后计数器也没有前进
        stored = await store_group.chatroom_store.get_chatroom(room.chatroom_id)
        assert stored.queue_position_counter == 1

    async def test_task_limit(self, make_room, run, monkeypatch):
        monkeypatch.setattr("agentroom.core.engine.queue.MAX_ACTIVE_TASKS", 2)
        room = await make_room()
        await run(create_task, room.chatroom_id, "a", "user")
        await run(create_task, room.chatroom_id, "b", "user", is_backlog=True)

        with pytest.raises(TaskLimitExceededError) as exc_info:
            await run(create_task, room.chatroom_id, "c", "user")
        assert exc_info.value.details == {"limit": 2}

    async def test_task_limit_ignores_terminal_tasks(self, make_room, run, monkeypatch):
        monkeypatch.setattr("agentroom.core.engine.queue.MAX_ACTIVE_TASKS", 1)
        room = await make_room()
        first = await run(create_task, room.chatroom_id, "a", "user")
        await run(cancel_task, first.task_id)

        second = await run(create_task, room.chatroom_id, "b", "user")
        assert second.status == TaskStatus.PENDING


class TestActiveSlotIndex:
    """存储层唯一索引兜底活跃槽位"""

    async def test_direct_insert_of_second_pending_task(self, make_room, run, store_group, now):
        room = await make_room()
        await run(create_task, room.chatroom_id, "holder", "user")

        rogue = Task(
            task_id="01ROGUE0000000000000000000",
            chatroom_id=room.chatroom_id,
            status=TaskStatus.PENDING,
            content="rogue",
            created_by="user",
            queue_position=99,
            created_at=now,
            updated_at=now,
        )
        with pytest.raises(ActiveSlotOccupiedError):
            async with store_group.transaction() as uow:
                await uow.task_store.create_task(rogue)

        assert await store_group.task_store.get_task(rogue.task_id) is None

    async def test_get_active_task_prefers_in_progress(self, make_room, run):
        room = await make_room(join_roles=["builder"])
        task = await run(create_task, room.chatroom_id, "work", "user")
        assert (await run(get_active_task, room.chatroom_id)).task_id == task.task_id

        await run(
            transition_task,
            task.task_id,
            TaskStatus.ACKNOWLEDGED,
            TaskTrigger.CLAIM,
            overrides={"assigned_to": "builder"},
        )
        # acknowledged 不占据活跃槽位
        assert await run(get_active_task, room.chatroom_id) is None

        await run(transition_task, task.task_id, TaskStatus.IN_PROGRESS, TaskTrigger.START)
        active = await run(get_active_task, room.chatroom_id)
        assert active.task_id == task.task_id
        assert active.status == TaskStatus.IN_PROGRESS


class TestPromoteNext:
    """晋升：槽位为空且无人 active 时晋升 queue_position 最小的 queued 任务"""

    async def test_promotes_smallest_position(self, make_room, run, store_group):
        """位置 3 与 5 的 queued 任务，晋升 3 而不是 5"""
        room = await make_room(join_roles=["builder", "reviewer"])
        t1 = await run(create_task, room.chatroom_id, "t1", "user")
        await run(create_task, room.chatroom_id, "b2", "user", is_backlog=True)
        t3 = await run(create_task, room.chatroom_id, "t3", "user")
        await run(create_task, room.chatroom_id, "b4", "user", is_backlog=True)
        t5 = await run(create_task, room.chatroom_id, "t5", "user")
        assert (t3.queue_position, t3.status) == (3, TaskStatus.QUEUED)
        assert (t5.queue_position, t5.status) == (5, TaskStatus.QUEUED)

        # 直接走状态机关闭，绕过 cancel_task 自带的晋升
        await run(transition_task, t1.task_id, TaskStatus.CLOSED, TaskTrigger.CANCEL)

        result = await run(promote_next, room.chatroom_id)

        assert result.promoted
        assert result.promoted_task_id == t3.task_id
        assert result.reason is None
        assert (await store_group.task_store.get_task(t3.task_id)).status == TaskStatus.PENDING
        assert (await store_group.task_store.get_task(t5.task_id)).status == TaskStatus.QUEUED

    async def test_skip_when_active_task_exists(self, make_room, run):
        room = await make_room()
        await run(create_task, room.chatroom_id, "holder", "user")
        await run(create_task, room.chatroom_id, "waiting", "user")

        result = await run(promote_next, room.chatroom_id)
        assert not result.promoted
        assert result.reason == PromotionSkipReason.ACTIVE_TASK_EXISTS

    async def test_skip_while_task_claimed(self, make_room, run, store_group):
        room = await make_room()
        holder = await run(create_task, room.chatroom_id, "holder", "user")
        waiting = await run(create_task, room.chatroom_id, "waiting", "user")
        await run(
            transition_task,
            holder.task_id,
            TaskStatus.ACKNOWLEDGED,
            TaskTrigger.CLAIM,
            overrides={"assigned_to": "builder"},
        )

        result = await run(promote_next, room.chatroom_id)

        assert result.reason == PromotionSkipReason.ACTIVE_TASK_EXISTS
        assert (await store_group.task_store.get_task(waiting.task_id)).status == TaskStatus.QUEUED

    async def test_skip_when_agent_active(self, make_room, run):
        room = await make_room(join_roles=["builder", "reviewer"])
        holder = await run(create_task, room.chatroom_id, "holder", "user")
        await run(create_task, room.chatroom_id, "waiting", "user")
        await run(transition_task, holder.task_id, TaskStatus.CLOSED, TaskTrigger.CANCEL)
        await run(
            update_participant_status,
            room.chatroom_id,
            "reviewer",
            ParticipantStatus.ACTIVE,
        )

        result = await run(promote_next, room.chatroom_id)
        assert result.reason == PromotionSkipReason.AGENTS_STILL_ACTIVE

    async def test_skip_when_queue_empty(self, make_room, run):
        room = await make_room()
        result = await run(promote_next, room.chatroom_id)
        assert result.reason == PromotionSkipReason.NO_QUEUED_TASKS
        assert result.promoted_task_id is None

    async def test_promote_clears_stale_assignment(self, make_room, run, store_group):
        room = await make_room()
        holder = await run(create_task, room.chatroom_id, "holder", "user")
        queued = await run(create_task, room.chatroom_id, "next", "user")
        async with store_group.transaction() as uow:
            await uow.task_store.update_task(queued.task_id, {"assigned_to": "builder"})
        await run(transition_task, holder.task_id, TaskStatus.CLOSED, TaskTrigger.CANCEL)

        await run(promote_next, room.chatroom_id)

        promoted = await store_group.task_store.get_task(queued.task_id)
        assert promoted.status == TaskStatus.PENDING
        assert promoted.assigned_to is None

    async def test_cancel_pending_promotes(self, make_room, run):
        room = await make_room()
        holder = await run(create_task, room.chatroom_id, "holder", "user")
        queued = await run(create_task, room.chatroom_id, "next", "user")

        result = await run(cancel_task, holder.task_id)

        assert result.task.status == TaskStatus.CLOSED
        assert result.promotion.promoted_task_id == queued.task_id

    async def test_cancel_queued_does_not_promote(self, make_room, run):
        room = await make_room()
        await run(create_task, room.chatroom_id, "holder", "user")
        queued = await run(create_task, room.chatroom_id, "next", "user")

        result = await run(cancel_task, queued.task_id)
        assert result.promotion is None


class TestMoveToQueue:
    """backlog 任务进入队列"""

    async def test_move_into_empty_slot(self, make_room, run):
        room = await make_room()
        backlog = await run(create_task, room.chatroom_id, "later", "user", is_backlog=True)

        moved = await run(move_to_queue, backlog.task_id)

        assert moved.status == TaskStatus.PENDING
        assert moved.queue_position == backlog.queue_position
        assert moved.origin == TaskOrigin.BACKLOG

    async def test_move_behind_active_task(self, make_room, run):
        room = await make_room()
        backlog = await run(create_task, room.chatroom_id, "later", "user", is_backlog=True)
        await run(create_task, room.chatroom_id, "now", "user")

        moved = await run(move_to_queue, backlog.task_id)
        assert moved.status == TaskStatus.QUEUED

    async def test_move_non_backlog_task_rejected(self, make_room, run):
        from agentroom.core.exceptions import InvalidTransitionError

        room = await make_room()
        holder = await run(create_task, room.chatroom_id, "holder", "user")

        with pytest.raises(InvalidTransitionError):
            await run(move_to_queue, holder.task_id)

    async def test_move_unknown_task(self, run):
        with pytest.raises(NotFoundError):
            await run(move_to_queue, "01NOSUCHTASK00000000000000")
