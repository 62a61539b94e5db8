"""交接编排测试

测试内容：
1. new_feature 分类下 builder 不能直接交还给用户（结构化结果，不写入）
2. builder -> reviewer 交接：完成进行中任务、创建指派给 reviewer 的 pending 任务
3. 交给用户时晋升队列
4. 活跃槽位被占用时整体回滚
5. 挂靠的 backlog 任务进入复核
"""

import pytest
from agentroom.core.engine import (
    claim_task,
    create_task,
    get_allowed_handoff_roles,
    handoff,
    send_message,
    start_task,
)
from agentroom.core.exceptions import ActiveSlotOccupiedError, InvalidRoleError
from agentroom.core.models import (
    Classification,
    MessageType,
    ParticipantStatus,
    TaskOrigin,
    TaskStatus,
)


async def _builder_working_on(run, chatroom_id, content, classification=None, **kwargs):
    """用户发消息，builder 认领并开始该任务"""
    sent = await run(send_message, chatroom_id, "user", content, **kwargs)
    await run(claim_task, chatroom_id, "builder")
    await run(start_task, chatroom_id, "builder", classification=classification)
    return sent


class TestHandoffRestriction:
    """new_feature 请求必须先经过复核"""

    async def test_builder_cannot_hand_new_feature_to_user(self, make_room, run, store_group):
        room = await make_room(entry_point="builder", join_roles=["builder", "reviewer"])
        sent = await _builder_working_on(
            run, room.chatroom_id, "add export", classification=Classification.NEW_FEATURE
        )
        messages_before = await store_group.message_store.list_messages(room.chatroom_id, 100)

        result = await run(handoff, room.chatroom_id, "builder", "user", "done!")

        assert result.success is False
        assert result.message_id is None
        assert result.restriction.code == "HANDOFF_RESTRICTED"
        assert result.restriction.classification == Classification.NEW_FEATURE
        assert result.restriction.suggested_target == "reviewer"
        # 未写入任何数据
        task = await store_group.task_store.get_task(sent.task.task_id)
        assert task.status == TaskStatus.IN_PROGRESS
        messages_after = await store_group.message_store.list_messages(room.chatroom_id, 100)
        assert len(messages_after) == len(messages_before)

    async def test_question_may_go_back_to_user(self, make_room, run):
        room = await make_room(join_roles=["builder", "reviewer"])
        await _builder_working_on(
            run, room.chatroom_id, "what is X?", classification=Classification.QUESTION
        )

        result = await run(handoff, room.chatroom_id, "builder", "user", "X is Y")
        assert result.success is True
        assert result.restriction is None

    async def test_reviewer_may_hand_new_feature_to_user(self, make_room, run):
        room = await make_room(join_roles=["builder", "reviewer"])
        await _builder_working_on(
            run, room.chatroom_id, "add export", classification=Classification.NEW_FEATURE
        )
        await run(handoff, room.chatroom_id, "builder", "reviewer", "please review")
        await run(claim_task, room.chatroom_id, "reviewer")
        await run(start_task, room.chatroom_id, "reviewer")

        result = await run(handoff, room.chatroom_id, "reviewer", "user", "approved")
        assert result.success is True
        assert len(result.completed_task_ids) == 1


class TestHandoffToAgent:
    """builder -> reviewer"""

    async def test_creates_pending_task_for_target(self, make_room, run, store_group):
        room = await make_room(entry_point="builder", join_roles=["builder", "reviewer"])
        sent = await _builder_working_on(
            run, room.chatroom_id, "add export", classification=Classification.NEW_FEATURE
        )

        result = await run(handoff, room.chatroom_id, "builder", "reviewer", "ready for review")

        assert result.success is True
        assert result.completed_task_ids == [sent.task.task_id]
        assert result.promotion is None

        new_task = await store_group.task_store.get_task(result.new_task_id)
        assert new_task.status == TaskStatus.PENDING
        assert new_task.assigned_to == "reviewer"
        assert new_task.origin == TaskOrigin.CHAT
        assert new_task.created_by == "builder"
        assert new_task.source_message_id == result.message_id

        message = await store_group.message_store.get_message(result.message_id)
        assert message.type == MessageType.HANDOFF
        assert message.target_role == "reviewer"
        assert message.task_id == new_task.task_id

        builder = await store_group.participant_store.get_participant(room.chatroom_id, "builder")
        assert builder.status == ParticipantStatus.WAITING

        old = await store_group.task_store.get_task(sent.task.task_id)
        assert old.status == TaskStatus.COMPLETED

    async def test_handoff_message_routed_to_target_only(self, make_room, run, store_group):
        from agentroom.core.engine import get_next_message_for_role

        room = await make_room(join_roles=["builder", "reviewer"])
        sent = await _builder_working_on(run, room.chatroom_id, "fix bug")
        result = await run(handoff, room.chatroom_id, "builder", "reviewer", "check it")

        for_reviewer = await get_next_message_for_role(
            store_group, room.chatroom_id, "reviewer"
        )
        for_builder = await get_next_message_for_role(
            store_group,
            room.chatroom_id,
            "builder",
            after_message_id=sent.message.message_id,
        )
        assert for_reviewer.message_id == result.message_id
        assert for_builder is None

    async def test_target_claims_assigned_task(self, make_room, run):
        room = await make_room(join_roles=["builder", "reviewer"])
        await _builder_working_on(run, room.chatroom_id, "fix bug")
        result = await run(handoff, room.chatroom_id, "builder", "reviewer", "check it")

        claimed = await run(claim_task, room.chatroom_id, "reviewer")
        assert claimed.task_id == result.new_task_id
        assert claimed.status == TaskStatus.ACKNOWLEDGED

    async def test_user_message_while_reviewer_claimed(self, make_room, run, store_group):
        """reviewer 认领交接任务后用户发消息：新任务排队，reviewer 照常开始"""
        room = await make_room(join_roles=["builder", "reviewer"])
        await _builder_working_on(run, room.chatroom_id, "fix bug")
        result = await run(handoff, room.chatroom_id, "builder", "reviewer", "check it")
        await run(claim_task, room.chatroom_id, "reviewer")

        later = await run(send_message, room.chatroom_id, "user", "one more thing")
        assert later.task.status == TaskStatus.QUEUED

        started = await run(start_task, room.chatroom_id, "reviewer")
        assert started.task_id == result.new_task_id
        assert started.status == TaskStatus.IN_PROGRESS

    async def test_handoff_from_claimed_but_unstarted_agent(self, make_room, run, store_group):
        """builder 认领未开始、期间用户又发消息，交接仍然成功"""
        room = await make_room(join_roles=["builder", "reviewer"])
        await run(send_message, room.chatroom_id, "user", "first")
        await run(claim_task, room.chatroom_id, "builder")
        later = await run(send_message, room.chatroom_id, "user", "second")

        result = await run(handoff, room.chatroom_id, "builder", "reviewer", "please take it")

        assert result.success is True
        assert result.completed_task_ids == []
        new_task = await store_group.task_store.get_task(result.new_task_id)
        assert new_task.status == TaskStatus.PENDING
        queued = await store_group.task_store.get_task(later.task.task_id)
        assert queued.status == TaskStatus.QUEUED

    async def test_occupied_slot_rolls_back_everything(self, make_room, run, store_group):
        room = await make_room(join_roles=["builder", "reviewer"])
        holder = await run(create_task, room.chatroom_id, "someone else's task", "user")
        counter_before = (
            await store_group.chatroom_store.get_chatroom(room.chatroom_id)
        ).queue_position_counter
        messages_before = await store_group.message_store.list_messages(room.chatroom_id, 100)

        with pytest.raises(ActiveSlotOccupiedError):
            await run(handoff, room.chatroom_id, "builder", "reviewer", "over to you")

        counter_after = (
            await store_group.chatroom_store.get_chatroom(room.chatroom_id)
        ).queue_position_counter
        assert counter_after == counter_before
        messages_after = await store_group.message_store.list_messages(room.chatroom_id, 100)
        assert len(messages_after) == len(messages_before)
        assert (await store_group.task_store.get_task(holder.task_id)).status == TaskStatus.PENDING

    async def test_unknown_roles_rejected(self, make_room, run):
        room = await make_room(join_roles=["builder"])

        with pytest.raises(InvalidRoleError):
            await run(handoff, room.chatroom_id, "designer", "reviewer", "x")
        with pytest.raises(InvalidRoleError):
            await run(handoff, room.chatroom_id, "builder", "designer", "x")


class TestHandoffToUser:
    """交还给用户后晋升队列"""

    async def test_promotes_next_queued_task(self, make_room, run, store_group):
        room = await make_room(join_roles=["builder", "reviewer"])
        await _builder_working_on(run, room.chatroom_id, "first")
        # builder 开始工作后第二条消息进入 queued
        second = await run(send_message, room.chatroom_id, "user", "second")
        assert second.task.status == TaskStatus.QUEUED

        result = await run(handoff, room.chatroom_id, "builder", "user", "first is done")

        assert result.new_task_id is None
        assert result.promotion.promoted_task_id == second.task.task_id
        assert (await store_group.task_store.get_task(second.task.task_id)).status == TaskStatus.PENDING

    async def test_attached_backlog_goes_to_review(self, make_room, run, store_group):
        room = await make_room(join_roles=["builder", "reviewer"])
        backlog = await run(create_task, room.chatroom_id, "polish icons", "user", is_backlog=True)
        await _builder_working_on(
            run, room.chatroom_id, "do the backlog item", attached_task_ids=[backlog.task_id]
        )
        attached = await store_group.task_store.get_task(backlog.task_id)
        assert attached.status == TaskStatus.BACKLOG_ACKNOWLEDGED

        result = await run(handoff, room.chatroom_id, "builder", "user", "done")

        assert result.review_task_ids == [backlog.task_id]
        reviewed = await store_group.task_store.get_task(backlog.task_id)
        assert reviewed.status == TaskStatus.PENDING_USER_REVIEW


class TestAllowedHandoffRoles:
    """可交接目标"""

    async def test_builder_on_new_feature(self, make_room, run, store_group):
        room = await make_room(join_roles=["builder", "reviewer"])
        await _builder_working_on(
            run, room.chatroom_id, "add export", classification=Classification.NEW_FEATURE
        )

        allowed = await get_allowed_handoff_roles(store_group, room.chatroom_id, "builder")

        assert allowed.available_roles == ["reviewer"]
        assert allowed.can_handoff_to_user is False
        assert allowed.restriction_reason is not None
        assert allowed.current_classification == Classification.NEW_FEATURE

    async def test_without_classification(self, make_room, store_group):
        room = await make_room(join_roles=["builder", "reviewer"])

        allowed = await get_allowed_handoff_roles(store_group, room.chatroom_id, "reviewer")

        assert allowed.available_roles == ["builder"]
        assert allowed.can_handoff_to_user is True
        assert allowed.current_classification == Classification.NONE
