"""任务生命周期操作

Agent 侧：claim -> start -> complete；
用户侧：取消、移入队列、复核通过 / 返工、重新打开、强制完成、编辑内容。
所有状态变化都经过 fsm.transition_task。
"""

from datetime import UTC, datetime

import structlog

from ..config import CONTENT_PREVIEW_LENGTH, TASK_LIST_MAX_LIMIT
from ..exceptions import NotFoundError, TaskNotEditableError
from ..models.enums import (
    ACTIVE_SLOT_STATUSES,
    OPEN_LIST_STATUSES,
    Classification,
    ParticipantStatus,
    TaskOrigin,
    TaskStatus,
    TaskTrigger,
)
from ..models.results import CompleteTaskResult, TaskActionResult, TaskCounts
from ..models.task import Task
from ..store.protocols import Stores
from ..store.transaction import UnitOfWork
from .fsm import can_transition, transition_task
from .queue import promote_next
from .readiness import (
    default_ready_until,
    get_chatroom_or_raise,
    get_participant_or_raise,
    require_team_role,
)
from .router import classify_message

log = structlog.get_logger()


def _completion_target(task: Task) -> TaskStatus:
    # backlog 任务完成后交给用户复核
    if task.origin == TaskOrigin.BACKLOG:
        return TaskStatus.PENDING_USER_REVIEW
    return TaskStatus.COMPLETED


async def get_task_or_raise(stores: Stores, task_id: str) -> Task:
    task = await stores.task_store.get_task(task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


async def complete_in_progress_tasks(
    uow: UnitOfWork,
    chatroom_id: str,
    role: str | None = None,
    now: datetime | None = None,
) -> tuple[list[Task], list[str], list[str]]:
    """把 in_progress 任务流转到各自来源对应的完成状态

    role 为空时处理聊天室内全部 in_progress 任务。

    Returns:
        (被完成的任务快照, completed 的任务 ID, pending_user_review 的任务 ID)
    """
    tasks = await uow.task_store.list_tasks(
        chatroom_id,
        statuses=[TaskStatus.IN_PROGRESS],
        assigned_to=role,
    )
    completed_ids: list[str] = []
    review_ids: list[str] = []
    for task in tasks:
        target = _completion_target(task)
        await transition_task(uow, task.task_id, target, TaskTrigger.COMPLETE, now=now)
        if target == TaskStatus.COMPLETED:
            completed_ids.append(task.task_id)
        else:
            review_ids.append(task.task_id)
    return tasks, completed_ids, review_ids


async def acknowledge_attached_backlog(
    uow: UnitOfWork,
    finished_tasks: list[Task],
    now: datetime | None = None,
) -> list[str]:
    """来源消息上挂靠的 backlog 任务进入 pending_user_review

    无法合法流转的任务保持不变。
    """
    moved: list[str] = []
    for task in finished_tasks:
        if not task.source_message_id:
            continue
        message = await uow.message_store.get_message(task.source_message_id)
        if message is None:
            continue
        for attached_id in message.attached_task_ids:
            attached = await uow.task_store.get_task(attached_id)
            if attached is None or attached_id in moved:
                continue
            if not can_transition(
                attached, TaskStatus.PENDING_USER_REVIEW, TaskTrigger.PARENT_ACKNOWLEDGED
            ):
                continue
            await transition_task(
                uow,
                attached_id,
                TaskStatus.PENDING_USER_REVIEW,
                TaskTrigger.PARENT_ACKNOWLEDGED,
                now=now,
            )
            moved.append(attached_id)
    return moved


async def claim_task(
    uow: UnitOfWork,
    chatroom_id: str,
    role: str,
    now: datetime | None = None,
) -> Task:
    """认领 pending 任务（未分配或已分配给该角色），参与者转为 active"""
    ts = now or datetime.now(UTC)
    chatroom = await get_chatroom_or_raise(uow, chatroom_id)
    role = require_team_role(chatroom, role)
    participant = await get_participant_or_raise(uow, chatroom_id, role)

    pending = await uow.task_store.get_first_with_status(chatroom_id, TaskStatus.PENDING)
    if pending is None or pending.assigned_to not in (None, role):
        raise NotFoundError("PendingTask", f"{chatroom_id}:{role}")

    task = await transition_task(
        uow,
        pending.task_id,
        TaskStatus.ACKNOWLEDGED,
        TaskTrigger.CLAIM,
        overrides={"assigned_to": role},
        now=ts,
    )
    await uow.participant_store.update_status(
        chatroom_id, role, ParticipantStatus.ACTIVE, default_ready_until(ts)
    )
    log.info(
        "task_claimed",
        chatroom_id=chatroom_id,
        task_id=task.task_id,
        role=role,
        previous_participant_status=participant.status.value,
    )
    return task


async def start_task(
    uow: UnitOfWork,
    chatroom_id: str,
    role: str,
    classification: Classification | None = None,
    now: datetime | None = None,
) -> Task:
    """开始该角色已认领的任务；给定分类时为来源用户消息分类"""
    chatroom = await get_chatroom_or_raise(uow, chatroom_id)
    role = require_team_role(chatroom, role)

    acknowledged = await uow.task_store.list_tasks(
        chatroom_id,
        statuses=[TaskStatus.ACKNOWLEDGED],
        assigned_to=role,
        limit=1,
    )
    if not acknowledged:
        raise NotFoundError("AcknowledgedTask", f"{chatroom_id}:{role}")

    task = await transition_task(
        uow, acknowledged[0].task_id, TaskStatus.IN_PROGRESS, TaskTrigger.START, now=now
    )

    if classification is not None and classification != Classification.NONE and task.source_message_id:
        source = await uow.message_store.get_message(task.source_message_id)
        if source is not None and source.is_from_user and source.classification == Classification.NONE:
            await classify_message(uow, chatroom_id, source.message_id, classification)
    return task


async def complete_task(
    uow: UnitOfWork,
    chatroom_id: str,
    role: str,
    now: datetime | None = None,
) -> CompleteTaskResult:
    """完成该角色的 in_progress 任务（无交接）

    参与者回到 waiting，挂靠的 backlog 任务进入复核，随后尝试晋升队列。
    """
    ts = now or datetime.now(UTC)
    chatroom = await get_chatroom_or_raise(uow, chatroom_id)
    role = require_team_role(chatroom, role)

    finished, completed_ids, review_ids = await complete_in_progress_tasks(
        uow, chatroom_id, role=role, now=ts
    )

    participant = await uow.participant_store.get_participant(chatroom_id, role)
    if participant is not None and not participant.is_gone:
        await uow.participant_store.update_status(
            chatroom_id, role, ParticipantStatus.WAITING, default_ready_until(ts)
        )

    if not finished:
        return CompleteTaskResult()

    review_ids.extend(await acknowledge_attached_backlog(uow, finished, now=ts))
    promotion = await promote_next(uow, chatroom_id, now=ts)
    log.info(
        "task_completed",
        chatroom_id=chatroom_id,
        role=role,
        completed_task_ids=completed_ids,
        review_task_ids=review_ids,
        promoted_task_id=promotion.promoted_task_id,
    )
    return CompleteTaskResult(
        completed_task_ids=completed_ids,
        review_task_ids=review_ids,
        promotion=promotion,
    )


async def cancel_task(
    uow: UnitOfWork,
    task_id: str,
    now: datetime | None = None,
) -> TaskActionResult:
    """取消任务；被取消的是 pending 任务时尝试晋升队列"""
    task = await get_task_or_raise(uow, task_id)
    cancelled = await transition_task(uow, task_id, TaskStatus.CLOSED, TaskTrigger.CANCEL, now=now)
    promotion = None
    if task.status == TaskStatus.PENDING:
        promotion = await promote_next(uow, task.chatroom_id, now=now)
    return TaskActionResult(task=cancelled, promotion=promotion)


async def complete_task_by_id(
    uow: UnitOfWork,
    task_id: str,
    now: datetime | None = None,
) -> TaskActionResult:
    """强制完成；任务原本占据活跃槽位时尝试晋升队列"""
    task = await get_task_or_raise(uow, task_id)
    completed = await transition_task(
        uow, task_id, TaskStatus.COMPLETED, TaskTrigger.FORCE_COMPLETE, now=now
    )
    promotion = None
    if task.status in ACTIVE_SLOT_STATUSES:
        promotion = await promote_next(uow, task.chatroom_id, now=now)
    return TaskActionResult(task=completed, promotion=promotion)


async def reset_stuck_task(
    uow: UnitOfWork,
    task_id: str,
    now: datetime | None = None,
) -> Task:
    return await transition_task(uow, task_id, TaskStatus.PENDING, TaskTrigger.RESET_STUCK, now=now)


async def mark_backlog_complete(
    uow: UnitOfWork,
    task_id: str,
    now: datetime | None = None,
) -> Task:
    """用户复核通过"""
    return await transition_task(
        uow, task_id, TaskStatus.COMPLETED, TaskTrigger.MARK_COMPLETE, now=now
    )


async def reopen_backlog_task(
    uow: UnitOfWork,
    task_id: str,
    now: datetime | None = None,
) -> Task:
    """重新打开已完成 / 已关闭的 backlog 任务，回到待复核"""
    return await transition_task(
        uow, task_id, TaskStatus.PENDING_USER_REVIEW, TaskTrigger.REOPEN, now=now
    )


async def update_task_content(
    uow: UnitOfWork,
    task_id: str,
    content: str,
    now: datetime | None = None,
) -> Task:
    """只有 queued / backlog 任务可以编辑内容"""
    ts = now or datetime.now(UTC)
    task = await get_task_or_raise(uow, task_id)
    if task.status not in (TaskStatus.QUEUED, TaskStatus.BACKLOG):
        raise TaskNotEditableError(
            f"Cannot edit task with status: {task.status.value}",
            details={"task_id": task_id, "status": task.status.value},
        )
    await uow.task_store.update_task(task_id, {"content": content, "updated_at": ts})
    log.info(
        "task_content_updated",
        chatroom_id=task.chatroom_id,
        task_id=task_id,
        preview=content[:CONTENT_PREVIEW_LENGTH],
    )
    return task.model_copy(update={"content": content, "updated_at": ts})


async def list_tasks(
    stores: Stores,
    chatroom_id: str,
    status: str | None = None,
    limit: int | None = None,
) -> list[Task]:
    """按 queue_position 排序的任务列表

    status 为某个状态名或 "active"（pending + in_progress + queued + backlog）。
    """
    await get_chatroom_or_raise(stores, chatroom_id)
    effective_limit = min(limit, TASK_LIST_MAX_LIMIT) if limit else TASK_LIST_MAX_LIMIT
    if status is None:
        statuses = None
    elif status == "active":
        statuses = sorted(OPEN_LIST_STATUSES)
    else:
        statuses = [TaskStatus(status)]
    return await stores.task_store.list_tasks(
        chatroom_id, statuses=statuses, limit=effective_limit
    )


async def get_task_counts(stores: Stores, chatroom_id: str) -> TaskCounts:
    await get_chatroom_or_raise(stores, chatroom_id)
    return TaskCounts(**await stores.task_store.count_by_status(chatroom_id))
