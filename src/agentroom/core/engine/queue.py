"""队列位置分配与晋升

队列位置由聊天室行上的计数器在同一写事务内自增分配，
严格递增且永不复用。活跃槽位（pending / in_progress）至多一个任务。
已认领未开始（acknowledged）的任务即将进入 in_progress，
为新任务选择 pending / queued 时视为槽位已占用。
"""

from datetime import UTC, datetime

import structlog
from ulid import ULID

from ..config import MAX_ACTIVE_TASKS
from ..exceptions import NotFoundError, TaskLimitExceededError
from ..models.enums import (
    BacklogStatus,
    PromotionSkipReason,
    TaskOrigin,
    TaskStatus,
    TaskTrigger,
)
from ..models.results import PromotionResult
from ..models.task import Task
from ..store.protocols import Stores
from ..store.transaction import UnitOfWork
from .fsm import transition_task
from .readiness import all_agents_ready

log = structlog.get_logger()


async def next_queue_position(uow: UnitOfWork, chatroom_id: str) -> int:
    """原子读-自增-写聊天室计数器"""
    position = await uow.chatroom_store.increment_queue_counter(chatroom_id)
    if position is None:
        raise NotFoundError("Chatroom", chatroom_id)
    return position


async def get_active_task(stores: Stores, chatroom_id: str) -> Task | None:
    """占据活跃槽位的任务：in_progress 优先，其次 pending"""
    for status in (TaskStatus.IN_PROGRESS, TaskStatus.PENDING):
        task = await stores.task_store.get_first_with_status(chatroom_id, status)
        if task is not None:
            return task
    return None


async def is_active_slot_free(stores: Stores, chatroom_id: str) -> bool:
    if await get_active_task(stores, chatroom_id) is not None:
        return False
    claimed = await stores.task_store.get_first_with_status(chatroom_id, TaskStatus.ACKNOWLEDGED)
    return claimed is None


async def promote_next(
    uow: UnitOfWork,
    chatroom_id: str,
    now: datetime | None = None,
) -> PromotionResult:
    """活跃槽位为空且无人 active 时，把 queue_position 最小的 queued 任务晋升为 pending"""
    if not await is_active_slot_free(uow, chatroom_id):
        return PromotionResult(reason=PromotionSkipReason.ACTIVE_TASK_EXISTS)

    if not await all_agents_ready(uow, chatroom_id):
        return PromotionResult(reason=PromotionSkipReason.AGENTS_STILL_ACTIVE)

    next_task = await uow.task_store.get_first_with_status(chatroom_id, TaskStatus.QUEUED)
    if next_task is None:
        return PromotionResult(reason=PromotionSkipReason.NO_QUEUED_TASKS)

    await transition_task(
        uow,
        next_task.task_id,
        TaskStatus.PENDING,
        TaskTrigger.PROMOTE,
        now=now,
    )
    log.info(
        "task_promoted",
        chatroom_id=chatroom_id,
        task_id=next_task.task_id,
        queue_position=next_task.queue_position,
    )
    return PromotionResult(promoted_task_id=next_task.task_id)


async def create_task(
    uow: UnitOfWork,
    chatroom_id: str,
    content: str,
    created_by: str,
    is_backlog: bool = False,
    source_message_id: str | None = None,
    origin: TaskOrigin | None = None,
    assigned_to: str | None = None,
    bypass_queue: bool = False,
    now: datetime | None = None,
) -> Task:
    """创建任务并分配队列位置

    初始状态：backlog 任务为 backlog；其余活跃槽位空则 pending，否则 queued。
    bypass_queue=True（交接）直接进入 pending。

    Raises:
        TaskLimitExceededError: 未结束任务数已达上限
        ActiveSlotOccupiedError: bypass_queue 时活跃槽位已被占用
    """
    ts = now or datetime.now(UTC)

    open_count = await uow.task_store.count_open_tasks(chatroom_id)
    if open_count >= MAX_ACTIVE_TASKS:
        raise TaskLimitExceededError(MAX_ACTIVE_TASKS)

    position = await next_queue_position(uow, chatroom_id)

    if is_backlog:
        status = TaskStatus.BACKLOG
    elif bypass_queue or await is_active_slot_free(uow, chatroom_id):
        status = TaskStatus.PENDING
    else:
        status = TaskStatus.QUEUED

    task_origin = TaskOrigin.BACKLOG if is_backlog else (origin or TaskOrigin.NONE)
    task = Task(
        task_id=str(ULID()),
        chatroom_id=chatroom_id,
        status=status,
        origin=task_origin,
        content=content,
        created_by=created_by,
        assigned_to=assigned_to,
        queue_position=position,
        source_message_id=source_message_id,
        backlog_status=BacklogStatus.NOT_STARTED if is_backlog else None,
        created_at=ts,
        updated_at=ts,
    )
    await uow.task_store.create_task(task)
    log.info(
        "task_created",
        chatroom_id=chatroom_id,
        task_id=task.task_id,
        status=status.value,
        origin=task_origin.value,
        queue_position=position,
    )
    return task


async def _slot_target(uow: UnitOfWork, chatroom_id: str) -> TaskStatus:
    if await is_active_slot_free(uow, chatroom_id):
        return TaskStatus.PENDING
    return TaskStatus.QUEUED


async def move_to_queue(
    uow: UnitOfWork,
    task_id: str,
    now: datetime | None = None,
) -> Task:
    """backlog 任务进入队列：活跃槽位空则 pending，否则 queued

    保留原 queue_position。
    """
    task = await uow.task_store.get_task(task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    target = await _slot_target(uow, task.chatroom_id)
    return await transition_task(uow, task_id, target, TaskTrigger.MOVE_TO_QUEUE, now=now)


async def send_back_for_rework(
    uow: UnitOfWork,
    task_id: str,
    now: datetime | None = None,
) -> Task:
    """待用户复核的任务返工：活跃槽位空则 pending，否则 queued"""
    task = await uow.task_store.get_task(task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    target = await _slot_target(uow, task.chatroom_id)
    return await transition_task(
        uow, task_id, target, TaskTrigger.SEND_BACK_FOR_REWORK, now=now
    )
