"""任务生命周期状态机

transition_task 是修改 Task.status 的唯一写路径：
匹配规则 -> 校验谓词 -> 必填字段 -> 原子写入 set/clear 字段 -> 追加审计事件。
流转表是静态的冻结规则元组，覆盖每个状态的进出边。
"""

from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator
from ulid import ULID

from ..exceptions import (
    InvalidTransitionError,
    MissingRequiredFieldError,
    NotFoundError,
    ValidationFailedError,
)
from ..models.enums import BacklogStatus, TaskOrigin, TaskStatus, TaskTrigger
from ..models.event import TaskEvent
from ..models.task import TASK_CLEARABLE_FIELDS, TASK_OVERRIDABLE_FIELDS, Task
from ..store.transaction import UnitOfWork

log = structlog.get_logger()

S = TaskStatus
T = TaskTrigger


class FieldSource(StrEnum):
    """setFields 的取值来源"""

    NOW = "now"
    PROVIDED = "provided"


def _is_backlog_origin(task: Task) -> bool:
    return task.origin == TaskOrigin.BACKLOG


class TransitionRule(BaseModel):
    """单条流转规则"""

    model_config = ConfigDict(frozen=True)

    from_status: TaskStatus
    to_status: TaskStatus
    trigger: TaskTrigger
    required_fields: tuple[str, ...] = ()
    set_fields: dict[str, FieldSource] = Field(default_factory=dict)
    clear_fields: tuple[str, ...] = ()
    validator: Callable[[Task], bool] | None = None
    validation_reason: str | None = None

    @model_validator(mode="after")
    def _check_fields(self) -> "TransitionRule":
        unknown = set(self.clear_fields) - TASK_CLEARABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be cleared: {sorted(unknown)}")
        return self


_SEND_BACK_CLEARS = (
    "acknowledged_at",
    "started_at",
    "assigned_to",
    "completed_at",
    "parent_task_ids",
)
_RESET_CLEARS = ("started_at", "assigned_to", "acknowledged_at")
_MOVE_TO_QUEUE_CLEARS = ("started_at", "assigned_to", "completed_at", "acknowledged_at")
_BACKLOG_ONLY = "only backlog-origin tasks may take this transition"


def _rules(
    froms: tuple[TaskStatus, ...],
    to: TaskStatus,
    trigger: TaskTrigger,
    **kwargs: Any,
) -> tuple[TransitionRule, ...]:
    return tuple(
        TransitionRule(from_status=f, to_status=to, trigger=trigger, **kwargs) for f in froms
    )


TRANSITIONS: tuple[TransitionRule, ...] = (
    # 聊天消息流：pending -> acknowledged -> in_progress -> completed
    *_rules(
        (S.PENDING,),
        S.ACKNOWLEDGED,
        T.CLAIM,
        required_fields=("assigned_to",),
        set_fields={"acknowledged_at": FieldSource.NOW, "assigned_to": FieldSource.PROVIDED},
    ),
    *_rules((S.ACKNOWLEDGED,), S.IN_PROGRESS, T.START, set_fields={"started_at": FieldSource.NOW}),
    *_rules((S.IN_PROGRESS,), S.COMPLETED, T.COMPLETE, set_fields={"completed_at": FieldSource.NOW}),
    *_rules(
        (S.IN_PROGRESS,),
        S.PENDING_USER_REVIEW,
        T.COMPLETE,
        validator=_is_backlog_origin,
        validation_reason=_BACKLOG_ONLY,
    ),
    # Backlog 流：backlog -> backlog_acknowledged -> pending_user_review -> completed
    *_rules(
        (S.BACKLOG,),
        S.BACKLOG_ACKNOWLEDGED,
        T.ATTACH,
        required_fields=("parent_task_ids",),
        set_fields={"parent_task_ids": FieldSource.PROVIDED},
    ),
    *_rules(
        (S.BACKLOG_ACKNOWLEDGED, S.BACKLOG, S.QUEUED, S.PENDING, S.IN_PROGRESS),
        S.PENDING_USER_REVIEW,
        T.PARENT_ACKNOWLEDGED,
    ),
    *_rules(
        (S.PENDING_USER_REVIEW,),
        S.COMPLETED,
        T.MARK_COMPLETE,
        set_fields={"completed_at": FieldSource.NOW},
    ),
    # 返工
    *_rules((S.PENDING_USER_REVIEW,), S.PENDING, T.SEND_BACK_FOR_REWORK, clear_fields=_SEND_BACK_CLEARS),
    *_rules((S.PENDING_USER_REVIEW,), S.QUEUED, T.SEND_BACK_FOR_REWORK, clear_fields=_SEND_BACK_CLEARS),
    # 队列晋升
    *_rules((S.QUEUED,), S.PENDING, T.PROMOTE, clear_fields=_RESET_CLEARS),
    # backlog 进入队列
    *_rules((S.BACKLOG,), S.PENDING, T.MOVE_TO_QUEUE, clear_fields=_MOVE_TO_QUEUE_CLEARS),
    *_rules((S.BACKLOG,), S.QUEUED, T.MOVE_TO_QUEUE, clear_fields=_MOVE_TO_QUEUE_CLEARS),
    # 取消
    *_rules(
        (
            S.PENDING,
            S.ACKNOWLEDGED,
            S.IN_PROGRESS,
            S.QUEUED,
            S.BACKLOG,
            S.BACKLOG_ACKNOWLEDGED,
            S.PENDING_USER_REVIEW,
        ),
        S.CLOSED,
        T.CANCEL,
    ),
    # 掉线恢复
    *_rules((S.IN_PROGRESS,), S.PENDING, T.RESET_STUCK, clear_fields=_RESET_CLEARS),
    # 重新打开
    *_rules(
        (S.COMPLETED, S.CLOSED),
        S.PENDING_USER_REVIEW,
        T.REOPEN,
        clear_fields=("completed_at",),
        validator=_is_backlog_origin,
        validation_reason=_BACKLOG_ONLY,
    ),
    # 强制完成
    *_rules(
        (S.PENDING, S.ACKNOWLEDGED, S.IN_PROGRESS, S.QUEUED, S.BACKLOG),
        S.COMPLETED,
        T.FORCE_COMPLETE,
        set_fields={"completed_at": FieldSource.NOW},
    ),
)

# backlog 子生命周期随触发器推进（仅 origin=backlog 的任务）
_BACKLOG_STATUS_BY_TRIGGER: dict[TaskTrigger, BacklogStatus] = {
    T.START: BacklogStatus.STARTED,
    T.REOPEN: BacklogStatus.STARTED,
    T.MARK_COMPLETE: BacklogStatus.COMPLETE,
    T.FORCE_COMPLETE: BacklogStatus.COMPLETE,
    T.CANCEL: BacklogStatus.CLOSED,
}

_LIST_FIELDS = frozenset({"parent_task_ids"})


def get_valid_transitions_from(status: TaskStatus) -> list[TransitionRule]:
    """指定状态出发的全部规则"""
    return [rule for rule in TRANSITIONS if rule.from_status == status]


def can_transition(
    task: Task,
    to_status: TaskStatus,
    trigger: TaskTrigger | None = None,
) -> bool:
    """不执行，只判断是否存在接受该任务的规则"""
    for rule in TRANSITIONS:
        if rule.from_status != task.status or rule.to_status != to_status:
            continue
        if trigger is not None and rule.trigger != trigger:
            continue
        if rule.validator is None or rule.validator(task):
            return True
    return False


def _describe(rule: TransitionRule) -> dict[str, Any]:
    return {
        "to": rule.to_status.value,
        "trigger": rule.trigger.value,
        "required_fields": list(rule.required_fields),
    }


async def transition_task(
    uow: UnitOfWork,
    task_id: str,
    to_status: TaskStatus,
    trigger: TaskTrigger,
    overrides: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> Task:
    """执行一次状态流转

    Args:
        uow: 当前写事务
        task_id: 任务 ID
        to_status: 目标状态
        trigger: 触发器
        overrides: 调用方提供的字段（仅 assigned_to / parent_task_ids）
        now: 时间戳（缺省为当前 UTC 时间）

    Returns:
        流转后的 Task；已处于目标状态时原样返回且不产生审计事件

    Raises:
        NotFoundError: 任务不存在
        InvalidTransitionError: 无匹配规则
        ValidationFailedError: 所有匹配规则的校验谓词均拒绝
        MissingRequiredFieldError: 缺少规则要求的字段
    """
    overrides = dict(overrides or {})
    unknown = set(overrides) - TASK_OVERRIDABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be overridden through a transition: {sorted(unknown)}")

    task = await uow.task_store.get_task(task_id)
    if task is None:
        raise NotFoundError("Task", task_id)

    from_status = task.status
    if from_status == to_status:
        return task

    candidates = [
        rule
        for rule in TRANSITIONS
        if rule.from_status == from_status
        and rule.to_status == to_status
        and rule.trigger == trigger
    ]
    if not candidates:
        raise InvalidTransitionError(
            task_id=task_id,
            current_status=from_status.value,
            attempted_status=to_status.value,
            trigger=trigger.value,
            valid_transitions=[_describe(r) for r in get_valid_transitions_from(from_status)],
        )

    rule = next((r for r in candidates if r.validator is None or r.validator(task)), None)
    if rule is None:
        raise ValidationFailedError(
            task_id=task_id,
            current_status=from_status.value,
            attempted_status=to_status.value,
            trigger=trigger.value,
            reason=candidates[0].validation_reason or "validation rejected the transition",
        )

    for field in rule.required_fields:
        if overrides.get(field) is None:
            raise MissingRequiredFieldError(
                task_id=task_id,
                current_status=from_status.value,
                attempted_status=to_status.value,
                trigger=trigger.value,
                field=field,
            )

    ts = now or datetime.now(UTC)
    changes: dict[str, Any] = {"status": to_status, "updated_at": ts}
    for field, source in rule.set_fields.items():
        if source == FieldSource.NOW:
            changes[field] = ts
        elif overrides.get(field) is not None:
            changes[field] = overrides[field]
    for field in rule.clear_fields:
        changes[field] = [] if field in _LIST_FIELDS else None
    for field, value in overrides.items():
        if field not in rule.clear_fields:
            changes[field] = value
    if task.origin == TaskOrigin.BACKLOG and trigger in _BACKLOG_STATUS_BY_TRIGGER:
        changes["backlog_status"] = _BACKLOG_STATUS_BY_TRIGGER[trigger]

    await uow.task_store.update_task(task_id, changes)

    event = await uow.event_store.append_event(
        TaskEvent(
            event_id=str(ULID()),
            task_id=task_id,
            chatroom_id=task.chatroom_id,
            ts=ts,
            from_status=from_status,
            to_status=to_status,
            trigger=trigger,
        )
    )
    uow.emitted_events.append(event)

    log.info(
        "task_transitioned",
        task_id=task_id,
        chatroom_id=task.chatroom_id,
        from_status=from_status.value,
        to_status=to_status.value,
        trigger=trigger.value,
    )
    return task.model_copy(update=changes)
