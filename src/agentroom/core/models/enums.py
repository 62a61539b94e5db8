"""枚举定义 -- 任务状态、任务来源、流转触发器、消息类型、参与者状态

TaskStatus 是工作流状态的唯一事实来源，时间戳仅作为元数据，
不参与任何业务判断。合法流转规则见 engine/fsm.py。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态"""

    # 聊天消息流：pending -> acknowledged -> in_progress -> completed
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    # Backlog 流：backlog -> backlog_acknowledged -> pending_user_review
    BACKLOG = "backlog"
    BACKLOG_ACKNOWLEDGED = "backlog_acknowledged"
    PENDING_USER_REVIEW = "pending_user_review"

    # 通用
    QUEUED = "queued"
    CLOSED = "closed"


# 活跃槽位：每个聊天室同一时刻至多一个任务处于这些状态
ACTIVE_SLOT_STATUSES: frozenset[TaskStatus] = frozenset(
    {TaskStatus.PENDING, TaskStatus.IN_PROGRESS}
)

# 终态（只有 reopen 可以让 backlog 任务离开终态）
TERMINAL_STATES: frozenset[TaskStatus] = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.CLOSED}
)

# list_tasks(status="active") 对应的状态集合
OPEN_LIST_STATUSES: frozenset[TaskStatus] = frozenset(
    {
        TaskStatus.PENDING,
        TaskStatus.IN_PROGRESS,
        TaskStatus.QUEUED,
        TaskStatus.BACKLOG,
    }
)


class TaskOrigin(StrEnum):
    """任务来源"""

    BACKLOG = "backlog"
    CHAT = "chat"
    NONE = "none"


class BacklogStatus(StrEnum):
    """Backlog 子生命周期，仅 origin=backlog 的任务持有"""

    NOT_STARTED = "not_started"
    STARTED = "started"
    COMPLETE = "complete"
    CLOSED = "closed"


class TaskTrigger(StrEnum):
    """状态流转触发器 -- 引起流转的操作名"""

    CLAIM = "claim_task"
    START = "start_task"
    COMPLETE = "complete_task"
    ATTACH = "attach_to_message"
    PARENT_ACKNOWLEDGED = "parent_task_acknowledged"
    MARK_COMPLETE = "mark_backlog_complete"
    SEND_BACK_FOR_REWORK = "send_back_for_rework"
    PROMOTE = "promote_next_task"
    MOVE_TO_QUEUE = "move_to_queue"
    CANCEL = "cancel_task"
    RESET_STUCK = "reset_stuck_task"
    REOPEN = "reopen_backlog_task"
    FORCE_COMPLETE = "complete_task_by_id"


class MessageType(StrEnum):
    """消息类型"""

    MESSAGE = "message"
    HANDOFF = "handoff"
    INTERRUPT = "interrupt"
    JOIN = "join"
    PROGRESS = "progress"


class Classification(StrEnum):
    """用户消息分类 -- 约束合法的交接目标"""

    QUESTION = "question"
    NEW_FEATURE = "new_feature"
    FOLLOW_UP = "follow_up"
    NONE = "none"


class ParticipantStatus(StrEnum):
    """参与者状态"""

    IDLE = "idle"
    ACTIVE = "active"
    WAITING = "waiting"


class PromotionSkipReason(StrEnum):
    """promote_next 未晋升任何任务的原因"""

    ACTIVE_TASK_EXISTS = "active_task_exists"
    AGENTS_STILL_ACTIVE = "agents_still_active"
    NO_QUEUED_TASKS = "no_queued_tasks"
