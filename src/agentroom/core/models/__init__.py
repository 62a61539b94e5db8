"""AgentRoom Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .chatroom import Chatroom
from .enums import (
    ACTIVE_SLOT_STATUSES,
    OPEN_LIST_STATUSES,
    TERMINAL_STATES,
    BacklogStatus,
    Classification,
    MessageType,
    ParticipantStatus,
    PromotionSkipReason,
    TaskOrigin,
    TaskStatus,
    TaskTrigger,
)
from .event import TaskEvent
from .message import Message
from .participant import Participant
from .results import (
    AllowedHandoffRoles,
    CompleteTaskResult,
    ContextWindow,
    HandoffRestriction,
    HandoffResult,
    JoinResult,
    MessageClaimResult,
    PromotionResult,
    SendMessageResult,
    SweepReport,
    TaskActionResult,
    TaskCounts,
    TeamReadiness,
)
from .task import Task

__all__ = [
    # 枚举
    "TaskStatus",
    "TaskOrigin",
    "TaskTrigger",
    "BacklogStatus",
    "MessageType",
    "Classification",
    "ParticipantStatus",
    "PromotionSkipReason",
    # 状态集合
    "ACTIVE_SLOT_STATUSES",
    "TERMINAL_STATES",
    "OPEN_LIST_STATUSES",
    # 实体
    "Chatroom",
    "Task",
    "Message",
    "Participant",
    "TaskEvent",
    # 结果
    "PromotionResult",
    "HandoffRestriction",
    "HandoffResult",
    "AllowedHandoffRoles",
    "JoinResult",
    "MessageClaimResult",
    "SendMessageResult",
    "CompleteTaskResult",
    "ContextWindow",
    "TaskActionResult",
    "TaskCounts",
    "TeamReadiness",
    "SweepReport",
]
