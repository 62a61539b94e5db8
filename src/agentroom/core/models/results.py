"""编排操作的结构化返回值

HandoffRestriction 作为可恢复的结果返回而不是抛出，
调用方据此向 Agent 建议替代交接目标。
"""

from pydantic import BaseModel, Field

from .enums import Classification, PromotionSkipReason
from .event import TaskEvent
from .message import Message
from .participant import Participant
from .task import Task


class PromotionResult(BaseModel):
    """promote_next 结果：promoted_task_id 与 reason 二选一"""

    promoted_task_id: str | None = None
    reason: PromotionSkipReason | None = None

    @property
    def promoted(self) -> bool:
        return self.promoted_task_id is not None


class MessageClaimResult(BaseModel):
    """claim_message 结果，role 为规范化后的角色名"""

    message_id: str
    role: str
    claimed: bool


class HandoffRestriction(BaseModel):
    """交接被分类策略拒绝"""

    code: str = "HANDOFF_RESTRICTED"
    message: str
    from_role: str
    to_role: str
    classification: Classification
    suggested_target: str | None = Field(default=None, description="建议的替代目标角色")


class HandoffResult(BaseModel):
    """handoff 结果"""

    success: bool
    message_id: str | None = None
    new_task_id: str | None = None
    completed_task_ids: list[str] = Field(default_factory=list)
    review_task_ids: list[str] = Field(
        default_factory=list,
        description="流转到 pending_user_review 的任务",
    )
    promotion: PromotionResult | None = None
    restriction: HandoffRestriction | None = None


class AllowedHandoffRoles(BaseModel):
    """当前角色可交接的目标"""

    available_roles: list[str] = Field(default_factory=list)
    can_handoff_to_user: bool = True
    restriction_reason: str | None = None
    current_classification: Classification = Classification.NONE


class JoinResult(BaseModel):
    """join 结果"""

    participant: Participant
    rejoined: bool = Field(description="参与者此前已存在且未被清理")
    recovered_task_ids: list[str] = Field(default_factory=list)
    promotion: PromotionResult | None = None


class SendMessageResult(BaseModel):
    """send_message 结果"""

    message: Message
    task: Task | None = None
    attached_task_ids: list[str] = Field(default_factory=list)


class CompleteTaskResult(BaseModel):
    """complete_task 结果"""

    completed_task_ids: list[str] = Field(default_factory=list)
    review_task_ids: list[str] = Field(default_factory=list)
    promotion: PromotionResult | None = None

    @property
    def completed(self) -> bool:
        return bool(self.completed_task_ids or self.review_task_ids)


class ContextWindow(BaseModel):
    """当前任务的上下文窗口：最近一条非 follow_up 用户消息及其后的所有消息"""

    origin_message: Message | None = None
    context_messages: list[Message] = Field(default_factory=list)
    classification: Classification = Classification.NONE


class TaskCounts(BaseModel):
    """各状态任务数量"""

    pending: int = 0
    acknowledged: int = 0
    in_progress: int = 0
    queued: int = 0
    backlog: int = 0
    backlog_acknowledged: int = 0
    pending_user_review: int = 0
    completed: int = 0
    closed: int = 0


class SweepReport(BaseModel):
    """一次掉线清理的统计"""

    swept_participants: list[str] = Field(
        default_factory=list,
        description="被清理的参与者，格式 chatroom_id:role",
    )
    recovered_task_ids: list[str] = Field(default_factory=list)
    failed_participants: list[str] = Field(default_factory=list)
    events: list[TaskEvent] = Field(default_factory=list, description="已提交的流转事件")


class TaskActionResult(BaseModel):
    """单任务操作结果（取消 / 强制完成），附带可能触发的晋升"""

    task: Task
    promotion: PromotionResult | None = None


class TeamReadiness(BaseModel):
    """团队到齐情况：所有角色都已 join 且未过期才算就绪"""

    expected_roles: list[str] = Field(default_factory=list)
    present_roles: list[str] = Field(default_factory=list)
    missing_roles: list[str] = Field(default_factory=list)
    expired_roles: list[str] = Field(default_factory=list)
    is_ready: bool = False
