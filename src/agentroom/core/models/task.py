"""Task Domain Model

状态只能通过 engine/fsm.transition_task 修改；
acknowledged_at / started_at / completed_at 仅由 FSM 规则设置或清空。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import BacklogStatus, TaskOrigin, TaskStatus


class Task(BaseModel):
    """Task 数据模型"""

    task_id: str = Field(description="唯一标识，ULID 格式")
    chatroom_id: str = Field(description="所属聊天室")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="当前状态")
    origin: TaskOrigin = Field(default=TaskOrigin.NONE, description="任务来源")
    content: str = Field(description="任务内容")
    created_by: str = Field(description="创建者角色")
    assigned_to: str | None = Field(default=None, description="被分配的角色")
    queue_position: int = Field(description="队列位置，聊天室内唯一且递增")
    source_message_id: str | None = Field(default=None, description="来源消息 ID")
    parent_task_ids: list[str] = Field(default_factory=list, description="挂靠的父任务")
    backlog_status: BacklogStatus | None = Field(
        default=None,
        description="Backlog 子生命周期，仅 origin=backlog 时存在",
    )
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间，每次流转刷新")
    acknowledged_at: datetime | None = Field(default=None, description="被认领时间")
    started_at: datetime | None = Field(default=None, description="开始时间")
    completed_at: datetime | None = Field(default=None, description="完成时间")


# 允许通过 FSM overrides 写入的字段
TASK_OVERRIDABLE_FIELDS: frozenset[str] = frozenset(
    {"assigned_to", "parent_task_ids"}
)

# FSM 可清空的字段（清空 list 字段写入空列表）
TASK_CLEARABLE_FIELDS: frozenset[str] = frozenset(
    {
        "assigned_to",
        "parent_task_ids",
        "acknowledged_at",
        "started_at",
        "completed_at",
    }
)
