"""TaskEvent Domain Model -- 任务状态流转审计记录

事件表 append-only，不允许更新或删除。
seq 在全表严格单调递增，用于 SSE 断线重连时的增量查询。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import TaskStatus, TaskTrigger


class TaskEvent(BaseModel):
    """TaskEvent 数据模型"""

    event_id: str = Field(description="唯一标识，ULID 格式")
    seq: int = Field(default=0, description="全局序号，落库时分配")
    task_id: str = Field(description="关联的 Task ID")
    chatroom_id: str = Field(description="所属聊天室")
    ts: datetime = Field(description="事件时间戳")
    from_status: TaskStatus = Field(description="流转前状态")
    to_status: TaskStatus = Field(description="流转后状态")
    trigger: TaskTrigger = Field(description="触发器")
