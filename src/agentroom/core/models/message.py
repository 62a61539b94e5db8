"""Message Domain Model

消息在聊天室内按 seq 全序排列，路由游标即上一条已处理消息的 ID。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import Classification, MessageType


class Message(BaseModel):
    """Message 数据模型"""

    message_id: str = Field(description="唯一标识，ULID 格式")
    chatroom_id: str = Field(description="所属聊天室")
    seq: int = Field(default=0, description="聊天室内全序序号，落库时分配")
    sender_role: str = Field(description="发送者角色，用户为 user")
    content: str = Field(description="消息内容")
    type: MessageType = Field(default=MessageType.MESSAGE, description="消息类型")
    target_role: str | None = Field(default=None, description="定向投递的角色")
    classification: Classification = Field(
        default=Classification.NONE,
        description="用户消息分类，none 表示尚未分类",
    )
    task_id: str | None = Field(default=None, description="关联任务")
    attached_task_ids: list[str] = Field(default_factory=list, description="引用的 backlog 任务")
    claimed_by_role: str | None = Field(default=None, description="已认领该消息的角色")
    task_origin_message_id: str | None = Field(
        default=None,
        description="follow_up 消息指向的原始消息",
    )
    created_at: datetime = Field(description="创建时间")
    acknowledged_at: datetime | None = Field(default=None, description="首次认领时间")
    completed_at: datetime | None = Field(default=None, description="处理完成时间")

    @property
    def is_from_user(self) -> bool:
        return self.sender_role.lower() == "user"
