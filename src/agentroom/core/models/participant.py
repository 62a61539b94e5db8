"""Participant Domain Model

参与者首次 join 时创建，之后只做 upsert，永不物理删除。
被清理（swept）的参与者记录 departed_at，重新 join 即恢复。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import ParticipantStatus


class Participant(BaseModel):
    """Participant 数据模型"""

    participant_id: str = Field(description="唯一标识，ULID 格式")
    chatroom_id: str = Field(description="所属聊天室")
    role: str = Field(description="角色名（小写）")
    status: ParticipantStatus = Field(default=ParticipantStatus.WAITING, description="当前状态")
    ready_until: datetime | None = Field(default=None, description="存活过期的绝对时间点")
    connection_id: str | None = Field(default=None, description="当前连接标识")
    joined_at: datetime = Field(description="最近一次 join 时间")
    departed_at: datetime | None = Field(default=None, description="被清理的时间")

    @property
    def is_gone(self) -> bool:
        return self.departed_at is not None

    def is_stale(self, now: datetime) -> bool:
        """ready_until 已过期且尚未被清理"""
        return (
            not self.is_gone
            and self.ready_until is not None
            and self.ready_until <= now
        )
