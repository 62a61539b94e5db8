"""Chatroom Domain Model

聊天室是一次多 Agent 协作的隔离单元，拥有自己的任务、消息、参与者，
以及单调递增的队列位置计数器。
"""

from datetime import datetime

from pydantic import BaseModel, Field


class Chatroom(BaseModel):
    """Chatroom 数据模型

    queue_position_counter 只在分配任务位置的同一事务内自增，
    不在进程内缓存（服务可能以多个无状态实例运行）。
    """

    chatroom_id: str = Field(description="唯一标识，ULID 格式")
    name: str = Field(default="", description="聊天室名称")
    team_roles: list[str] = Field(default_factory=list, description="团队角色（有序）")
    team_entry_point: str | None = Field(default=None, description="入口角色，缺省为第一个角色")
    queue_position_counter: int = Field(default=0, description="队列位置计数器")
    created_at: datetime = Field(description="创建时间")
    last_activity_at: datetime = Field(description="最后活动时间")

    @property
    def entry_point(self) -> str | None:
        """接收用户未定向消息与队列晋升的入口角色"""
        if self.team_entry_point:
            return self.team_entry_point
        return self.team_roles[0] if self.team_roles else None

    def has_role(self, role: str) -> bool:
        return role.lower() in {r.lower() for r in self.team_roles}
