"""Store Protocol 接口定义

编排引擎只依赖这些结构化接口；SQLite 实现见同目录各 *_store.py。
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol

from ..models.chatroom import Chatroom
from ..models.enums import ParticipantStatus, TaskStatus
from ..models.event import TaskEvent
from ..models.message import Message
from ..models.participant import Participant
from ..models.task import Task


class ChatroomStore(Protocol):
    """Chatroom 存储接口"""

    async def create_chatroom(self, chatroom: Chatroom) -> None: ...

    async def get_chatroom(self, chatroom_id: str) -> Chatroom | None: ...

    async def list_chatrooms(self) -> list[Chatroom]: ...

    async def increment_queue_counter(self, chatroom_id: str) -> int | None:
        """原子自增队列位置计数器"""
        ...

    async def touch(self, chatroom_id: str, ts: datetime) -> None: ...

    async def rename(self, chatroom_id: str, name: str) -> None: ...


class TaskStore(Protocol):
    """Task 存储接口"""

    async def create_task(self, task: Task) -> None: ...

    async def get_task(self, task_id: str) -> Task | None: ...

    async def list_tasks(
        self,
        chatroom_id: str,
        statuses: Iterable[TaskStatus] | None = None,
        assigned_to: str | None = None,
        limit: int | None = None,
    ) -> list[Task]: ...

    async def get_first_with_status(
        self,
        chatroom_id: str,
        status: TaskStatus,
    ) -> Task | None: ...

    async def count_open_tasks(self, chatroom_id: str) -> int: ...

    async def count_by_status(self, chatroom_id: str) -> dict[str, int]: ...

    async def update_task(self, task_id: str, changes: dict[str, Any]) -> None:
        """仅由 FSM 与内容编辑调用"""
        ...


class MessageStore(Protocol):
    """Message 存储接口"""

    async def append_message(self, message: Message) -> Message: ...

    async def get_message(self, message_id: str) -> Message | None: ...

    async def list_messages(self, chatroom_id: str, limit: int) -> list[Message]: ...

    async def list_messages_after(
        self,
        chatroom_id: str,
        after_seq: int = 0,
    ) -> list[Message]: ...

    async def find_latest_user_message(
        self,
        chatroom_id: str,
        before_seq: int | None = None,
        classified_only: bool = False,
        exclude_follow_up: bool = False,
    ) -> Message | None: ...

    async def claim_message(self, message_id: str, role: str, ts: datetime) -> bool: ...

    async def update_message(self, message_id: str, changes: dict[str, Any]) -> None: ...


class ParticipantStore(Protocol):
    """Participant 存储接口"""

    async def upsert_participant(self, participant: Participant) -> None: ...

    async def get_participant(self, chatroom_id: str, role: str) -> Participant | None: ...

    async def list_participants(self, chatroom_id: str) -> list[Participant]: ...

    async def list_present_participants(self) -> list[Participant]: ...

    async def update_status(
        self,
        chatroom_id: str,
        role: str,
        status: ParticipantStatus,
        ready_until: datetime | None,
    ) -> None: ...

    async def set_ready_until(
        self,
        chatroom_id: str,
        role: str,
        ready_until: datetime,
    ) -> None: ...

    async def mark_departed(self, chatroom_id: str, role: str, ts: datetime) -> None: ...


class TaskEventStore(Protocol):
    """TaskEvent 存储接口

    事件表 append-only：只允许插入，不允许更新或删除。
    """

    async def append_event(self, event: TaskEvent) -> TaskEvent: ...

    async def get_events_for_task(self, task_id: str) -> list[TaskEvent]: ...

    async def get_events_after(
        self,
        chatroom_id: str,
        after_event_id: str | None = None,
    ) -> list[TaskEvent]: ...


class Stores(Protocol):
    """引擎读取路径依赖的 Store 集合（StoreGroup 与 UnitOfWork 都满足）"""

    chatroom_store: ChatroomStore
    task_store: TaskStore
    message_store: MessageStore
    participant_store: ParticipantStore
    event_store: TaskEventStore
