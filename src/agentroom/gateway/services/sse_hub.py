"""SSEHub -- 内存中任务事件广播器

按 chatroom_id 分组，每个订阅者持有一个 asyncio.Queue。
只广播已提交事务中的事件。
"""

import asyncio
from collections import defaultdict

from agentroom.core.models import TaskEvent


class SSEHub:
    """SSE 事件广播器 -- 基于 asyncio.Queue 的发布/订阅模式"""

    def __init__(self, queue_maxsize: int = 100) -> None:
        # chatroom_id -> set of asyncio.Queue
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._queue_maxsize = queue_maxsize

    def subscriber_count(self, chatroom_id: str) -> int:
        return len(self._subscribers.get(chatroom_id, ()))

    async def subscribe(self, chatroom_id: str) -> asyncio.Queue:
        """订阅指定聊天室的任务事件

        Args:
            chatroom_id: 要订阅的聊天室 ID

        Returns:
            asyncio.Queue 实例，新事件会被推送到此队列
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._subscribers[chatroom_id].add(queue)
        return queue

    async def unsubscribe(self, chatroom_id: str, queue: asyncio.Queue) -> None:
        """取消订阅"""
        subscribers = self._subscribers.get(chatroom_id)
        if subscribers is None:
            return
        subscribers.discard(queue)
        if not subscribers:
            del self._subscribers[chatroom_id]

    async def broadcast(self, chatroom_id: str, event: TaskEvent) -> None:
        """向聊天室的所有订阅者广播事件

        队列已满的订阅者视为失联，直接移除。
        """
        dead_queues = []
        for queue in self._subscribers.get(chatroom_id, set()):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                dead_queues.append(queue)

        for q in dead_queues:
            self._subscribers[chatroom_id].discard(q)
        if chatroom_id in self._subscribers and not self._subscribers[chatroom_id]:
            del self._subscribers[chatroom_id]

    async def publish(self, events: list[TaskEvent]) -> None:
        """按提交顺序广播一批事件"""
        for event in events:
            await self.broadcast(event.chatroom_id, event)
