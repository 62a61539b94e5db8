"""RoomService -- 在写事务内执行编排操作并广播事件

引擎写操作签名统一为 operation(uow, ...)。本服务负责：
1. 开启 StoreGroup.transaction()
2. 执行操作
3. 提交成功后把 uow.emitted_events 推送给 SSEHub
回滚的事务不会广播任何事件。
"""

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog
from agentroom.core.models import TaskEvent
from agentroom.core.store import StoreGroup

from .sse_hub import SSEHub

log = structlog.get_logger()

T = TypeVar("T")


class RoomService:
    """编排操作的事务 + 广播封装"""

    def __init__(self, store_group: StoreGroup, sse_hub: SSEHub | None = None) -> None:
        self._stores = store_group
        self._sse_hub = sse_hub

    async def run(
        self,
        operation: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """在单个写事务内执行 operation(uow, *args, **kwargs)

        异常原样抛出（事务已回滚），由 Gateway 异常处理器统一渲染。
        """
        async with self._stores.transaction() as uow:
            result = await operation(uow, *args, **kwargs)
            events = list(uow.emitted_events)

        await self._publish(events)
        return result

    async def _publish(self, events: list[TaskEvent]) -> None:
        if not events or self._sse_hub is None:
            return
        await self._sse_hub.publish(events)
        log.debug("task_events_published", event_count=len(events))
