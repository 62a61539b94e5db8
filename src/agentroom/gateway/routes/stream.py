"""SSE 事件流路由

GET /api/chatrooms/{chatroom_id}/stream: 实时推送聊天室内的任务流转事件。
支持历史事件推送、实时新事件推送、Last-Event-ID 断线重连、心跳保活。
"""

import asyncio
import json
from collections.abc import AsyncIterator

from agentroom.core.access import Identity
from agentroom.core.config import SSE_HEARTBEAT_INTERVAL
from agentroom.core.models import TaskEvent
from agentroom.core.store import StoreGroup
from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from ..deps import authorize_chatroom, get_sse_hub, get_store_group
from ..services.sse_hub import SSEHub

router = APIRouter()

SSE_EVENT_NAME = "task_transition"


def _event_to_sse(event: TaskEvent) -> dict:
    """将 TaskEvent 转换为 SSE 帧"""
    data = {
        "event_id": event.event_id,
        "seq": event.seq,
        "task_id": event.task_id,
        "chatroom_id": event.chatroom_id,
        "ts": event.ts.isoformat(),
        "from_status": event.from_status.value,
        "to_status": event.to_status.value,
        "trigger": event.trigger.value,
    }
    return {
        "id": event.event_id,
        "event": SSE_EVENT_NAME,
        "data": json.dumps(data, ensure_ascii=False),
    }


async def chatroom_event_stream(
    store_group: StoreGroup,
    sse_hub: SSEHub,
    chatroom_id: str,
    last_event_id: str | None = None,
    heartbeat_interval: float = SSE_HEARTBEAT_INTERVAL,
) -> AsyncIterator[dict]:
    """聊天室事件流

    1. 先订阅 SSEHub，避免历史查询与订阅之间的事件丢失
    2. 推送历史事件（带 last_event_id 时只推送其后的事件）
    3. 实时推送新事件，按 seq 去重
    4. 心跳保活
    """
    queue = await sse_hub.subscribe(chatroom_id)
    try:
        history = await store_group.event_store.get_events_after(chatroom_id, last_event_id)
        last_seq = 0
        for event in history:
            yield _event_to_sse(event)
            last_seq = event.seq

        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=heartbeat_interval)
            except TimeoutError:
                yield {"comment": "heartbeat"}
                continue
            # 订阅后、历史查询前提交的事件会重复出现
            if event.seq <= last_seq:
                continue
            yield _event_to_sse(event)
            last_seq = event.seq
    finally:
        await sse_hub.unsubscribe(chatroom_id, queue)


@router.get("/api/chatrooms/{chatroom_id}/stream")
async def stream_chatroom_events(
    request: Request,
    identity: Identity = Depends(authorize_chatroom),
    store_group=Depends(get_store_group),
    sse_hub=Depends(get_sse_hub),
):
    """SSE 事件流端点"""
    last_event_id = request.headers.get("last-event-id")
    return EventSourceResponse(
        chatroom_event_stream(store_group, sse_hub, identity.chatroom_id, last_event_id)
    )
