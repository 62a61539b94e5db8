"""消息路由

POST /api/chatrooms/{chatroom_id}/messages: 发送消息（用户消息会创建任务）
GET  /api/chatrooms/{chatroom_id}/messages: 最近 N 条消息
GET  /api/chatrooms/{chatroom_id}/messages/next: 按路由规则取某角色的下一条消息
POST /api/chatrooms/{chatroom_id}/messages/{message_id}/claim: 认领消息
POST /api/chatrooms/{chatroom_id}/messages/{message_id}/classify: 用户消息分类
GET  /api/chatrooms/{chatroom_id}/context: 当前任务上下文窗口
"""

from agentroom.core.access import Identity
from agentroom.core.config import MESSAGE_LIST_MAX_LIMIT
from agentroom.core.engine import (
    claim_message,
    classify_message,
    get_context_window,
    get_next_message_for_role,
    send_message,
)
from agentroom.core.exceptions import NotFoundError
from agentroom.core.models import (
    Classification,
    ContextWindow,
    Message,
    MessageClaimResult,
    MessageType,
    SendMessageResult,
)
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..deps import authorize_chatroom, get_room_service, get_store_group
from ..services.room_service import RoomService

router = APIRouter()


class SendMessageRequest(BaseModel):
    """发送消息请求体"""

    sender_role: str = Field(description="发送者角色，用户为 user")
    content: str = Field(min_length=1, description="消息内容")
    type: MessageType = Field(default=MessageType.MESSAGE, description="消息类型")
    target_role: str | None = Field(default=None, description="定向投递的角色")
    attached_task_ids: list[str] = Field(default_factory=list, description="引用的 backlog 任务")


class ClaimMessageRequest(BaseModel):
    role: str


class ClassifyMessageRequest(BaseModel):
    classification: Classification


class MessageListResponse(BaseModel):
    messages: list[Message]


class NextMessageResponse(BaseModel):
    """message 为 None 表示当前没有该角色可处理的消息"""

    message: Message | None = None


async def _message_in_chatroom(store_group, chatroom_id: str, message_id: str) -> Message:
    message = await store_group.message_store.get_message(message_id)
    if message is None or message.chatroom_id != chatroom_id:
        raise NotFoundError("Message", message_id)
    return message


@router.post(
    "/api/chatrooms/{chatroom_id}/messages",
    response_model=SendMessageResult,
    status_code=201,
)
async def post_message(
    body: SendMessageRequest,
    identity: Identity = Depends(authorize_chatroom),
    service: RoomService = Depends(get_room_service),
):
    """发送消息 -- 返回 201

    用户 message 类型的消息同时创建一个 chat 来源任务（pending 或 queued）。
    """
    return await service.run(
        send_message,
        identity.chatroom_id,
        body.sender_role,
        body.content,
        type=body.type,
        target_role=body.target_role,
        attached_task_ids=body.attached_task_ids,
    )


@router.get(
    "/api/chatrooms/{chatroom_id}/messages",
    response_model=MessageListResponse,
)
async def list_messages(
    limit: int = Query(default=100, ge=1, le=MESSAGE_LIST_MAX_LIMIT, description="返回条数"),
    identity: Identity = Depends(authorize_chatroom),
    store_group=Depends(get_store_group),
):
    """最近 limit 条消息，按时间正序"""
    messages = await store_group.message_store.list_messages(identity.chatroom_id, limit)
    return MessageListResponse(messages=messages)


@router.get(
    "/api/chatrooms/{chatroom_id}/messages/next",
    response_model=NextMessageResponse,
)
async def next_message(
    role: str = Query(description="轮询的角色"),
    after: str | None = Query(default=None, description="上一条已处理消息的 ID"),
    identity: Identity = Depends(authorize_chatroom),
    store_group=Depends(get_store_group),
):
    message = await get_next_message_for_role(
        store_group, identity.chatroom_id, role, after_message_id=after
    )
    return NextMessageResponse(message=message)


@router.post(
    "/api/chatrooms/{chatroom_id}/messages/{message_id}/claim",
    response_model=MessageClaimResult,
)
async def claim(
    message_id: str,
    body: ClaimMessageRequest,
    identity: Identity = Depends(authorize_chatroom),
    store_group=Depends(get_store_group),
    service: RoomService = Depends(get_room_service),
):
    """认领消息 -- 路由规则不投递给该角色或已被其他角色认领时 claimed=false"""
    await _message_in_chatroom(store_group, identity.chatroom_id, message_id)
    return await service.run(claim_message, message_id, body.role)


@router.post(
    "/api/chatrooms/{chatroom_id}/messages/{message_id}/classify",
    response_model=Message,
)
async def classify(
    message_id: str,
    body: ClassifyMessageRequest,
    identity: Identity = Depends(authorize_chatroom),
    service: RoomService = Depends(get_room_service),
):
    return await service.run(
        classify_message, identity.chatroom_id, message_id, body.classification
    )


@router.get(
    "/api/chatrooms/{chatroom_id}/context",
    response_model=ContextWindow,
)
async def context_window(
    identity: Identity = Depends(authorize_chatroom),
    store_group=Depends(get_store_group),
):
    return await get_context_window(store_group, identity.chatroom_id)
