"""聊天室路由

POST  /api/chatrooms: 创建聊天室
GET   /api/chatrooms: 聊天室列表（按创建时间倒序）
GET   /api/chatrooms/{chatroom_id}: 聊天室详情
PATCH /api/chatrooms/{chatroom_id}: 重命名
POST  /api/chatrooms/{chatroom_id}/interrupt: 中断所有 Agent
GET   /api/chatrooms/{chatroom_id}/readiness: 团队到齐情况
"""

from agentroom.core.access import AccessPolicy, Identity
from agentroom.core.engine import (
    create_chatroom,
    get_team_readiness,
    interrupt_chatroom,
    rename_chatroom,
)
from agentroom.core.engine.readiness import get_chatroom_or_raise
from agentroom.core.models import Chatroom, Message, TeamReadiness
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..deps import (
    authorize_chatroom,
    get_access,
    get_room_service,
    get_store_group,
    require_token,
)
from ..services.room_service import RoomService

router = APIRouter()


class CreateChatroomRequest(BaseModel):
    """创建聊天室请求体"""

    name: str = Field(default="", description="聊天室名称")
    team_roles: list[str] = Field(description="团队角色（有序，至少一个）")
    team_entry_point: str | None = Field(default=None, description="入口角色，缺省为第一个角色")


class RenameChatroomRequest(BaseModel):
    """重命名请求体"""

    name: str = Field(description="新名称")


class ChatroomListResponse(BaseModel):
    """聊天室列表响应"""

    chatrooms: list[Chatroom]


@router.post("/api/chatrooms", response_model=Chatroom, status_code=201)
async def create_chatroom_route(
    body: CreateChatroomRequest,
    _subject: str = Depends(require_token),
    service: RoomService = Depends(get_room_service),
):
    """创建聊天室 -- 返回 201"""
    return await service.run(
        create_chatroom,
        team_roles=body.team_roles,
        name=body.name,
        team_entry_point=body.team_entry_point,
    )


@router.get("/api/chatrooms", response_model=ChatroomListResponse)
async def list_chatrooms(
    _subject: str = Depends(require_token),
    access: AccessPolicy = Depends(get_access),
    store_group=Depends(get_store_group),
):
    """聊天室列表，只返回当前令牌可访问的聊天室"""
    chatrooms = await store_group.chatroom_store.list_chatrooms()
    return ChatroomListResponse(
        chatrooms=[c for c in chatrooms if access.is_allowed(c.chatroom_id)]
    )


@router.get("/api/chatrooms/{chatroom_id}", response_model=Chatroom)
async def get_chatroom(
    identity: Identity = Depends(authorize_chatroom),
    store_group=Depends(get_store_group),
):
    return await get_chatroom_or_raise(store_group, identity.chatroom_id)


@router.patch("/api/chatrooms/{chatroom_id}", response_model=Chatroom)
async def rename_chatroom_route(
    body: RenameChatroomRequest,
    identity: Identity = Depends(authorize_chatroom),
    service: RoomService = Depends(get_room_service),
):
    return await service.run(rename_chatroom, identity.chatroom_id, body.name)


@router.post("/api/chatrooms/{chatroom_id}/interrupt", response_model=Message)
async def interrupt_chatroom_route(
    identity: Identity = Depends(authorize_chatroom),
    service: RoomService = Depends(get_room_service),
):
    """所有在场 Agent 回到 idle，并追加一条 interrupt 消息"""
    return await service.run(interrupt_chatroom, identity.chatroom_id)


@router.get("/api/chatrooms/{chatroom_id}/readiness", response_model=TeamReadiness)
async def chatroom_readiness(
    identity: Identity = Depends(authorize_chatroom),
    store_group=Depends(get_store_group),
):
    return await get_team_readiness(store_group, identity.chatroom_id)
