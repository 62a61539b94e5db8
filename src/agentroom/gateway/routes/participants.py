"""参与者路由

POST /api/chatrooms/{chatroom_id}/participants/{role}/join
PUT  /api/chatrooms/{chatroom_id}/participants/{role}/status
POST /api/chatrooms/{chatroom_id}/participants/{role}/heartbeat
GET  /api/chatrooms/{chatroom_id}/participants
GET  /api/chatrooms/{chatroom_id}/participants/highest-waiting
GET  /api/chatrooms/{chatroom_id}/participants/{role}
"""

from agentroom.core.access import Identity
from agentroom.core.engine import (
    heartbeat,
    highest_priority_waiting_role,
    join,
    update_participant_status,
)
from agentroom.core.engine.readiness import get_participant_or_raise, normalize_role
from agentroom.core.models import JoinResult, Participant, ParticipantStatus
from fastapi import APIRouter, Depends
from pydantic import AwareDatetime, BaseModel, Field

from ..deps import authorize_chatroom, get_room_service, get_store_group
from ..services.room_service import RoomService

router = APIRouter()


class JoinRequest(BaseModel):
    """join 请求体"""

    ready_until: AwareDatetime | None = Field(default=None, description="存活期限，缺省按心跳 TTL")
    connection_id: str | None = Field(default=None, description="连接标识")


class StatusRequest(BaseModel):
    """状态更新请求体"""

    status: ParticipantStatus
    expires_at: AwareDatetime | None = Field(default=None, description="存活期限，缺省按心跳 TTL")


class HeartbeatRequest(BaseModel):
    """心跳请求体"""

    ready_until: AwareDatetime | None = None


class ParticipantListResponse(BaseModel):
    participants: list[Participant]


class HighestWaitingResponse(BaseModel):
    role: str | None


@router.post(
    "/api/chatrooms/{chatroom_id}/participants/{role}/join",
    response_model=JoinResult,
)
async def join_chatroom(
    role: str,
    body: JoinRequest | None = None,
    identity: Identity = Depends(authorize_chatroom),
    service: RoomService = Depends(get_room_service),
):
    """Agent 加入聊天室（重复 join 视为重连，会恢复遗留任务）"""
    body = body or JoinRequest()
    return await service.run(
        join,
        identity.chatroom_id,
        role,
        ready_until=body.ready_until,
        connection_id=body.connection_id,
    )


@router.put(
    "/api/chatrooms/{chatroom_id}/participants/{role}/status",
    response_model=Participant,
)
async def update_status(
    role: str,
    body: StatusRequest,
    identity: Identity = Depends(authorize_chatroom),
    service: RoomService = Depends(get_room_service),
):
    return await service.run(
        update_participant_status,
        identity.chatroom_id,
        role,
        body.status,
        expires_at=body.expires_at,
    )


@router.post(
    "/api/chatrooms/{chatroom_id}/participants/{role}/heartbeat",
    response_model=Participant,
)
async def participant_heartbeat(
    role: str,
    body: HeartbeatRequest | None = None,
    identity: Identity = Depends(authorize_chatroom),
    service: RoomService = Depends(get_room_service),
):
    ready_until = body.ready_until if body else None
    return await service.run(heartbeat, identity.chatroom_id, role, ready_until=ready_until)


@router.get(
    "/api/chatrooms/{chatroom_id}/participants",
    response_model=ParticipantListResponse,
)
async def list_participants(
    identity: Identity = Depends(authorize_chatroom),
    store_group=Depends(get_store_group),
):
    participants = await store_group.participant_store.list_participants(identity.chatroom_id)
    return ParticipantListResponse(participants=participants)


# 需注册在 /participants/{role} 之前
@router.get(
    "/api/chatrooms/{chatroom_id}/participants/highest-waiting",
    response_model=HighestWaitingResponse,
)
async def highest_waiting(
    identity: Identity = Depends(authorize_chatroom),
    store_group=Depends(get_store_group),
):
    """当前等待中的最高优先级角色"""
    role = await highest_priority_waiting_role(store_group, identity.chatroom_id)
    return HighestWaitingResponse(role=role)


@router.get(
    "/api/chatrooms/{chatroom_id}/participants/{role}",
    response_model=Participant,
)
async def get_participant(
    role: str,
    identity: Identity = Depends(authorize_chatroom),
    store_group=Depends(get_store_group),
):
    return await get_participant_or_raise(
        store_group, identity.chatroom_id, normalize_role(role)
    )
