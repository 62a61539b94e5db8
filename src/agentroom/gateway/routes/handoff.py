"""交接路由

POST /api/chatrooms/{chatroom_id}/handoff: 角色交接
GET  /api/chatrooms/{chatroom_id}/handoff/allowed: 当前角色可交接的目标

分类策略拒绝交接时返回 200 + success=false + restriction，
调用方据此改投 suggested_target。
"""

from agentroom.core.access import Identity
from agentroom.core.engine import get_allowed_handoff_roles, handoff
from agentroom.core.models import AllowedHandoffRoles, HandoffResult
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..deps import authorize_chatroom, get_room_service, get_store_group
from ..services.room_service import RoomService

router = APIRouter()


class HandoffRequest(BaseModel):
    """交接请求体"""

    from_role: str = Field(description="交出工作的角色")
    to_role: str = Field(description="接手角色，user 表示交还给用户")
    content: str = Field(min_length=1, description="交接说明")


@router.post(
    "/api/chatrooms/{chatroom_id}/handoff",
    response_model=HandoffResult,
)
async def post_handoff(
    body: HandoffRequest,
    identity: Identity = Depends(authorize_chatroom),
    service: RoomService = Depends(get_room_service),
):
    return await service.run(
        handoff,
        identity.chatroom_id,
        body.from_role,
        body.to_role,
        body.content,
    )


@router.get(
    "/api/chatrooms/{chatroom_id}/handoff/allowed",
    response_model=AllowedHandoffRoles,
)
async def allowed_handoff_roles(
    role: str = Query(description="准备交接的角色"),
    identity: Identity = Depends(authorize_chatroom),
    store_group=Depends(get_store_group),
):
    return await get_allowed_handoff_roles(store_group, identity.chatroom_id, role)
