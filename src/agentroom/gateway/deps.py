"""依赖注入模块 -- 通过 FastAPI Depends 注入 Store / SSEHub / 访问控制

实例通过 app.state 管理，在 lifespan 中初始化/清理。
"""

from agentroom.core.access import AccessPolicy, Identity
from agentroom.core.engine.lifecycle import get_task_or_raise
from agentroom.core.models import Task
from agentroom.core.store import StoreGroup
from fastapi import Depends, Request

from .services.room_service import RoomService
from .services.sse_hub import SSEHub


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_sse_hub(request: Request) -> SSEHub:
    """从 app.state 获取 SSEHub 实例"""
    return request.app.state.sse_hub


def get_access(request: Request) -> AccessPolicy:
    """从 app.state 获取访问控制实现"""
    return request.app.state.access


def get_room_service(
    store_group: StoreGroup = Depends(get_store_group),
    sse_hub: SSEHub = Depends(get_sse_hub),
) -> RoomService:
    return RoomService(store_group, sse_hub)


def bearer_token(request: Request) -> str | None:
    """解析 Authorization: Bearer <token>，缺失或格式不符时返回 None"""
    header = request.headers.get("authorization")
    if not header:
        return None
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def require_token(
    request: Request,
    access: AccessPolicy = Depends(get_access),
) -> str:
    """只校验令牌（不涉及具体聊天室），返回 subject"""
    return access.authenticate(bearer_token(request))


async def authorize_chatroom(
    chatroom_id: str,
    request: Request,
    access: AccessPolicy = Depends(get_access),
) -> Identity:
    """校验令牌可访问路径中的 chatroom_id"""
    return await access.authorize(bearer_token(request), chatroom_id)


async def authorize_task(
    task_id: str,
    request: Request,
    access: AccessPolicy = Depends(get_access),
    store_group: StoreGroup = Depends(get_store_group),
) -> Task:
    """校验令牌可访问任务所属聊天室，返回任务

    先校验令牌，避免未认证调用方探测任务是否存在。
    """
    token = bearer_token(request)
    access.authenticate(token)
    task = await get_task_or_raise(store_group, task_id)
    await access.authorize(token, task.chatroom_id)
    return task
