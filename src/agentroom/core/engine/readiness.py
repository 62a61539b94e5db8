"""参与者就绪状态

all_agents_ready 只看 status：没有任何参与者处于 active 即视为全员就绪。
ready_until 是绝对时间点，过期与否由掉线清理判断。
"""

from datetime import UTC, datetime, timedelta

import structlog

from ..config import HEARTBEAT_TTL_S
from ..exceptions import InvalidRoleError, NotFoundError
from ..models.chatroom import Chatroom
from ..models.enums import ParticipantStatus
from ..models.participant import Participant
from ..store.protocols import Stores
from ..store.transaction import UnitOfWork
from .hierarchy import USER_ROLE, get_highest_priority_role

log = structlog.get_logger()


def normalize_role(role: str) -> str:
    return role.strip().lower()


def default_ready_until(now: datetime) -> datetime:
    return now + timedelta(seconds=HEARTBEAT_TTL_S)


async def get_chatroom_or_raise(stores: Stores, chatroom_id: str) -> Chatroom:
    chatroom = await stores.chatroom_store.get_chatroom(chatroom_id)
    if chatroom is None:
        raise NotFoundError("Chatroom", chatroom_id)
    return chatroom


def require_team_role(chatroom: Chatroom, role: str, allow_user: bool = False) -> str:
    """校验角色属于团队（可选允许 user），返回规范化后的角色名"""
    normalized = normalize_role(role)
    if allow_user and normalized == USER_ROLE:
        return normalized
    if not chatroom.has_role(normalized):
        raise InvalidRoleError(normalized, [r.lower() for r in chatroom.team_roles])
    return normalized


async def all_agents_ready(stores: Stores, chatroom_id: str) -> bool:
    """没有参与者处于 active"""
    participants = await stores.participant_store.list_participants(chatroom_id)
    return all(p.status != ParticipantStatus.ACTIVE for p in participants)


async def list_waiting_roles(stores: Stores, chatroom_id: str) -> list[str]:
    participants = await stores.participant_store.list_participants(chatroom_id)
    return [
        p.role
        for p in participants
        if p.status == ParticipantStatus.WAITING and not p.is_gone
    ]


async def highest_priority_waiting_role(stores: Stores, chatroom_id: str) -> str | None:
    """当前等待中的最高优先级角色，无人等待时返回 None"""
    return get_highest_priority_role(await list_waiting_roles(stores, chatroom_id))


async def get_participant_or_raise(stores: Stores, chatroom_id: str, role: str) -> Participant:
    participant = await stores.participant_store.get_participant(chatroom_id, role)
    if participant is None:
        raise NotFoundError("Participant", f"{chatroom_id}:{role}")
    return participant


async def update_participant_status(
    uow: UnitOfWork,
    chatroom_id: str,
    role: str,
    status: ParticipantStatus,
    expires_at: datetime | None = None,
    now: datetime | None = None,
) -> Participant:
    """更新参与者状态

    idle 清空存活期限；active / waiting 使用 expires_at，缺省时按心跳 TTL 续期。
    """
    ts = now or datetime.now(UTC)
    chatroom = await get_chatroom_or_raise(uow, chatroom_id)
    role = require_team_role(chatroom, role)
    participant = await get_participant_or_raise(uow, chatroom_id, role)
    if participant.is_gone:
        raise NotFoundError("Participant", f"{chatroom_id}:{role}")
    if status == ParticipantStatus.IDLE:
        ready_until = None
    else:
        ready_until = expires_at or default_ready_until(ts)
    await uow.participant_store.update_status(chatroom_id, role, status, ready_until)
    log.info(
        "participant_status_updated",
        chatroom_id=chatroom_id,
        role=role,
        from_status=participant.status.value,
        to_status=status.value,
    )
    return participant.model_copy(update={"status": status, "ready_until": ready_until})


async def heartbeat(
    uow: UnitOfWork,
    chatroom_id: str,
    role: str,
    ready_until: datetime | None = None,
    now: datetime | None = None,
) -> Participant:
    """刷新存活期限；已被清理的参与者必须重新 join"""
    ts = now or datetime.now(UTC)
    role = normalize_role(role)
    participant = await get_participant_or_raise(uow, chatroom_id, role)
    if participant.is_gone:
        raise NotFoundError("Participant", f"{chatroom_id}:{role}")
    expires = ready_until or default_ready_until(ts)
    await uow.participant_store.set_ready_until(chatroom_id, role, expires)
    return participant.model_copy(update={"ready_until": expires})
