"""聊天室操作：创建、查询、重命名、中断、团队到齐情况"""

from datetime import UTC, datetime

import structlog
from ulid import ULID

from ..exceptions import ChatroomConfigError, InvalidRoleError
from ..models.chatroom import Chatroom
from ..models.enums import MessageType, ParticipantStatus
from ..models.message import Message
from ..models.results import TeamReadiness
from ..store.protocols import Stores
from ..store.transaction import UnitOfWork
from .hierarchy import USER_ROLE
from .readiness import get_chatroom_or_raise, normalize_role

log = structlog.get_logger()

SYSTEM_ROLE = "system"
CHATROOM_NAME_MAX_LENGTH = 100


def _normalize_team(team_roles: list[str]) -> list[str]:
    roles = list(dict.fromkeys(normalize_role(r) for r in team_roles if r.strip()))
    if not roles:
        raise ChatroomConfigError("A chatroom needs at least one team role")
    if USER_ROLE in roles or SYSTEM_ROLE in roles:
        raise ChatroomConfigError(
            f"Team roles cannot include reserved roles '{USER_ROLE}' or '{SYSTEM_ROLE}'",
            details={"team_roles": team_roles},
        )
    return roles


async def create_chatroom(
    uow: UnitOfWork,
    team_roles: list[str],
    name: str = "",
    team_entry_point: str | None = None,
    now: datetime | None = None,
) -> Chatroom:
    """创建聊天室；入口角色必须属于团队"""
    ts = now or datetime.now(UTC)
    roles = _normalize_team(team_roles)
    entry_point = normalize_role(team_entry_point) if team_entry_point else None
    if entry_point is not None and entry_point not in roles:
        raise InvalidRoleError(entry_point, roles)

    chatroom = Chatroom(
        chatroom_id=str(ULID()),
        name=name.strip(),
        team_roles=roles,
        team_entry_point=entry_point,
        created_at=ts,
        last_activity_at=ts,
    )
    await uow.chatroom_store.create_chatroom(chatroom)
    log.info(
        "chatroom_created",
        chatroom_id=chatroom.chatroom_id,
        team_roles=roles,
        entry_point=chatroom.entry_point,
    )
    return chatroom


async def rename_chatroom(
    uow: UnitOfWork,
    chatroom_id: str,
    name: str,
) -> Chatroom:
    chatroom = await get_chatroom_or_raise(uow, chatroom_id)
    trimmed = name.strip()
    if not trimmed:
        raise ChatroomConfigError("Chatroom name cannot be empty")
    if len(trimmed) > CHATROOM_NAME_MAX_LENGTH:
        raise ChatroomConfigError(
            f"Chatroom name cannot exceed {CHATROOM_NAME_MAX_LENGTH} characters"
        )
    await uow.chatroom_store.rename(chatroom_id, trimmed)
    return chatroom.model_copy(update={"name": trimmed})


async def interrupt_chatroom(
    uow: UnitOfWork,
    chatroom_id: str,
    now: datetime | None = None,
) -> Message:
    """所有参与者回到 idle，并广播一条 interrupt 消息"""
    ts = now or datetime.now(UTC)
    await get_chatroom_or_raise(uow, chatroom_id)
    participants = await uow.participant_store.list_participants(chatroom_id)
    for participant in participants:
        if participant.is_gone:
            continue
        await uow.participant_store.update_status(
            chatroom_id, participant.role, ParticipantStatus.IDLE, None
        )
    message = await uow.message_store.append_message(
        Message(
            message_id=str(ULID()),
            chatroom_id=chatroom_id,
            sender_role=SYSTEM_ROLE,
            content="Chatroom interrupted by user",
            type=MessageType.INTERRUPT,
            created_at=ts,
        )
    )
    await uow.chatroom_store.touch(chatroom_id, ts)
    log.info("chatroom_interrupted", chatroom_id=chatroom_id, participants=len(participants))
    return message


async def get_team_readiness(
    stores: Stores,
    chatroom_id: str,
    now: datetime | None = None,
) -> TeamReadiness:
    """所有团队角色都已加入且未过期时就绪"""
    ts = now or datetime.now(UTC)
    chatroom = await get_chatroom_or_raise(stores, chatroom_id)
    participants = [
        p for p in await stores.participant_store.list_participants(chatroom_id) if not p.is_gone
    ]
    expired = [p.role for p in participants if p.is_stale(ts)]
    alive = {p.role for p in participants if not p.is_stale(ts)}
    expected = [r.lower() for r in chatroom.team_roles]
    missing = [r for r in expected if r not in alive]
    return TeamReadiness(
        expected_roles=expected,
        present_roles=[p.role for p in participants],
        missing_roles=missing,
        expired_roles=expired,
        is_ready=not missing,
    )
