"""交接编排

handoff 在同一个写事务内组合：完成进行中的任务、写入交接消息、
为接手角色创建任务、交出方回到 waiting、（交给用户时）晋升队列、
挂靠的 backlog 任务进入复核。任何一步失败整体回滚。
"""

from datetime import UTC, datetime

import structlog
from ulid import ULID

from ..config import CONTENT_PREVIEW_LENGTH
from ..models.chatroom import Chatroom
from ..models.enums import Classification, MessageType, ParticipantStatus, TaskOrigin
from ..models.message import Message
from ..models.results import AllowedHandoffRoles, HandoffRestriction, HandoffResult
from ..store.protocols import Stores
from ..store.transaction import UnitOfWork
from .hierarchy import USER_ROLE
from .lifecycle import acknowledge_attached_backlog, complete_in_progress_tasks
from .queue import create_task, promote_next
from .readiness import (
    default_ready_until,
    get_chatroom_or_raise,
    list_waiting_roles,
    normalize_role,
    require_team_role,
)
from .router import latest_classification

log = structlog.get_logger()

# new_feature 请求必须先经过复核，builder 不能直接交还给用户
RESTRICTED_TO_USER_ROLE = "builder"
REVIEW_ROLE = "reviewer"
NEW_FEATURE_RESTRICTION = "new_feature requests must be reviewed before returning to user"


def _is_restricted_to_user(from_role: str, classification: Classification) -> bool:
    return classification == Classification.NEW_FEATURE and from_role == RESTRICTED_TO_USER_ROLE


def _suggest_target(chatroom: Chatroom, from_role: str) -> str | None:
    """优先建议 reviewer，其次团队中第一个其他角色"""
    roles = [r.lower() for r in chatroom.team_roles]
    if REVIEW_ROLE in roles and REVIEW_ROLE != from_role:
        return REVIEW_ROLE
    return next((r for r in roles if r != from_role), None)


async def get_allowed_handoff_roles(
    stores: Stores,
    chatroom_id: str,
    role: str,
) -> AllowedHandoffRoles:
    """当前角色可交接的目标：等待中的其他角色，以及能否交还给用户"""
    await get_chatroom_or_raise(stores, chatroom_id)
    role = normalize_role(role)
    waiting = [r for r in await list_waiting_roles(stores, chatroom_id) if r != role]
    classification = await latest_classification(stores, chatroom_id)
    restricted = _is_restricted_to_user(role, classification)
    return AllowedHandoffRoles(
        available_roles=waiting,
        can_handoff_to_user=not restricted,
        restriction_reason=NEW_FEATURE_RESTRICTION if restricted else None,
        current_classification=classification,
    )


async def handoff(
    uow: UnitOfWork,
    chatroom_id: str,
    from_role: str,
    to_role: str,
    content: str,
    now: datetime | None = None,
) -> HandoffResult:
    """把当前工作从 from_role 交给 to_role（团队角色或 user）

    分类策略拒绝时返回 success=False 与 restriction，不抛出异常、不写入任何数据。

    Raises:
        NotFoundError: 聊天室不存在
        InvalidRoleError: 交出方不是团队角色，或目标既不是团队角色也不是 user
        ActiveSlotOccupiedError: 交给 Agent 时活跃槽位仍被其他任务占用
    """
    ts = now or datetime.now(UTC)
    chatroom = await get_chatroom_or_raise(uow, chatroom_id)
    source = require_team_role(chatroom, from_role)
    target = require_team_role(chatroom, to_role, allow_user=True)
    to_user = target == USER_ROLE

    if to_user:
        classification = await latest_classification(uow, chatroom_id)
        if _is_restricted_to_user(source, classification):
            suggested = _suggest_target(chatroom, source)
            log.info(
                "handoff_restricted",
                chatroom_id=chatroom_id,
                from_role=source,
                to_role=target,
                classification=classification.value,
                suggested_target=suggested,
            )
            return HandoffResult(
                success=False,
                restriction=HandoffRestriction(
                    message=NEW_FEATURE_RESTRICTION,
                    from_role=source,
                    to_role=target,
                    classification=classification,
                    suggested_target=suggested,
                ),
            )

    finished, completed_ids, review_ids = await complete_in_progress_tasks(
        uow, chatroom_id, now=ts
    )

    message_id = str(ULID())
    new_task = None
    if not to_user:
        new_task = await create_task(
            uow,
            chatroom_id,
            content,
            created_by=source,
            source_message_id=message_id,
            origin=TaskOrigin.CHAT,
            assigned_to=target,
            bypass_queue=True,
            now=ts,
        )

    await uow.message_store.append_message(
        Message(
            message_id=message_id,
            chatroom_id=chatroom_id,
            sender_role=source,
            content=content,
            type=MessageType.HANDOFF,
            target_role=target,
            task_id=new_task.task_id if new_task else None,
            created_at=ts,
        )
    )

    participant = await uow.participant_store.get_participant(chatroom_id, source)
    if participant is not None and not participant.is_gone:
        await uow.participant_store.update_status(
            chatroom_id, source, ParticipantStatus.WAITING, default_ready_until(ts)
        )

    promotion = await promote_next(uow, chatroom_id, now=ts) if to_user else None

    review_ids.extend(await acknowledge_attached_backlog(uow, finished, now=ts))
    await uow.chatroom_store.touch(chatroom_id, ts)

    log.info(
        "handoff_completed",
        chatroom_id=chatroom_id,
        from_role=source,
        to_role=target,
        message_id=message_id,
        new_task_id=new_task.task_id if new_task else None,
        completed_task_ids=completed_ids,
        review_task_ids=review_ids,
        promoted_task_id=promotion.promoted_task_id if promotion else None,
        preview=content[:CONTENT_PREVIEW_LENGTH],
    )
    return HandoffResult(
        success=True,
        message_id=message_id,
        new_task_id=new_task.task_id if new_task else None,
        completed_task_ids=completed_ids,
        review_task_ids=review_ids,
        promotion=promotion,
    )
