"""消息路由

给定角色与游标，按 seq 扫描游标之后的消息，返回该角色应接收的第一条：

a. 已被其他角色认领 -> 跳过
b. join 消息 -> 跳过
c. interrupt -> 总是匹配
d. 定向消息 -> 仅目标角色
e. 用户消息 -> 仅入口角色
f. Agent 广播 -> 仅当前等待中优先级最高的角色

读路径只是建议，认领（claim_message）在写事务内重新校验。
"""

from collections.abc import Iterable
from datetime import UTC, datetime

import structlog

from ..exceptions import MessageClassificationError, NotFoundError
from ..models.enums import Classification, MessageType
from ..models.message import Message
from ..models.results import ContextWindow, MessageClaimResult
from ..store.protocols import Stores
from ..store.transaction import UnitOfWork
from .hierarchy import USER_ROLE
from .readiness import (
    get_chatroom_or_raise,
    highest_priority_waiting_role,
    normalize_role,
    require_team_role,
)

log = structlog.get_logger()


def select_message_for_role(
    messages: Iterable[Message],
    role: str,
    entry_point: str | None,
    highest_waiting: str | None,
) -> Message | None:
    """纯函数：按路由规则选出第一条匹配消息"""
    role = role.lower()
    entry = entry_point.lower() if entry_point else None
    waiting = highest_waiting.lower() if highest_waiting else None

    for message in messages:
        if message.claimed_by_role and message.claimed_by_role.lower() != role:
            continue
        if message.type == MessageType.JOIN:
            continue
        if message.type == MessageType.INTERRUPT:
            return message
        if message.target_role:
            if message.target_role.lower() == role:
                return message
            continue
        if message.is_from_user:
            if entry == role:
                return message
            continue
        if waiting == role:
            return message
    return None


async def get_next_message_for_role(
    stores: Stores,
    chatroom_id: str,
    role: str,
    after_message_id: str | None = None,
) -> Message | None:
    """游标之后该角色应接收的下一条消息

    游标消息不存在（或不属于该聊天室）时从头扫描。
    """
    chatroom = await get_chatroom_or_raise(stores, chatroom_id)
    after_seq = 0
    if after_message_id:
        cursor_message = await stores.message_store.get_message(after_message_id)
        if cursor_message is not None and cursor_message.chatroom_id == chatroom_id:
            after_seq = cursor_message.seq

    messages = await stores.message_store.list_messages_after(chatroom_id, after_seq)
    return select_message_for_role(
        messages,
        normalize_role(role),
        chatroom.entry_point,
        await highest_priority_waiting_role(stores, chatroom_id),
    )


async def claim_message(
    uow: UnitOfWork,
    message_id: str,
    role: str,
    now: datetime | None = None,
) -> MessageClaimResult:
    """幂等认领

    写事务内按当前参与者状态重新执行路由规则：该角色本不会收到这条消息，
    或消息已被其他角色认领时 claimed=False。已由该角色认领的消息再次认领直接成功。

    Raises:
        NotFoundError: 消息或聊天室不存在
        InvalidRoleError: 角色不属于团队
    """
    ts = now or datetime.now(UTC)
    message = await uow.message_store.get_message(message_id)
    if message is None:
        raise NotFoundError("Message", message_id)
    chatroom = await get_chatroom_or_raise(uow, message.chatroom_id)
    role = require_team_role(chatroom, role)

    routed = message.claimed_by_role == role or (
        select_message_for_role(
            [message],
            role,
            chatroom.entry_point,
            await highest_priority_waiting_role(uow, chatroom.chatroom_id),
        )
        is not None
    )
    claimed = routed and await uow.message_store.claim_message(message_id, role, ts)
    if claimed:
        log.info("message_claimed", chatroom_id=message.chatroom_id, message_id=message_id, role=role)
    else:
        log.info(
            "message_claim_rejected",
            chatroom_id=message.chatroom_id,
            message_id=message_id,
            role=role,
            routed=routed,
            claimed_by=message.claimed_by_role,
        )
    return MessageClaimResult(message_id=message_id, role=role, claimed=claimed)


async def classify_message(
    uow: UnitOfWork,
    chatroom_id: str,
    message_id: str,
    classification: Classification,
) -> Message:
    """为用户消息设置分类（任务开始时调用）

    follow_up 会链接到之前最近一条已分类且非 follow_up 的用户消息。

    Raises:
        MessageClassificationError: 非用户消息 / 已分类 / 不属于该聊天室 / 分类为 none
    """
    if classification == Classification.NONE:
        raise MessageClassificationError(
            "Classification must be one of question, new_feature, follow_up",
            details={"message_id": message_id},
        )
    message = await uow.message_store.get_message(message_id)
    if message is None:
        raise NotFoundError("Message", message_id)
    if message.chatroom_id != chatroom_id:
        raise MessageClassificationError(
            "Message does not belong to this chatroom",
            details={"message_id": message_id, "chatroom_id": chatroom_id},
        )
    if not message.is_from_user:
        raise MessageClassificationError(
            "Can only classify user messages",
            details={"message_id": message_id, "sender_role": message.sender_role},
        )
    if message.classification != Classification.NONE:
        raise MessageClassificationError(
            "Message is already classified",
            details={"message_id": message_id, "classification": message.classification.value},
        )

    changes: dict[str, object] = {"classification": classification}
    if classification == Classification.FOLLOW_UP:
        origin = await uow.message_store.find_latest_user_message(
            chatroom_id,
            before_seq=message.seq,
            classified_only=True,
            exclude_follow_up=True,
        )
        if origin is not None:
            changes["task_origin_message_id"] = origin.message_id

    await uow.message_store.update_message(message_id, changes)
    log.info(
        "message_classified",
        chatroom_id=chatroom_id,
        message_id=message_id,
        classification=classification.value,
    )
    return message.model_copy(update=changes)


async def latest_classification(stores: Stores, chatroom_id: str) -> Classification:
    """最近一条已分类用户消息的分类，没有则为 none"""
    message = await stores.message_store.find_latest_user_message(
        chatroom_id, classified_only=True
    )
    return message.classification if message else Classification.NONE


async def get_context_window(stores: Stores, chatroom_id: str) -> ContextWindow:
    """最近一条非 follow_up 的用户消息及其后的全部消息

    找不到这样的消息时返回全部消息。
    """
    await get_chatroom_or_raise(stores, chatroom_id)
    messages = await stores.message_store.list_messages_after(chatroom_id)

    for index in range(len(messages) - 1, -1, -1):
        message = messages[index]
        if (
            message.sender_role == USER_ROLE
            and message.type == MessageType.MESSAGE
            and message.classification != Classification.FOLLOW_UP
        ):
            return ContextWindow(
                origin_message=message,
                context_messages=messages[index:],
                classification=message.classification,
            )
    return ContextWindow(context_messages=messages)
