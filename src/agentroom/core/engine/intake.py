"""消息写入

用户的普通消息会同时创建一个 chat 来源的任务（pending 或 queued），
消息与任务双向关联；消息引用的 backlog 任务挂靠到新任务上。
"""

from datetime import UTC, datetime

import structlog
from ulid import ULID

from ..config import CONTENT_PREVIEW_LENGTH
from ..exceptions import AttachmentError, NotFoundError
from ..models.enums import MessageType, TaskOrigin, TaskStatus, TaskTrigger
from ..models.message import Message
from ..models.results import SendMessageResult
from ..store.transaction import UnitOfWork
from .fsm import transition_task
from .hierarchy import USER_ROLE
from .queue import create_task
from .readiness import get_chatroom_or_raise, require_team_role

log = structlog.get_logger()


async def send_message(
    uow: UnitOfWork,
    chatroom_id: str,
    sender_role: str,
    content: str,
    type: MessageType = MessageType.MESSAGE,
    target_role: str | None = None,
    attached_task_ids: list[str] | None = None,
    now: datetime | None = None,
) -> SendMessageResult:
    """写入一条消息

    Args:
        uow: 当前写事务
        chatroom_id: 聊天室
        sender_role: 发送者，必须是 user 或团队角色
        content: 消息内容
        type: 消息类型
        target_role: 定向投递的角色（user 或团队角色）
        attached_task_ids: 引用的 backlog 任务，仅用户普通消息可携带

    Raises:
        NotFoundError: 聊天室或被引用的任务不存在
        InvalidRoleError: 发送者或目标角色不在团队中
        AttachmentError: 非用户消息携带引用，或引用的任务不属于该聊天室
        TaskLimitExceededError: 未结束任务数已达上限
    """
    ts = now or datetime.now(UTC)
    chatroom = await get_chatroom_or_raise(uow, chatroom_id)
    sender = require_team_role(chatroom, sender_role, allow_user=True)
    target = require_team_role(chatroom, target_role, allow_user=True) if target_role else None
    attached_ids = list(dict.fromkeys(attached_task_ids or []))

    creates_task = sender == USER_ROLE and type == MessageType.MESSAGE
    if attached_ids and not creates_task:
        raise AttachmentError(
            "Only user messages can reference backlog tasks",
            details={"sender_role": sender, "type": type.value},
        )
    for attached_id in attached_ids:
        attached = await uow.task_store.get_task(attached_id)
        if attached is None:
            raise NotFoundError("Task", attached_id)
        if attached.chatroom_id != chatroom_id:
            raise AttachmentError(
                "Referenced task belongs to another chatroom",
                details={"task_id": attached_id, "chatroom_id": chatroom_id},
            )

    message_id = str(ULID())
    task = None
    if creates_task:
        task = await create_task(
            uow,
            chatroom_id,
            content,
            created_by=USER_ROLE,
            source_message_id=message_id,
            origin=TaskOrigin.CHAT,
            now=ts,
        )

    message = await uow.message_store.append_message(
        Message(
            message_id=message_id,
            chatroom_id=chatroom_id,
            sender_role=sender,
            content=content,
            type=type,
            target_role=target,
            task_id=task.task_id if task else None,
            attached_task_ids=attached_ids,
            created_at=ts,
        )
    )

    if task is not None:
        for attached_id in attached_ids:
            await transition_task(
                uow,
                attached_id,
                TaskStatus.BACKLOG_ACKNOWLEDGED,
                TaskTrigger.ATTACH,
                overrides={"parent_task_ids": [task.task_id]},
                now=ts,
            )

    await uow.chatroom_store.touch(chatroom_id, ts)
    log.info(
        "message_sent",
        chatroom_id=chatroom_id,
        message_id=message_id,
        sender_role=sender,
        type=type.value,
        target_role=target,
        task_id=task.task_id if task else None,
        preview=content[:CONTENT_PREVIEW_LENGTH],
    )
    return SendMessageResult(message=message, task=task, attached_task_ids=attached_ids)
