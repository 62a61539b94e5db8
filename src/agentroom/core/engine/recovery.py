"""掉线恢复

两条入口共用 recover_orphaned_tasks：
- join：参与者此前处于 active（进程崩溃后重连），先回收其 in_progress 任务
- sweep：ready_until 已过期的参与者被软删除，其 in_progress 任务回到 pending

sweep 每个参与者单独一个事务，任何异常只记录日志，不向外抛出。
"""

from datetime import UTC, datetime

import structlog
from ulid import ULID

from ..exceptions import TaskTransitionError
from ..models.enums import MessageType, ParticipantStatus, TaskStatus, TaskTrigger
from ..models.message import Message
from ..models.participant import Participant
from ..models.results import JoinResult, SweepReport
from ..store import StoreGroup
from ..store.transaction import UnitOfWork
from .fsm import transition_task
from .queue import promote_next
from .readiness import default_ready_until, get_chatroom_or_raise, require_team_role

log = structlog.get_logger()


async def recover_orphaned_tasks(
    uow: UnitOfWork,
    chatroom_id: str,
    role: str,
    reason: str,
    now: datetime | None = None,
) -> list[str]:
    """把分配给该角色的 in_progress 任务重置为 pending

    无法重置的任务跳过，留给下一次清理。
    """
    tasks = await uow.task_store.list_tasks(
        chatroom_id,
        statuses=[TaskStatus.IN_PROGRESS],
        assigned_to=role,
    )
    recovered: list[str] = []
    for task in tasks:
        try:
            await transition_task(
                uow, task.task_id, TaskStatus.PENDING, TaskTrigger.RESET_STUCK, now=now
            )
        except TaskTransitionError as e:
            log.warning(
                "orphaned_task_recovery_skipped",
                chatroom_id=chatroom_id,
                task_id=task.task_id,
                role=role,
                error=e.message,
            )
            continue
        recovered.append(task.task_id)
        log.warning(
            "orphaned_task_recovered",
            chatroom_id=chatroom_id,
            task_id=task.task_id,
            role=role,
            action="reset_to_pending",
            reason=reason,
        )
    return recovered


async def join(
    uow: UnitOfWork,
    chatroom_id: str,
    role: str,
    ready_until: datetime | None = None,
    connection_id: str | None = None,
    now: datetime | None = None,
) -> JoinResult:
    """参与者加入（或重新加入）聊天室

    - 此前处于 active：先回收其 in_progress 任务
    - 首次加入或已被清理：写入一条 join 消息
    - 入口角色加入：尝试晋升队列
    """
    ts = now or datetime.now(UTC)
    chatroom = await get_chatroom_or_raise(uow, chatroom_id)
    role = require_team_role(chatroom, role)

    existing = await uow.participant_store.get_participant(chatroom_id, role)

    # 必须在更新参与者状态之前回收
    recovered: list[str] = []
    if existing is not None and existing.status == ParticipantStatus.ACTIVE:
        recovered = await recover_orphaned_tasks(
            uow, chatroom_id, role, reason="agent_rejoined", now=ts
        )

    participant = Participant(
        participant_id=existing.participant_id if existing else str(ULID()),
        chatroom_id=chatroom_id,
        role=role,
        status=ParticipantStatus.WAITING,
        ready_until=ready_until or default_ready_until(ts),
        connection_id=connection_id,
        joined_at=ts,
        departed_at=None,
    )
    await uow.participant_store.upsert_participant(participant)

    rejoined = existing is not None and not existing.is_gone
    if not rejoined:
        await uow.message_store.append_message(
            Message(
                message_id=str(ULID()),
                chatroom_id=chatroom_id,
                sender_role=role,
                content=f"{role} joined the chatroom",
                type=MessageType.JOIN,
                created_at=ts,
            )
        )

    promotion = None
    entry_point = chatroom.entry_point
    if entry_point and entry_point.lower() == role:
        promotion = await promote_next(uow, chatroom_id, now=ts)
        if promotion.promoted:
            log.info(
                "entry_point_join_promoted",
                chatroom_id=chatroom_id,
                role=role,
                task_id=promotion.promoted_task_id,
            )
        elif promotion.reason is not None:
            log.info(
                "entry_point_join_promotion_skipped",
                chatroom_id=chatroom_id,
                role=role,
                reason=promotion.reason.value,
            )

    await uow.chatroom_store.touch(chatroom_id, ts)
    log.info(
        "participant_joined",
        chatroom_id=chatroom_id,
        role=role,
        rejoined=rejoined,
        recovered_task_ids=recovered,
    )
    return JoinResult(
        participant=participant,
        rejoined=rejoined,
        recovered_task_ids=recovered,
        promotion=promotion,
    )


async def recover_participant(
    uow: UnitOfWork,
    participant: Participant,
    now: datetime | None = None,
) -> list[str]:
    """软删除参与者并回收其 in_progress 任务"""
    ts = now or datetime.now(UTC)
    await uow.participant_store.mark_departed(participant.chatroom_id, participant.role, ts)
    return await recover_orphaned_tasks(
        uow,
        participant.chatroom_id,
        participant.role,
        reason="participant_stale",
        now=ts,
    )


async def sweep_stale_participants(
    store_group: StoreGroup,
    now: datetime | None = None,
) -> SweepReport:
    """清理 ready_until 已过期的参与者

    每个参与者在独立事务内处理，事务内重新确认仍然过期。
    从不抛出异常：失败的参与者记入 failed_participants，留给下一次清理。
    """
    ts = now or datetime.now(UTC)
    report = SweepReport()

    try:
        candidates = await store_group.participant_store.list_present_participants()
    except Exception:
        log.exception("stale_participant_scan_failed")
        return report

    for candidate in candidates:
        if not candidate.is_stale(ts):
            continue
        key = f"{candidate.chatroom_id}:{candidate.role}"
        try:
            async with store_group.transaction() as uow:
                current = await uow.participant_store.get_participant(
                    candidate.chatroom_id, candidate.role
                )
                if current is None or not current.is_stale(ts):
                    continue
                recovered = await recover_participant(uow, current, now=ts)
            report.events.extend(uow.emitted_events)
        except Exception:
            log.exception(
                "stale_participant_sweep_failed",
                chatroom_id=candidate.chatroom_id,
                role=candidate.role,
            )
            report.failed_participants.append(key)
            continue

        report.swept_participants.append(key)
        report.recovered_task_ids.extend(recovered)
        log.info(
            "stale_participant_swept",
            chatroom_id=candidate.chatroom_id,
            role=candidate.role,
            ready_until=candidate.ready_until.isoformat() if candidate.ready_until else None,
            recovered_task_ids=recovered,
        )

    if report.swept_participants or report.failed_participants:
        log.info(
            "stale_participant_sweep_finished",
            swept=len(report.swept_participants),
            recovered=len(report.recovered_task_ids),
            failed=len(report.failed_participants),
        )
    return report
