"""AgentRoom 编排引擎 -- 公共操作导出

写操作的第一个参数是 UnitOfWork（由 StoreGroup.transaction() 提供），
读操作接受 StoreGroup 或 UnitOfWork。
"""

from .chatrooms import create_chatroom, get_team_readiness, interrupt_chatroom, rename_chatroom
from .fsm import TRANSITIONS, TransitionRule, can_transition, get_valid_transitions_from, transition_task
from .handoff import get_allowed_handoff_roles, handoff
from .hierarchy import (
    USER_ROLE,
    compare_roles,
    get_highest_priority_role,
    get_role_priority,
    sort_roles_by_priority,
)
from .intake import send_message
from .lifecycle import (
    cancel_task,
    claim_task,
    complete_task,
    complete_task_by_id,
    get_task_counts,
    list_tasks,
    mark_backlog_complete,
    reopen_backlog_task,
    reset_stuck_task,
    start_task,
    update_task_content,
)
from .queue import create_task, get_active_task, move_to_queue, next_queue_position, promote_next, send_back_for_rework
from .readiness import all_agents_ready, heartbeat, highest_priority_waiting_role, update_participant_status
from .recovery import join, recover_orphaned_tasks, sweep_stale_participants
from .router import (
    claim_message,
    classify_message,
    get_context_window,
    get_next_message_for_role,
    latest_classification,
    select_message_for_role,
)

__all__ = [
    # 角色优先级
    "USER_ROLE",
    "get_role_priority",
    "compare_roles",
    "sort_roles_by_priority",
    "get_highest_priority_role",
    # 状态机
    "TRANSITIONS",
    "TransitionRule",
    "transition_task",
    "can_transition",
    "get_valid_transitions_from",
    # 队列
    "next_queue_position",
    "create_task",
    "get_active_task",
    "promote_next",
    "move_to_queue",
    "send_back_for_rework",
    # 任务生命周期
    "claim_task",
    "start_task",
    "complete_task",
    "cancel_task",
    "complete_task_by_id",
    "reset_stuck_task",
    "mark_backlog_complete",
    "reopen_backlog_task",
    "update_task_content",
    "list_tasks",
    "get_task_counts",
    # 聊天室
    "create_chatroom",
    "rename_chatroom",
    "interrupt_chatroom",
    "get_team_readiness",
    # 消息
    "send_message",
    "select_message_for_role",
    "get_next_message_for_role",
    "claim_message",
    "classify_message",
    "latest_classification",
    "get_context_window",
    # 交接
    "handoff",
    "get_allowed_handoff_roles",
    # 就绪与恢复
    "all_agents_ready",
    "highest_priority_waiting_role",
    "update_participant_status",
    "heartbeat",
    "join",
    "recover_orphaned_tasks",
    "sweep_stale_participants",
]
