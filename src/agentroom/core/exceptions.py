"""AgentRoom 异常体系

每个异常携带稳定的 code、对应的 HTTP status_code 以及结构化 details，
Gateway 统一渲染为 {"error": {"code", "message", "details"}}。
HandoffRestriction 不在此列：它是可恢复的结构化结果，不抛出。
"""

from typing import Any


class AgentRoomError(Exception):
    """AgentRoom 基础异常"""

    code: str = "AGENTROOM_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """
        Args:
            message: 错误描述
            details: 结构化上下文（会原样返回给调用方）
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(AgentRoomError):
    """实体不存在"""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            f"{entity} {entity_id} not found",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class UnauthenticatedError(AgentRoomError):
    """缺少或无法识别的访问令牌"""

    code = "UNAUTHENTICATED"
    status_code = 401


class ForbiddenError(AgentRoomError):
    """令牌有效但无权访问该聊天室"""

    code = "FORBIDDEN"
    status_code = 403


class InvalidRoleError(AgentRoomError):
    """角色不在聊天室团队配置中"""

    code = "INVALID_ROLE"
    status_code = 403

    def __init__(self, role: str, allowed_roles: list[str]) -> None:
        super().__init__(
            f'Invalid role: "{role}" is not in team configuration. '
            f"Allowed roles: {', '.join(allowed_roles) or 'user'}",
            details={"role": role, "allowed_roles": allowed_roles},
        )
        self.role = role
        self.allowed_roles = allowed_roles


class TaskLimitExceededError(AgentRoomError):
    """聊天室未结束任务数达到上限"""

    code = "TASK_LIMIT_REACHED"
    status_code = 409

    def __init__(self, limit: int) -> None:
        super().__init__(
            f"Task limit reached ({limit}). "
            "Complete or cancel existing tasks before adding more.",
            details={"limit": limit},
        )


class TaskNotEditableError(AgentRoomError):
    """任务当前状态不允许编辑内容"""

    code = "TASK_NOT_EDITABLE"
    status_code = 409


class ActiveSlotOccupiedError(AgentRoomError):
    """活跃槽位已被其他任务占用（存储层唯一索引拦截）"""

    code = "ACTIVE_SLOT_OCCUPIED"
    status_code = 409


class MessageClassificationError(AgentRoomError):
    """消息分类不合法（非用户消息 / 重复分类 / 跨聊天室）"""

    code = "MESSAGE_CLASSIFICATION_INVALID"
    status_code = 409


class ChatroomConfigError(AgentRoomError):
    """聊天室配置不合法（空团队、保留角色名、名称越界）"""

    code = "CHATROOM_CONFIG_INVALID"
    status_code = 422


class AttachmentError(AgentRoomError):
    """引用的 backlog 任务不可挂靠"""

    code = "ATTACHMENT_INVALID"
    status_code = 409


class TaskTransitionError(AgentRoomError):
    """任务状态流转失败基类"""

    code = "TASK_TRANSITION_FAILED"
    status_code = 409

    def __init__(
        self,
        message: str,
        task_id: str,
        current_status: str,
        attempted_status: str,
        trigger: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        merged = {
            "task_id": task_id,
            "current_status": current_status,
            "attempted_status": attempted_status,
            "trigger": trigger,
        }
        merged.update(details or {})
        super().__init__(message, details=merged)
        self.task_id = task_id
        self.current_status = current_status
        self.attempted_status = attempted_status
        self.trigger = trigger


class InvalidTransitionError(TaskTransitionError):
    """没有匹配 (from, to, trigger) 的规则，附带当前状态全部合法流转"""

    code = "TASK_INVALID_TRANSITION"

    def __init__(
        self,
        task_id: str,
        current_status: str,
        attempted_status: str,
        trigger: str,
        valid_transitions: list[dict[str, Any]],
    ) -> None:
        options = ", ".join(f"{t['to']} (via {t['trigger']})" for t in valid_transitions)
        super().__init__(
            f"Cannot transition task from {current_status} to {attempted_status} "
            f"via {trigger}. Valid transitions from {current_status}: {options or 'none'}",
            task_id=task_id,
            current_status=current_status,
            attempted_status=attempted_status,
            trigger=trigger,
            details={"valid_transitions": valid_transitions},
        )
        self.valid_transitions = valid_transitions


class ValidationFailedError(TaskTransitionError):
    """规则的 validate 谓词拒绝了本次流转"""

    code = "TASK_VALIDATION_FAILED"

    def __init__(
        self,
        task_id: str,
        current_status: str,
        attempted_status: str,
        trigger: str,
        reason: str,
    ) -> None:
        super().__init__(
            f"Transition validation failed for {current_status} -> {attempted_status}: {reason}",
            task_id=task_id,
            current_status=current_status,
            attempted_status=attempted_status,
            trigger=trigger,
            details={"validation_reason": reason},
        )
        self.reason = reason


class MissingRequiredFieldError(TaskTransitionError):
    """流转缺少规则要求的字段"""

    code = "TASK_MISSING_REQUIRED_FIELD"

    def __init__(
        self,
        task_id: str,
        current_status: str,
        attempted_status: str,
        trigger: str,
        field: str,
    ) -> None:
        super().__init__(
            f"Required field '{field}' not provided for transition "
            f"{current_status} -> {attempted_status}",
            task_id=task_id,
            current_status=current_status,
            attempted_status=attempted_status,
            trigger=trigger,
            details={"missing_field": field},
        )
        self.field = field
