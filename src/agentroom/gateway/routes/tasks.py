"""任务路由

聊天室范围：
  POST /api/chatrooms/{chatroom_id}/tasks: 创建任务（直接任务或 backlog）
  GET  /api/chatrooms/{chatroom_id}/tasks: 任务列表，status 可为状态名或 active
  GET  /api/chatrooms/{chatroom_id}/tasks/active: 当前活跃任务
  GET  /api/chatrooms/{chatroom_id}/tasks/counts: 各状态数量
  POST /api/chatrooms/{chatroom_id}/tasks/claim | start | complete: 按角色推进
  POST /api/chatrooms/{chatroom_id}/tasks/promote: 尝试晋升队首任务

单任务：
  GET   /api/tasks/{task_id}: 任务详情 + 流转历史
  PATCH /api/tasks/{task_id}: 编辑内容（仅 queued / backlog）
  POST  /api/tasks/{task_id}/cancel | move-to-queue | mark-complete |
        send-back | reopen | force-complete | reset

所有状态变化都经过状态机，不提供直接修改 status 的接口。
"""

from agentroom.core.access import Identity
from agentroom.core.config import TASK_LIST_MAX_LIMIT
from agentroom.core.engine import (
    cancel_task,
    claim_task,
    complete_task,
    complete_task_by_id,
    create_task,
    get_active_task,
    get_task_counts,
    list_tasks,
    mark_backlog_complete,
    move_to_queue,
    promote_next,
    reopen_backlog_task,
    reset_stuck_task,
    send_back_for_rework,
    start_task,
    update_task_content,
)
from agentroom.core.models import (
    Classification,
    CompleteTaskResult,
    PromotionResult,
    Task,
    TaskActionResult,
    TaskCounts,
    TaskEvent,
    TaskStatus,
)
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from ..deps import authorize_chatroom, authorize_task, get_room_service, get_store_group
from ..services.room_service import RoomService

router = APIRouter()

_STATUS_FILTERS = frozenset({"active", *(s.value for s in TaskStatus)})


class CreateTaskRequest(BaseModel):
    """创建任务请求体"""

    content: str = Field(min_length=1, description="任务内容")
    created_by: str = Field(description="创建者角色")
    is_backlog: bool = Field(default=False, description="是否加入 backlog")
    source_message_id: str | None = Field(default=None, description="来源消息 ID")


class UpdateTaskRequest(BaseModel):
    content: str = Field(min_length=1)


class RoleRequest(BaseModel):
    role: str


class StartTaskRequest(BaseModel):
    """开始任务请求体 -- classification 会写到任务的来源用户消息上"""

    role: str
    classification: Classification | None = None


class TaskListResponse(BaseModel):
    tasks: list[Task]


class ActiveTaskResponse(BaseModel):
    task: Task | None = None


class TaskDetailResponse(BaseModel):
    """任务详情 + 流转历史"""

    task: Task
    events: list[TaskEvent]


# ============================================================
# 聊天室范围
# ============================================================


@router.post(
    "/api/chatrooms/{chatroom_id}/tasks",
    response_model=Task,
    status_code=201,
)
async def create_task_route(
    body: CreateTaskRequest,
    identity: Identity = Depends(authorize_chatroom),
    service: RoomService = Depends(get_room_service),
):
    return await service.run(
        create_task,
        identity.chatroom_id,
        body.content,
        body.created_by,
        is_backlog=body.is_backlog,
        source_message_id=body.source_message_id,
    )


@router.get(
    "/api/chatrooms/{chatroom_id}/tasks",
    response_model=TaskListResponse,
)
async def list_tasks_route(
    status: str | None = Query(default=None, description="状态名或 active"),
    limit: int = Query(default=TASK_LIST_MAX_LIMIT, ge=1, le=TASK_LIST_MAX_LIMIT),
    identity: Identity = Depends(authorize_chatroom),
    store_group=Depends(get_store_group),
):
    """按 queue_position 排序的任务列表"""
    if status is not None and status not in _STATUS_FILTERS:
        return JSONResponse(
            status_code=422,
            content={
                "error": {
                    "code": "INVALID_STATUS_FILTER",
                    "message": f"Unknown status filter: {status}",
                    "details": {"allowed": sorted(_STATUS_FILTERS)},
                }
            },
        )
    tasks = await list_tasks(store_group, identity.chatroom_id, status=status, limit=limit)
    return TaskListResponse(tasks=tasks)


@router.get(
    "/api/chatrooms/{chatroom_id}/tasks/active",
    response_model=ActiveTaskResponse,
)
async def active_task(
    identity: Identity = Depends(authorize_chatroom),
    store_group=Depends(get_store_group),
):
    """in_progress 优先，其次 pending"""
    return ActiveTaskResponse(task=await get_active_task(store_group, identity.chatroom_id))


@router.get(
    "/api/chatrooms/{chatroom_id}/tasks/counts",
    response_model=TaskCounts,
)
async def task_counts(
    identity: Identity = Depends(authorize_chatroom),
    store_group=Depends(get_store_group),
):
    return await get_task_counts(store_group, identity.chatroom_id)


@router.post("/api/chatrooms/{chatroom_id}/tasks/claim", response_model=Task)
async def claim_task_route(
    body: RoleRequest,
    identity: Identity = Depends(authorize_chatroom),
    service: RoomService = Depends(get_room_service),
):
    """角色认领 pending 任务（pending -> acknowledged）"""
    return await service.run(claim_task, identity.chatroom_id, body.role)


@router.post("/api/chatrooms/{chatroom_id}/tasks/start", response_model=Task)
async def start_task_route(
    body: StartTaskRequest,
    identity: Identity = Depends(authorize_chatroom),
    service: RoomService = Depends(get_room_service),
):
    return await service.run(
        start_task,
        identity.chatroom_id,
        body.role,
        classification=body.classification,
    )


@router.post(
    "/api/chatrooms/{chatroom_id}/tasks/complete",
    response_model=CompleteTaskResult,
)
async def complete_task_route(
    body: RoleRequest,
    identity: Identity = Depends(authorize_chatroom),
    service: RoomService = Depends(get_room_service),
):
    """完成角色的 in_progress 任务，随后尝试晋升队列"""
    return await service.run(complete_task, identity.chatroom_id, body.role)


@router.post(
    "/api/chatrooms/{chatroom_id}/tasks/promote",
    response_model=PromotionResult,
)
async def promote_route(
    identity: Identity = Depends(authorize_chatroom),
    service: RoomService = Depends(get_room_service),
):
    return await service.run(promote_next, identity.chatroom_id)


# ============================================================
# 单任务
# ============================================================


@router.get("/api/tasks/{task_id}", response_model=TaskDetailResponse)
async def get_task_detail(
    task: Task = Depends(authorize_task),
    store_group=Depends(get_store_group),
):
    """任务详情，包含完整流转历史"""
    events = await store_group.event_store.get_events_for_task(task.task_id)
    return TaskDetailResponse(task=task, events=events)


@router.patch("/api/tasks/{task_id}", response_model=Task)
async def update_task_route(
    body: UpdateTaskRequest,
    task: Task = Depends(authorize_task),
    service: RoomService = Depends(get_room_service),
):
    return await service.run(update_task_content, task.task_id, body.content)


@router.post("/api/tasks/{task_id}/cancel", response_model=TaskActionResult)
async def cancel_task_route(
    task: Task = Depends(authorize_task),
    service: RoomService = Depends(get_room_service),
):
    return await service.run(cancel_task, task.task_id)


@router.post("/api/tasks/{task_id}/move-to-queue", response_model=Task)
async def move_to_queue_route(
    task: Task = Depends(authorize_task),
    service: RoomService = Depends(get_room_service),
):
    """backlog -> pending / queued"""
    return await service.run(move_to_queue, task.task_id)


@router.post("/api/tasks/{task_id}/mark-complete", response_model=Task)
async def mark_complete_route(
    task: Task = Depends(authorize_task),
    service: RoomService = Depends(get_room_service),
):
    return await service.run(mark_backlog_complete, task.task_id)


@router.post("/api/tasks/{task_id}/send-back", response_model=Task)
async def send_back_route(
    task: Task = Depends(authorize_task),
    service: RoomService = Depends(get_room_service),
):
    """pending_user_review -> pending / queued，清空执行痕迹"""
    return await service.run(send_back_for_rework, task.task_id)


@router.post("/api/tasks/{task_id}/reopen", response_model=Task)
async def reopen_route(
    task: Task = Depends(authorize_task),
    service: RoomService = Depends(get_room_service),
):
    return await service.run(reopen_backlog_task, task.task_id)


@router.post("/api/tasks/{task_id}/force-complete", response_model=TaskActionResult)
async def force_complete_route(
    task: Task = Depends(authorize_task),
    service: RoomService = Depends(get_room_service),
):
    return await service.run(complete_task_by_id, task.task_id)


@router.post("/api/tasks/{task_id}/reset", response_model=Task)
async def reset_route(
    task: Task = Depends(authorize_task),
    service: RoomService = Depends(get_room_service),
):
    """in_progress -> pending，用于人工解卡"""
    return await service.run(reset_stuck_task, task.task_id)
