"""TraceMiddleware -- 为聊天室 / 任务操作绑定追踪字段

从 /api/chatrooms/{chatroom_id}/... 与 /api/tasks/{task_id}/... 中
提取 ID，绑定为 chatroom_id / task_id，贯穿编排日志。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ULID 字符串长度
_ULID_LENGTH = 26

_PATH_KEYS = {
    "chatrooms": "chatroom_id",
    "tasks": "task_id",
}


def extract_trace_ids(path: str) -> dict[str, str]:
    """从请求路径中提取 chatroom_id / task_id"""
    found: dict[str, str] = {}
    parts = path.split("/")
    for i, part in enumerate(parts[:-1]):
        key = _PATH_KEYS.get(part)
        candidate = parts[i + 1]
        # 排除子路由如 /api/tasks/counts
        if key and len(candidate) == _ULID_LENGTH:
            found[key] = candidate
    return found


class TraceMiddleware(BaseHTTPMiddleware):
    """聊天室级追踪中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        trace_ids = extract_trace_ids(request.url.path)
        if trace_ids:
            structlog.contextvars.bind_contextvars(**trace_ids)

        return await call_next(request)
