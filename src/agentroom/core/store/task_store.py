"""TaskStore SQLite 实现

状态字段只能由 engine/fsm.transition_task 通过 update_task 写入，
此处仅提供数据库操作。活跃槽位唯一索引冲突转换为 ActiveSlotOccupiedError。
"""

import json
from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from typing import Any

import aiosqlite

from ..exceptions import ActiveSlotOccupiedError
from ..models.enums import TERMINAL_STATES, TaskStatus
from ..models.task import Task

_COLUMNS = (
    "task_id, chatroom_id, status, origin, content, created_by, assigned_to, "
    "queue_position, source_message_id, parent_task_ids, backlog_status, "
    "created_at, updated_at, acknowledged_at, started_at, completed_at"
)

# update_task 允许写入的列
_UPDATABLE_COLUMNS = frozenset(
    {
        "status",
        "content",
        "assigned_to",
        "parent_task_ids",
        "backlog_status",
        "updated_at",
        "acknowledged_at",
        "started_at",
        "completed_at",
    }
)


def _encode(value: Any) -> Any:
    """Python 值 -> SQLite 列值"""
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return json.dumps(value)
    return value


def _decode_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _is_active_slot_violation(exc: aiosqlite.IntegrityError) -> bool:
    # 部分唯一索引只覆盖 chatroom_id 一列
    return str(exc).endswith("tasks.chatroom_id")


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        try:
            await self._conn.execute(
                f"""
                INSERT INTO tasks ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.task_id,
                    task.chatroom_id,
                    task.status.value,
                    task.origin.value,
                    task.content,
                    task.created_by,
                    task.assigned_to,
                    task.queue_position,
                    task.source_message_id,
                    json.dumps(task.parent_task_ids),
                    _encode(task.backlog_status),
                    task.created_at.isoformat(),
                    task.updated_at.isoformat(),
                    _encode(task.acknowledged_at),
                    _encode(task.started_at),
                    _encode(task.completed_at),
                ),
            )
        except aiosqlite.IntegrityError as exc:
            if _is_active_slot_violation(exc):
                raise ActiveSlotOccupiedError(
                    f"Chatroom {task.chatroom_id} already has an active task",
                    details={"chatroom_id": task.chatroom_id, "task_id": task.task_id},
                ) from exc
            raise

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM tasks WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_tasks(
        self,
        chatroom_id: str,
        statuses: Iterable[TaskStatus] | None = None,
        assigned_to: str | None = None,
        limit: int | None = None,
    ) -> list[Task]:
        """查询聊天室任务，按 queue_position 正序"""
        sql = f"SELECT {_COLUMNS} FROM tasks WHERE chatroom_id = ?"
        params: list[Any] = [chatroom_id]
        if statuses is not None:
            status_values = [s.value for s in statuses]
            if not status_values:
                return []
            placeholders = ", ".join("?" for _ in status_values)
            sql += f" AND status IN ({placeholders})"
            params.extend(status_values)
        if assigned_to is not None:
            sql += " AND assigned_to = ?"
            params.append(assigned_to)
        sql += " ORDER BY queue_position ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def get_first_with_status(
        self,
        chatroom_id: str,
        status: TaskStatus,
    ) -> Task | None:
        """queue_position 最小的指定状态任务"""
        tasks = await self.list_tasks(chatroom_id, statuses=[status], limit=1)
        return tasks[0] if tasks else None

    async def count_open_tasks(self, chatroom_id: str) -> int:
        """未进入终态的任务数"""
        terminal = [s.value for s in TERMINAL_STATES]
        cursor = await self._conn.execute(
            f"""
            SELECT COUNT(*) FROM tasks
            WHERE chatroom_id = ? AND status NOT IN ({", ".join("?" for _ in terminal)})
            """,
            (chatroom_id, *terminal),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def count_by_status(self, chatroom_id: str) -> dict[str, int]:
        """按状态分组计数"""
        cursor = await self._conn.execute(
            "SELECT status, COUNT(*) FROM tasks WHERE chatroom_id = ? GROUP BY status",
            (chatroom_id,),
        )
        rows = await cursor.fetchall()
        return {row[0]: row[1] for row in rows}

    async def update_task(self, task_id: str, changes: dict[str, Any]) -> None:
        """按列更新任务（不自动提交，由调用方管理事务）"""
        unknown = set(changes) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown task columns: {sorted(unknown)}")
        if not changes:
            return
        assignments = ", ".join(f"{column} = ?" for column in changes)
        params = [_encode(value) for value in changes.values()]
        try:
            await self._conn.execute(
                f"UPDATE tasks SET {assignments} WHERE task_id = ?",
                (*params, task_id),
            )
        except aiosqlite.IntegrityError as exc:
            if _is_active_slot_violation(exc):
                raise ActiveSlotOccupiedError(
                    f"Task {task_id} cannot enter the active slot: another task holds it",
                    details={"task_id": task_id},
                ) from exc
            raise

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        return Task(
            task_id=row[0],
            chatroom_id=row[1],
            status=row[2],
            origin=row[3],
            content=row[4],
            created_by=row[5],
            assigned_to=row[6],
            queue_position=row[7],
            source_message_id=row[8],
            parent_task_ids=json.loads(row[9]) if row[9] else [],
            backlog_status=row[10],
            created_at=datetime.fromisoformat(row[11]),
            updated_at=datetime.fromisoformat(row[12]),
            acknowledged_at=_decode_dt(row[13]),
            started_at=_decode_dt(row[14]),
            completed_at=_decode_dt(row[15]),
        )
