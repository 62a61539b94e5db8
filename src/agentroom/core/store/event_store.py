"""TaskEventStore SQLite 实现

事件表 append-only：只允许插入，不允许更新或删除。
seq 全表严格单调递增，用于 SSE 断线重连的增量查询。
"""

from datetime import datetime

import aiosqlite

from ..models.enums import TaskStatus, TaskTrigger
from ..models.event import TaskEvent

_COLUMNS = "event_id, seq, task_id, chatroom_id, ts, from_status, to_status, trigger"


class SqliteTaskEventStore:
    """TaskEventStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append_event(self, event: TaskEvent) -> TaskEvent:
        """追加事件（append-only），返回带 seq 的副本

        注意：此方法不自动提交事务，需由调用方管理事务。
        """
        cursor = await self._conn.execute(
            """
            INSERT INTO task_events (event_id, task_id, chatroom_id, ts,
                                     from_status, to_status, trigger)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.event_id,
                event.task_id,
                event.chatroom_id,
                event.ts.isoformat(),
                event.from_status.value,
                event.to_status.value,
                event.trigger.value,
            ),
        )
        return event.model_copy(update={"seq": cursor.lastrowid})

    async def get_events_for_task(self, task_id: str) -> list[TaskEvent]:
        """查询指定任务的所有事件，按 seq 正序"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM task_events WHERE task_id = ? ORDER BY seq ASC",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def get_events_after(
        self,
        chatroom_id: str,
        after_event_id: str | None = None,
    ) -> list[TaskEvent]:
        """查询聊天室内指定事件之后的增量事件（用于 SSE 断线重连）

        after_event_id 为空或未知时返回全部事件。
        """
        after_seq = 0
        if after_event_id:
            cursor = await self._conn.execute(
                "SELECT seq FROM task_events WHERE event_id = ?",
                (after_event_id,),
            )
            row = await cursor.fetchone()
            if row is not None:
                after_seq = row[0]
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM task_events
            WHERE chatroom_id = ? AND seq > ?
            ORDER BY seq ASC
            """,
            (chatroom_id, after_seq),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    @staticmethod
    def _row_to_event(row: aiosqlite.Row) -> TaskEvent:
        """将数据库行转换为 TaskEvent 模型"""
        return TaskEvent(
            event_id=row[0],
            seq=row[1],
            task_id=row[2],
            chatroom_id=row[3],
            ts=datetime.fromisoformat(row[4]),
            from_status=TaskStatus(row[5]),
            to_status=TaskStatus(row[6]),
            trigger=TaskTrigger(row[7]),
        )
