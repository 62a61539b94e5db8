"""MessageStore SQLite 实现

seq 由 AUTOINCREMENT 分配，聊天室内消息按 seq 全序。
"""

import json
from datetime import datetime
from typing import Any

import aiosqlite

from ..models.enums import Classification
from ..models.message import Message

_COLUMNS = (
    "message_id, chatroom_id, seq, sender_role, content, type, target_role, "
    "classification, task_id, attached_task_ids, claimed_by_role, "
    "task_origin_message_id, created_at, acknowledged_at, completed_at"
)

_UPDATABLE_COLUMNS = frozenset(
    {
        "classification",
        "task_id",
        "attached_task_ids",
        "claimed_by_role",
        "task_origin_message_id",
        "acknowledged_at",
        "completed_at",
    }
)


def _decode_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SqliteMessageStore:
    """MessageStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append_message(self, message: Message) -> Message:
        """追加消息，返回带 seq 的副本"""
        cursor = await self._conn.execute(
            """
            INSERT INTO messages (message_id, chatroom_id, sender_role, content, type,
                                  target_role, classification, task_id, attached_task_ids,
                                  claimed_by_role, task_origin_message_id, created_at,
                                  acknowledged_at, completed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                message.message_id,
                message.chatroom_id,
                message.sender_role,
                message.content,
                message.type.value,
                message.target_role,
                message.classification.value,
                message.task_id,
                json.dumps(message.attached_task_ids),
                message.claimed_by_role,
                message.task_origin_message_id,
                message.created_at.isoformat(),
                message.acknowledged_at.isoformat() if message.acknowledged_at else None,
                message.completed_at.isoformat() if message.completed_at else None,
            ),
        )
        return message.model_copy(update={"seq": cursor.lastrowid})

    async def get_message(self, message_id: str) -> Message | None:
        """根据 message_id 查询消息"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM messages WHERE message_id = ?",
            (message_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_message(row)

    async def list_messages(self, chatroom_id: str, limit: int) -> list[Message]:
        """最近 limit 条消息，按 seq 正序返回"""
        cursor = await self._conn.execute(
            f"""
            SELECT * FROM (
                SELECT {_COLUMNS} FROM messages
                WHERE chatroom_id = ?
                ORDER BY seq DESC
                LIMIT ?
            ) ORDER BY seq ASC
            """,
            (chatroom_id, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    async def list_messages_after(self, chatroom_id: str, after_seq: int = 0) -> list[Message]:
        """seq 严格大于 after_seq 的全部消息，按 seq 正序"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM messages
            WHERE chatroom_id = ? AND seq > ?
            ORDER BY seq ASC
            """,
            (chatroom_id, after_seq),
        )
        rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    async def find_latest_user_message(
        self,
        chatroom_id: str,
        before_seq: int | None = None,
        classified_only: bool = False,
        exclude_follow_up: bool = False,
    ) -> Message | None:
        """最近一条用户消息，可按分类条件过滤"""
        sql = f"SELECT {_COLUMNS} FROM messages WHERE chatroom_id = ? AND sender_role = 'user'"
        params: list[Any] = [chatroom_id]
        if before_seq is not None:
            sql += " AND seq < ?"
            params.append(before_seq)
        if classified_only:
            sql += " AND classification != ?"
            params.append(Classification.NONE.value)
        if exclude_follow_up:
            sql += " AND classification != ?"
            params.append(Classification.FOLLOW_UP.value)
        sql += " ORDER BY seq DESC LIMIT 1"
        cursor = await self._conn.execute(sql, params)
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_message(row)

    async def claim_message(self, message_id: str, role: str, ts: datetime) -> bool:
        """条件认领：未被认领或已被同一角色认领时成功

        acknowledged_at 仅在首次认领时写入。
        """
        cursor = await self._conn.execute(
            """
            UPDATE messages
            SET claimed_by_role = ?,
                acknowledged_at = COALESCE(acknowledged_at, ?)
            WHERE message_id = ?
              AND (claimed_by_role IS NULL OR claimed_by_role = ?)
            """,
            (role, ts.isoformat(), message_id, role),
        )
        return cursor.rowcount > 0

    async def update_message(self, message_id: str, changes: dict[str, Any]) -> None:
        """按列更新消息（不自动提交）"""
        unknown = set(changes) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown message columns: {sorted(unknown)}")
        if not changes:
            return
        params: list[Any] = []
        for value in changes.values():
            if isinstance(value, datetime):
                params.append(value.isoformat())
            elif isinstance(value, list):
                params.append(json.dumps(value))
            elif isinstance(value, Classification):
                params.append(value.value)
            else:
                params.append(value)
        assignments = ", ".join(f"{column} = ?" for column in changes)
        await self._conn.execute(
            f"UPDATE messages SET {assignments} WHERE message_id = ?",
            (*params, message_id),
        )

    @staticmethod
    def _row_to_message(row: aiosqlite.Row) -> Message:
        """将数据库行转换为 Message 模型"""
        return Message(
            message_id=row[0],
            chatroom_id=row[1],
            seq=row[2],
            sender_role=row[3],
            content=row[4],
            type=row[5],
            target_role=row[6],
            classification=row[7],
            task_id=row[8],
            attached_task_ids=json.loads(row[9]) if row[9] else [],
            claimed_by_role=row[10],
            task_origin_message_id=row[11],
            created_at=datetime.fromisoformat(row[12]),
            acknowledged_at=_decode_dt(row[13]),
            completed_at=_decode_dt(row[14]),
        )
