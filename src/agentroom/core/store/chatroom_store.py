"""ChatroomStore SQLite 实现

queue_position_counter 只能通过 increment_queue_counter 在写事务内自增。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.chatroom import Chatroom

_COLUMNS = (
    "chatroom_id, name, team_roles, team_entry_point, "
    "queue_position_counter, created_at, last_activity_at"
)


class SqliteChatroomStore:
    """ChatroomStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_chatroom(self, chatroom: Chatroom) -> None:
        """创建聊天室记录"""
        await self._conn.execute(
            f"INSERT INTO chatrooms ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                chatroom.chatroom_id,
                chatroom.name,
                json.dumps(chatroom.team_roles),
                chatroom.team_entry_point,
                chatroom.queue_position_counter,
                chatroom.created_at.isoformat(),
                chatroom.last_activity_at.isoformat(),
            ),
        )

    async def get_chatroom(self, chatroom_id: str) -> Chatroom | None:
        """根据 chatroom_id 查询聊天室"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM chatrooms WHERE chatroom_id = ?",
            (chatroom_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_chatroom(row)

    async def list_chatrooms(self) -> list[Chatroom]:
        """查询全部聊天室，按 created_at 倒序"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM chatrooms ORDER BY created_at DESC, chatroom_id DESC"
        )
        rows = await cursor.fetchall()
        return [self._row_to_chatroom(row) for row in rows]

    async def increment_queue_counter(self, chatroom_id: str) -> int | None:
        """计数器 +1 并返回新值

        必须在写事务内调用，与消费该位置的 INSERT 同属一个事务。
        聊天室不存在时返回 None。
        """
        cursor = await self._conn.execute(
            """
            UPDATE chatrooms
            SET queue_position_counter = queue_position_counter + 1
            WHERE chatroom_id = ?
            """,
            (chatroom_id,),
        )
        if cursor.rowcount == 0:
            return None
        cursor = await self._conn.execute(
            "SELECT queue_position_counter FROM chatrooms WHERE chatroom_id = ?",
            (chatroom_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else None

    async def touch(self, chatroom_id: str, ts: datetime) -> None:
        """刷新 last_activity_at"""
        await self._conn.execute(
            "UPDATE chatrooms SET last_activity_at = ? WHERE chatroom_id = ?",
            (ts.isoformat(), chatroom_id),
        )

    async def rename(self, chatroom_id: str, name: str) -> None:
        await self._conn.execute(
            "UPDATE chatrooms SET name = ? WHERE chatroom_id = ?",
            (name, chatroom_id),
        )

    @staticmethod
    def _row_to_chatroom(row: aiosqlite.Row) -> Chatroom:
        """将数据库行转换为 Chatroom 模型"""
        return Chatroom(
            chatroom_id=row[0],
            name=row[1],
            team_roles=json.loads(row[2]) if row[2] else [],
            team_entry_point=row[3],
            queue_position_counter=row[4],
            created_at=datetime.fromisoformat(row[5]),
            last_activity_at=datetime.fromisoformat(row[6]),
        )
