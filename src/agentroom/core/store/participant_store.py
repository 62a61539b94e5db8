"""ParticipantStore SQLite 实现

(chatroom_id, role) 唯一；参与者只做 upsert，不物理删除。
"""

from datetime import datetime

import aiosqlite

from ..models.enums import ParticipantStatus
from ..models.participant import Participant

_COLUMNS = (
    "participant_id, chatroom_id, role, status, ready_until, "
    "connection_id, joined_at, departed_at"
)


def _decode_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SqliteParticipantStore:
    """ParticipantStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def upsert_participant(self, participant: Participant) -> None:
        """插入或按 (chatroom_id, role) 覆盖参与者

        覆盖时保留原 participant_id。
        """
        await self._conn.execute(
            f"""
            INSERT INTO participants ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(chatroom_id, role) DO UPDATE SET
                status = excluded.status,
                ready_until = excluded.ready_until,
                connection_id = excluded.connection_id,
                joined_at = excluded.joined_at,
                departed_at = excluded.departed_at
            """,
            (
                participant.participant_id,
                participant.chatroom_id,
                participant.role,
                participant.status.value,
                participant.ready_until.isoformat() if participant.ready_until else None,
                participant.connection_id,
                participant.joined_at.isoformat(),
                participant.departed_at.isoformat() if participant.departed_at else None,
            ),
        )

    async def get_participant(self, chatroom_id: str, role: str) -> Participant | None:
        """按角色查询参与者"""
        cursor = await self._conn.execute(
            f"SELECT {_COLUMNS} FROM participants WHERE chatroom_id = ? AND role = ?",
            (chatroom_id, role),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_participant(row)

    async def list_participants(self, chatroom_id: str) -> list[Participant]:
        """聊天室全部参与者（含已清理），按 joined_at 正序"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM participants
            WHERE chatroom_id = ?
            ORDER BY joined_at ASC, role ASC
            """,
            (chatroom_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_participant(row) for row in rows]

    async def list_present_participants(self) -> list[Participant]:
        """所有聊天室中尚未被清理的参与者（供掉线清理扫描）"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM participants
            WHERE departed_at IS NULL AND ready_until IS NOT NULL
            ORDER BY chatroom_id ASC, role ASC
            """
        )
        rows = await cursor.fetchall()
        return [self._row_to_participant(row) for row in rows]

    async def update_status(
        self,
        chatroom_id: str,
        role: str,
        status: ParticipantStatus,
        ready_until: datetime | None,
    ) -> None:
        """更新状态与存活期限"""
        await self._conn.execute(
            """
            UPDATE participants SET status = ?, ready_until = ?
            WHERE chatroom_id = ? AND role = ?
            """,
            (
                status.value,
                ready_until.isoformat() if ready_until else None,
                chatroom_id,
                role,
            ),
        )

    async def set_ready_until(self, chatroom_id: str, role: str, ready_until: datetime) -> None:
        """只刷新存活期限（心跳）"""
        await self._conn.execute(
            "UPDATE participants SET ready_until = ? WHERE chatroom_id = ? AND role = ?",
            (ready_until.isoformat(), chatroom_id, role),
        )

    async def mark_departed(self, chatroom_id: str, role: str, ts: datetime) -> None:
        """软删除：idle + 清空 ready_until + 记录 departed_at"""
        await self._conn.execute(
            """
            UPDATE participants
            SET status = ?, ready_until = NULL, departed_at = ?
            WHERE chatroom_id = ? AND role = ?
            """,
            (ParticipantStatus.IDLE.value, ts.isoformat(), chatroom_id, role),
        )

    @staticmethod
    def _row_to_participant(row: aiosqlite.Row) -> Participant:
        """将数据库行转换为 Participant 模型"""
        return Participant(
            participant_id=row[0],
            chatroom_id=row[1],
            role=row[2],
            status=row[3],
            ready_until=_decode_dt(row[4]),
            connection_id=row[5],
            joined_at=datetime.fromisoformat(row[6]),
            departed_at=_decode_dt(row[7]),
        )
