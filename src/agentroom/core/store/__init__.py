"""AgentRoom Core Store -- SQLite 持久化实现

提供工厂函数创建 Store 实例组：读连接走 WAL 快照读，
写连接只在 transaction() 内使用。
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from .chatroom_store import SqliteChatroomStore
from .event_store import SqliteTaskEventStore
from .message_store import SqliteMessageStore
from .participant_store import SqliteParticipantStore
from .sqlite_init import configure_connection, init_db, verify_wal_mode
from .task_store import SqliteTaskStore
from .transaction import UnitOfWork, run_in_transaction


class StoreGroup:
    """Store 实例组 -- 读连接上的 Store + 写连接上的事务入口"""

    def __init__(
        self,
        read_conn: aiosqlite.Connection,
        write_conn: aiosqlite.Connection,
    ) -> None:
        self.conn = read_conn
        self.write_conn = write_conn
        self._write_lock = asyncio.Lock()
        self.chatroom_store = SqliteChatroomStore(read_conn)
        self.task_store = SqliteTaskStore(read_conn)
        self.message_store = SqliteMessageStore(read_conn)
        self.participant_store = SqliteParticipantStore(read_conn)
        self.event_store = SqliteTaskEventStore(read_conn)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[UnitOfWork]:
        """写事务：成功提交，异常回滚后原样抛出"""
        async with run_in_transaction(self.write_conn, self._write_lock) as uow:
            yield uow

    async def close(self) -> None:
        await self.conn.close()
        await self.write_conn.close()


async def create_store_group(db_path: str) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    write_conn = await aiosqlite.connect(db_path)
    write_conn.row_factory = aiosqlite.Row
    await init_db(write_conn)

    read_conn = await aiosqlite.connect(db_path)
    read_conn.row_factory = aiosqlite.Row
    await configure_connection(read_conn)

    return StoreGroup(read_conn=read_conn, write_conn=write_conn)


__all__ = [
    "StoreGroup",
    "UnitOfWork",
    "create_store_group",
    "SqliteChatroomStore",
    "SqliteTaskStore",
    "SqliteMessageStore",
    "SqliteParticipantStore",
    "SqliteTaskEventStore",
    "init_db",
    "verify_wal_mode",
]
