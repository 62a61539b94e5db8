"""写事务封装 -- Unit of Work

一个编排操作的所有写入在同一 SQLite 事务内原子提交：
BEGIN IMMEDIATE 先拿写锁，任何异常整体回滚并原样抛出，
不会留下半完成的多步操作。
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosqlite
import structlog

from ..models.event import TaskEvent
from .chatroom_store import SqliteChatroomStore
from .event_store import SqliteTaskEventStore
from .message_store import SqliteMessageStore
from .participant_store import SqliteParticipantStore
from .task_store import SqliteTaskStore

log = structlog.get_logger()


class UnitOfWork:
    """绑定写连接的 Store 集合

    emitted_events 收集本事务内产生的流转事件，提交成功后由调用方广播。
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.chatroom_store = SqliteChatroomStore(conn)
        self.task_store = SqliteTaskStore(conn)
        self.message_store = SqliteMessageStore(conn)
        self.participant_store = SqliteParticipantStore(conn)
        self.event_store = SqliteTaskEventStore(conn)
        self.emitted_events: list[TaskEvent] = []


@asynccontextmanager
async def run_in_transaction(
    conn: aiosqlite.Connection,
    lock: asyncio.Lock,
) -> AsyncIterator[UnitOfWork]:
    """在写连接上开启 IMMEDIATE 事务

    lock 串行化同一进程内的写者；跨进程写者由 SQLite 写锁 + busy_timeout 串行化。
    """
    async with lock:
        await conn.execute("BEGIN IMMEDIATE")
        uow = UnitOfWork(conn)
        try:
            yield uow
        except BaseException:
            await conn.rollback()
            log.debug("transaction_rolled_back", event_count=len(uow.emitted_events))
            raise
        else:
            await conn.commit()
