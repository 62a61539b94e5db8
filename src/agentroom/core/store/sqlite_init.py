"""SQLite 数据库初始化

PRAGMA 配置 + 五张表 DDL + 索引创建。
活跃槽位与队列位置两条不变量同时由唯一索引兜底：
并发写入者违反约束时整笔事务回滚，而不是写出脏状态。
"""

import aiosqlite

# chatrooms 表 DDL
_CHATROOMS_DDL = """
CREATE TABLE IF NOT EXISTS chatrooms (
    chatroom_id             TEXT PRIMARY KEY,
    name                    TEXT NOT NULL DEFAULT '',
    team_roles              TEXT NOT NULL DEFAULT '[]',
    team_entry_point        TEXT,
    queue_position_counter  INTEGER NOT NULL DEFAULT 0,
    created_at              TEXT NOT NULL,
    last_activity_at        TEXT NOT NULL
);
"""

_CHATROOMS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_chatrooms_created_at ON chatrooms(created_at DESC);",
]

# tasks 表 DDL
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id            TEXT PRIMARY KEY,
    chatroom_id        TEXT NOT NULL,
    status             TEXT NOT NULL,
    origin             TEXT NOT NULL DEFAULT 'none',
    content            TEXT NOT NULL DEFAULT '',
    created_by         TEXT NOT NULL,
    assigned_to        TEXT,
    queue_position     INTEGER NOT NULL,
    source_message_id  TEXT,
    parent_task_ids    TEXT NOT NULL DEFAULT '[]',
    backlog_status     TEXT,
    created_at         TEXT NOT NULL,
    updated_at         TEXT NOT NULL,
    acknowledged_at    TEXT,
    started_at         TEXT,
    completed_at       TEXT,

    FOREIGN KEY (chatroom_id) REFERENCES chatrooms(chatroom_id)
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_chatroom ON tasks(chatroom_id);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_chatroom_status ON tasks(chatroom_id, status);",
    # 队列位置在聊天室内唯一
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_queue_position "
        "ON tasks(chatroom_id, queue_position);"
    ),
    # 活跃槽位：每个聊天室至多一个 pending / in_progress 任务
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_active_slot "
        "ON tasks(chatroom_id) WHERE status IN ('pending', 'in_progress');"
    ),
]

# messages 表 DDL（seq 提供聊天室内全序）
_MESSAGES_DDL = """
CREATE TABLE IF NOT EXISTS messages (
    seq                     INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id              TEXT NOT NULL UNIQUE,
    chatroom_id             TEXT NOT NULL,
    sender_role             TEXT NOT NULL,
    content                 TEXT NOT NULL DEFAULT '',
    type                    TEXT NOT NULL DEFAULT 'message',
    target_role             TEXT,
    classification          TEXT NOT NULL DEFAULT 'none',
    task_id                 TEXT,
    attached_task_ids       TEXT NOT NULL DEFAULT '[]',
    claimed_by_role         TEXT,
    task_origin_message_id  TEXT,
    created_at              TEXT NOT NULL,
    acknowledged_at         TEXT,
    completed_at            TEXT,

    FOREIGN KEY (chatroom_id) REFERENCES chatrooms(chatroom_id)
);
"""

_MESSAGES_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_messages_chatroom ON messages(chatroom_id, seq);",
    "CREATE INDEX IF NOT EXISTS idx_messages_task ON messages(task_id);",
]

# participants 表 DDL
_PARTICIPANTS_DDL = """
CREATE TABLE IF NOT EXISTS participants (
    participant_id  TEXT PRIMARY KEY,
    chatroom_id     TEXT NOT NULL,
    role            TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'waiting',
    ready_until     TEXT,
    connection_id   TEXT,
    joined_at       TEXT NOT NULL,
    departed_at     TEXT,

    FOREIGN KEY (chatroom_id) REFERENCES chatrooms(chatroom_id)
);
"""

_PARTICIPANTS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_participants_chatroom ON participants(chatroom_id);",
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_participants_chatroom_role "
        "ON participants(chatroom_id, role);"
    ),
]

# task_events 审计表 DDL（append-only）
_TASK_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS task_events (
    seq          INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id     TEXT NOT NULL UNIQUE,
    task_id      TEXT NOT NULL,
    chatroom_id  TEXT NOT NULL,
    ts           TEXT NOT NULL,
    from_status  TEXT NOT NULL,
    to_status    TEXT NOT NULL,
    trigger      TEXT NOT NULL,

    FOREIGN KEY (task_id) REFERENCES tasks(task_id)
);
"""

_TASK_EVENTS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_task_events_task ON task_events(task_id, seq);",
    "CREATE INDEX IF NOT EXISTS idx_task_events_chatroom ON task_events(chatroom_id, seq);",
]


async def configure_connection(conn: aiosqlite.Connection) -> None:
    """连接级 PRAGMA（每个连接都需要设置）"""
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await configure_connection(conn)

    # 创建表
    for ddl in (_CHATROOMS_DDL, _TASKS_DDL, _MESSAGES_DDL, _PARTICIPANTS_DDL, _TASK_EVENTS_DDL):
        await conn.execute(ddl)

    # 创建索引
    for idx_sql in (
        _CHATROOMS_INDEXES
        + _TASKS_INDEXES
        + _MESSAGES_INDEXES
        + _PARTICIPANTS_INDEXES
        + _TASK_EVENTS_INDEXES
    ):
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
