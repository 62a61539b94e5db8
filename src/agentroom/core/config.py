"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、心跳 TTL、清理周期、任务/消息上限等可配置常量。
所有超时均以秒表示，落库时换算为绝对过期时间点（ready_until）。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("AGENTROOM_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "AGENTROOM_DB_PATH",
        str(_get_base_dir() / "sqlite" / "agentroom.db"),
    )


# 心跳间隔（秒）：Agent 侧刷新 ready_until 的建议频率
HEARTBEAT_INTERVAL_S: int = int(os.environ.get("AGENTROOM_HEARTBEAT_INTERVAL_S", "30"))

# 心跳 TTL（秒）：最后一次心跳后参与者仍被视为在线的时长，必须大于心跳间隔
HEARTBEAT_TTL_S: int = int(os.environ.get("AGENTROOM_HEARTBEAT_TTL_S", "60"))

# 掉线 Agent 清理周期（秒）
SWEEP_INTERVAL_S: int = int(os.environ.get("AGENTROOM_SWEEP_INTERVAL_S", "120"))

# 单个聊天室未结束任务上限（completed / closed 之外的所有任务）
MAX_ACTIVE_TASKS: int = int(os.environ.get("AGENTROOM_MAX_ACTIVE_TASKS", "100"))

# 消息列表最大返回条数
MESSAGE_LIST_MAX_LIMIT: int = 1000

# 任务列表最大返回条数
TASK_LIST_MAX_LIMIT: int = 100

# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = int(os.environ.get("AGENTROOM_SSE_HEARTBEAT_INTERVAL", "15"))

# 日志中内容预览截断长度
CONTENT_PREVIEW_LENGTH: int = 50
