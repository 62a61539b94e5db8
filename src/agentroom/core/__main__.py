"""CLI 入口模块 -- python -m agentroom.core <command>

支持的命令：
  init-db  创建数据库表与索引
  sweep    执行一次掉线 Agent 清理
"""

import asyncio
import sys

from .config import get_db_path

_USAGE = """用法: python -m agentroom.core <command>
命令:
  init-db  创建数据库表与索引
  sweep    执行一次掉线 Agent 清理"""


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(_USAGE)
        sys.exit(1)

    command = sys.argv[1]

    if command == "init-db":
        asyncio.run(init_database())
    elif command == "sweep":
        asyncio.run(sweep_once())
    else:
        print(f"未知命令: {command}")
        print("可用命令: init-db, sweep")
        sys.exit(1)


async def init_database() -> None:
    """创建 schema（幂等）"""
    from .store import create_store_group, verify_wal_mode

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")

    store_group = await create_store_group(db_path)
    try:
        wal = await verify_wal_mode(store_group.write_conn)
        print(f"初始化完成，WAL 模式: {'已启用' if wal else '未启用'}")
    finally:
        await store_group.close()


async def sweep_once() -> None:
    """执行一次清理并打印统计"""
    from .engine import sweep_stale_participants
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")

    store_group = await create_store_group(db_path)
    try:
        report = await sweep_stale_participants(store_group)
        print(
            f"清理完成: {len(report.swept_participants)} 个参与者, "
            f"{len(report.recovered_task_ids)} 个任务回到 pending, "
            f"{len(report.failed_participants)} 个失败"
        )
        for key in report.swept_participants:
            print(f"  - {key}")
    finally:
        await store_group.close()


if __name__ == "__main__":
    main()
