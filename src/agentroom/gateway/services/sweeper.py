"""StaleAgentSweeper -- 周期性掉线 Agent 清理

在 Gateway lifespan 内启动一个 asyncio 后台任务，
每 interval_s 秒执行一次 sweep_stale_participants，并广播恢复产生的事件。
"""

import asyncio
import contextlib

import structlog
from agentroom.core.engine import sweep_stale_participants
from agentroom.core.models import SweepReport
from agentroom.core.store import StoreGroup

from .sse_hub import SSEHub

log = structlog.get_logger()


class StaleAgentSweeper:
    """后台清理调度器"""

    def __init__(
        self,
        store_group: StoreGroup,
        sse_hub: SSEHub | None = None,
        interval_s: float = 120,
    ) -> None:
        self._stores = store_group
        self._sse_hub = sse_hub
        self._interval_s = interval_s
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """启动后台循环（重复调用无副作用）"""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="stale-agent-sweeper")
        log.info("stale_agent_sweeper_started", interval_s=self._interval_s)

    async def stop(self) -> None:
        """取消后台循环并等待退出"""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        log.info("stale_agent_sweeper_stopped")

    async def run_once(self) -> SweepReport:
        """执行一次清理并广播已提交的事件"""
        report = await sweep_stale_participants(self._stores)
        if self._sse_hub is not None and report.events:
            await self._sse_hub.publish(report.events)
        return report

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            try:
                await self.run_once()
            except Exception:
                # 单次失败不终止调度，下个周期重试
                log.exception("stale_agent_sweep_iteration_failed")
