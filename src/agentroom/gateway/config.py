"""GatewayConfig -- Gateway 配置加载

从环境变量加载访问令牌与清理调度配置。
核心常量（TTL、上限等）见 agentroom.core.config。
"""

import os

import structlog
from agentroom.core.config import SWEEP_INTERVAL_S
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()


class GatewayConfig(BaseModel):
    """Gateway 配置 -- 从环境变量加载

    环境变量:
        AGENTROOM_ACCESS_TOKEN: 共享访问令牌（为空时不做鉴权）
        AGENTROOM_ALLOWED_CHATROOMS: 允许访问的聊天室 ID，逗号分隔
        AGENTROOM_SWEEPER_ENABLED: 是否启动后台清理（默认 true）
        AGENTROOM_SWEEP_INTERVAL_S: 清理周期（秒，默认 120）
    """

    access_token: SecretStr | None = Field(
        default=None,
        description="共享访问令牌",
    )
    allowed_chatrooms: set[str] | None = Field(
        default=None,
        description="聊天室白名单，None 表示不限制",
    )
    sweeper_enabled: bool = Field(
        default=True,
        description="是否在 lifespan 内运行 StaleAgentSweeper",
    )
    sweep_interval_s: int = Field(
        default=SWEEP_INTERVAL_S,
        ge=1,
        description="掉线清理周期（秒）",
    )


def load_gateway_config() -> GatewayConfig:
    """从环境变量加载 Gateway 配置

    Returns:
        GatewayConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("AGENTROOM_ACCESS_TOKEN"):
        kwargs["access_token"] = SecretStr(val)

    if val := os.environ.get("AGENTROOM_ALLOWED_CHATROOMS"):
        kwargs["allowed_chatrooms"] = {c.strip() for c in val.split(",") if c.strip()}

    if val := os.environ.get("AGENTROOM_SWEEPER_ENABLED"):
        kwargs["sweeper_enabled"] = val.lower() not in ("0", "false", "no")

    if val := os.environ.get("AGENTROOM_SWEEP_INTERVAL_S"):
        try:
            kwargs["sweep_interval_s"] = int(val)
        except ValueError:
            log.warning(
                "invalid_sweep_interval_config",
                env_var="AGENTROOM_SWEEP_INTERVAL_S",
                value=val,
                fallback=SWEEP_INTERVAL_S,
            )

    return GatewayConfig(**kwargs)
