"""structlog 配置

Gateway 与引擎共用一条 structlog 管线，标准库 logging（uvicorn、aiosqlite）
经 ProcessorFormatter 桥接到同一渲染器。
"""

import logging
import os

import structlog

# 噪声较大的第三方 logger，只保留 WARNING 以上
_QUIET_LOGGERS = ("aiosqlite", "uvicorn.access", "sse_starlette")


def _add_service(
    logger: logging.Logger, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    event_dict.setdefault("service", "agentroom")
    return event_dict


def setup_logging(log_format: str | None = None, log_level: str | None = None) -> None:
    """初始化日志

    未显式传参时读取环境变量：
    - AGENTROOM_LOG_FORMAT: "json" 输出结构化 JSON，其余值（默认 "dev"）用控制台渲染
    - AGENTROOM_LOG_LEVEL: 根 logger 级别，默认 INFO
    """
    log_format = (log_format or os.environ.get("AGENTROOM_LOG_FORMAT", "dev")).lower()
    log_level = (log_level or os.environ.get("AGENTROOM_LOG_LEVEL", "INFO")).upper()
    json_mode = log_format == "json"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _add_service,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_mode:
        shared_processors.append(structlog.processors.format_exc_info)

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer(ensure_ascii=False)
        if json_mode
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
