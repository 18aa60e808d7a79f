"""structlog 配置

structlog 经由标准库 logging 根 handler 输出，httpx / uvicorn 等第三方日志走同一渲染器。
dev 为彩色控制台输出，json 为单行 JSON。
"""

import logging
import os

import structlog

# 这些库的 INFO 日志会带出完整请求 URL（含 webhook token）
_QUIET_LOGGERS: tuple[str, ...] = ("httpx", "httpcore")


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer()


def setup_logging(log_format: str | None = None, log_level: str | None = None) -> None:
    """初始化日志

    Args:
        log_format: "json" 或 "dev"；缺省读 ACTIVITY_LOG_LOG_FORMAT，默认 dev
        log_level: 缺省读 ACTIVITY_LOG_LOG_LEVEL，默认 INFO
    """
    log_format = log_format or os.environ.get("ACTIVITY_LOG_LOG_FORMAT", "dev")
    log_level = log_level or os.environ.get("ACTIVITY_LOG_LOG_LEVEL", "INFO")
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_renderer(log_format),
            foreign_pre_chain=pre_chain,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
