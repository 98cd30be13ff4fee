"""
@PURPOSE: 日志系统设置 - 配置结构化日志、日志轮转和多级别输出
@OUTLINE:
  - def setup_logger(): 配置全局日志系统
  - def get_logger_with_context(): 获取带上下文的logger
  - def format_detailed(): 详细格式化器
  - def format_json(): JSON格式化器
  - def format_simple(): 简单格式化器
@GOTCHAS:
  - 需要在 CLI / pytest 启动时调用 setup_logger(), 导入时不会自动配置
  - 重复调用只生效一次, 需要重新配置时传 force=True
  - JSON 格式适合 CI 日志分析
@DEPENDENCIES:
  - 外部: loguru
  - 内部: catawiki_e2e.config
"""

import json
import sys
from typing import Any, Dict, Optional

from loguru import logger

from ..config import settings

_CONTEXT_KEYS = ("run_id", "phase", "action", "test")

_configured = False


# ========== 日志格式化器 ==========

def format_detailed(record: Dict[str, Any]) -> str:
    """详细格式化器(开发环境).

    Args:
        record: 日志记录

    Returns:
        格式化后的日志模板
    """
    extra = record["extra"]
    context_parts = []
    run_id = extra.get("run_id", "")
    if run_id:
        context_parts.append(f"run={run_id[:8]}")
    for key in ("phase", "action", "test"):
        if extra.get(key):
            context_parts.append(f"{key}={extra[key]}")

    context_str = f" [{', '.join(context_parts)}]" if context_parts else ""
    # 上下文中可能包含花括号, 需要转义后再拼进模板
    context_str = context_str.replace("{", "{{").replace("}", "}}")

    return (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan>"
        f"{context_str} - "
        "<level>{message}</level>\n"
        "{exception}"
    )


def serialize_record(record: Dict[str, Any]) -> str:
    """将日志记录序列化为一行 JSON.

    Args:
        record: 日志记录

    Returns:
        JSON 字符串
    """
    log_entry: Dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "logger": record["name"],
        "function": record["function"],
        "line": record["line"],
        "message": record["message"],
    }

    extra = record["extra"]
    context = {key: extra[key] for key in _CONTEXT_KEYS if key in extra}
    if context:
        log_entry["context"] = context

    if record["exception"]:
        log_entry["exception"] = {
            "type": record["exception"].type.__name__,
            "value": str(record["exception"].value),
        }

    return json.dumps(log_entry, ensure_ascii=False, default=str)


def format_json(record: Dict[str, Any]) -> str:
    """JSON格式化器(CI 环境).

    loguru 会把返回值当作模板解析, 因此先把 JSON 放进 extra 再引用.
    """
    record["extra"]["_json"] = serialize_record(record)
    return "{extra[_json]}\n"


def format_simple(record: Dict[str, Any]) -> str:
    """简单格式化器."""
    return "{time:HH:mm:ss} | {level: <8} | {message}\n"


# ========== 日志设置 ==========

def setup_logger(config: Optional[Any] = None, force: bool = False) -> None:
    """配置全局日志系统.

    Args:
        config: 日志配置, 默认使用 settings.logging
        force: 是否强制重新配置

    Examples:
        >>> from catawiki_e2e.utils.logger_setup import setup_logger
        >>> setup_logger()
    """
    global _configured

    if _configured and not force:
        return

    if config is None:
        config = settings.logging

    logger.remove()

    if config.format == "json":
        formatter = format_json
    elif config.format == "simple":
        formatter = format_simple
    else:
        formatter = format_detailed

    if "console" in config.output:
        logger.add(
            sys.stderr,
            format=formatter,
            level=config.level,
            colorize=config.format != "json",
            backtrace=True,
            diagnose=False,
        )

    if "file" in config.output:
        log_file = settings.get_absolute_path(config.file_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            str(log_file),
            format=formatter,
            level=config.level,
            rotation=config.rotation,
            retention=config.retention,
            compression="zip",
            backtrace=True,
            diagnose=False,
            encoding="utf-8",
        )

    _configured = True
    logger.info(
        f"日志系统已配置: level={config.level}, format={config.format}, output={config.output}"
    )


def get_logger_with_context(**context) -> Any:
    """获取带上下文的logger.

    Examples:
        >>> log = get_logger_with_context(run_id="xxx", phase="navigating")
        >>> log.info("开始导航")
    """
    return logger.bind(**context)
