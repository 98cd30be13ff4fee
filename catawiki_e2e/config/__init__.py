"""
@PURPOSE: 配置包入口, 暴露全局配置实例
@OUTLINE:
  - settings: 全局配置实例
  - create_settings(): 按环境创建配置
"""

from .settings import (
    BrowserConfig,
    ConsentConfig,
    DebugConfig,
    LocatorSpec,
    LoggingConfig,
    RetryConfig,
    Settings,
    create_settings,
    load_environment_config,
    settings,
)

__all__ = [
    "BrowserConfig",
    "ConsentConfig",
    "DebugConfig",
    "LocatorSpec",
    "LoggingConfig",
    "RetryConfig",
    "Settings",
    "create_settings",
    "load_environment_config",
    "settings",
]
