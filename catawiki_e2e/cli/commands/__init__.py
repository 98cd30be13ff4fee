"""
@PURPOSE: CLI 命令模块包初始化
@OUTLINE:
  - 导出所有命令组
@DEPENDENCIES:
  - 内部: catawiki_e2e.cli.commands.*
"""

from .config import config_app
from .session import session_app

__all__ = [
    "config_app",
    "session_app",
]
