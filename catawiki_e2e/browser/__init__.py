"""
@PURPOSE: 浏览器模块, 封装 Playwright 启动, 会话快照与 Cookie 同意引导
@OUTLINE:
  - BrowserManager: 浏览器管理器
  - BrowserSettings: 浏览器运行环境配置
  - ConsentBootstrapper: Cookie 同意会话引导器
  - ResilientLocator: 弹性定位器(有序策略链)
  - SessionState / SessionStateStore / SessionSnapshot: 会话快照
@DEPENDENCIES:
  - 外部: playwright
@RELATED: ../config/, ../fixtures.py
"""

from .browser_manager import BrowserManager
from .browser_settings import BrowserSettings
from .consent_bootstrapper import (
    BootstrapPhase,
    BootstrapResult,
    ConfirmationSignal,
    ConsentBootstrapper,
    ConsentDiagnostics,
    ConsentOutcome,
)
from .resilient_selector import LocatorHit, LocatorStrategy, ResilientLocator, StrategyChain
from .session_state import (
    CookieRecord,
    OriginStorage,
    SessionSnapshot,
    SessionState,
    SessionStateStore,
)

__all__ = [
    "BootstrapPhase",
    "BootstrapResult",
    "BrowserManager",
    "BrowserSettings",
    "ConfirmationSignal",
    "ConsentBootstrapper",
    "ConsentDiagnostics",
    "ConsentOutcome",
    "CookieRecord",
    "LocatorHit",
    "LocatorStrategy",
    "OriginStorage",
    "ResilientLocator",
    "SessionSnapshot",
    "SessionState",
    "SessionStateStore",
    "StrategyChain",
]
