"""
@PURPOSE: 测试 Mock 模块
@OUTLINE:
  - MockPage / MockLocator: 模拟 Playwright 页面与定位器
  - MockBrowserContext / MockBrowser / MockPlaywright: 模拟 Playwright 核心对象
  - install_cookie_bar: 模拟 Cookie 同意弹层
"""

from .browser_mock import MockLocator, MockPage, role_key
from .consent_mock import CookieBar, install_cookie_bar
from .playwright_mock import (
    MockAsyncPlaywright,
    MockBrowser,
    MockBrowserContext,
    MockBrowserType,
    MockPlaywright,
)

__all__ = [
    "CookieBar",
    "MockAsyncPlaywright",
    "MockBrowser",
    "MockBrowserContext",
    "MockBrowserType",
    "MockLocator",
    "MockPage",
    "MockPlaywright",
    "install_cookie_bar",
    "role_key",
]
