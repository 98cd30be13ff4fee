"""
@PURPOSE: 浏览器管理器, 启动 Playwright 浏览器并为每个测试创建隔离的上下文
@OUTLINE:
  - class BrowserManager: 浏览器管理器主类
    - async def start(): 启动 Playwright 与浏览器
    - async def new_context(): 创建上下文(可预加载会话快照)
    - async def close_context(): 带超时关闭单个上下文
    - async def close(): 按 Context → Browser → Playwright 顺序释放资源
@GOTCHAS:
  - 必须使用 async/await 异步操作
  - 每个测试拥有自己的上下文, 浏览器进程在整个会话内共享
  - 关闭时每一步都有独立超时, 某一步失败不影响后续清理
@DEPENDENCIES:
  - 外部: playwright, loguru
  - 内部: catawiki_e2e.config, browser_settings.py, session_state.py
@RELATED: consent_bootstrapper.py, fixtures.py
"""

import asyncio
from pathlib import Path
from typing import Any, Optional

from loguru import logger
from playwright.async_api import (
    Browser,
    BrowserContext,
    Playwright,
    async_playwright,
)

from ..config.settings import BrowserConfig
from .browser_settings import BrowserSettings
from .session_state import SessionState

# 降低自动化特征, 目标站点对 navigator.webdriver 敏感
_WEBDRIVER_PATCH = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
"""

_CHROMIUM_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-first-run",
    "--no-default-browser-check",
]


class BrowserManager:
    """浏览器管理器.

    Attributes:
        config: 启动配置(Settings.browser)
        settings: 运行环境配置
        playwright: Playwright 实例
        browser: 浏览器实例

    Examples:
        >>> async with BrowserManager() as manager:
        ...     context = await manager.new_context()
        ...     page = await context.new_page()
    """

    def __init__(
        self,
        config: Optional[BrowserConfig] = None,
        browser_settings: Optional[BrowserSettings] = None,
    ):
        """初始化管理器.

        Args:
            config: 启动配置, 默认使用全局 settings.browser
            browser_settings: 运行环境配置
        """
        if config is None:
            from ..config import settings

            config = settings.browser
        self.config = config
        self.settings = browser_settings or BrowserSettings()

        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self._contexts: list[BrowserContext] = []

    @property
    def is_started(self) -> bool:
        return self.browser is not None

    @staticmethod
    def _merge_launch_args(base: list[str], extra: list[str]) -> list[str]:
        """合并启动参数, 保持顺序并去重."""
        merged = list(base)
        for arg in extra:
            if arg not in merged:
                merged.append(arg)
        return merged

    def _resolve_headless(self, headless: Optional[bool]) -> bool:
        if headless is not None:
            return headless
        if self.settings.headless is not None:
            return self.settings.headless
        return self.config.headless

    async def start(self, headless: Optional[bool] = None) -> None:
        """启动浏览器.

        Args:
            headless: 是否无头模式, None 则依次使用 BROWSER_HEADLESS 与 Settings.browser
        """
        if self.is_started:
            logger.debug("浏览器已启动, 跳过")
            return

        self.settings.apply_environment()
        headless = self._resolve_headless(headless)
        browser_type = self.config.type

        launch_options: dict[str, Any] = {
            "headless": headless,
            "slow_mo": self.config.slow_mo,
        }
        args = list(self.settings.launch_args)
        if browser_type == "chromium":
            args = self._merge_launch_args(_CHROMIUM_ARGS, args)
            args.append(f"--lang={self.settings.locale}")
        if args:
            launch_options["args"] = args

        logger.info(f"启动 Playwright 浏览器: type={browser_type}, headless={headless}")
        self.playwright = await async_playwright().start()

        try:
            if browser_type == "chromium":
                launcher = self.playwright.chromium
            elif browser_type == "firefox":
                launcher = self.playwright.firefox
            elif browser_type == "webkit":
                launcher = self.playwright.webkit
            else:
                raise ValueError(f"不支持的浏览器类型: {browser_type}")

            self.browser = await launcher.launch(**launch_options)
        except Exception as exc:
            # 启动失败时停止驱动进程
            logger.error(f"浏览器启动失败: {exc}")
            await self.close()
            raise
        logger.success(f"浏览器已启动 (headless={headless})")

    def build_context_options(
        self, storage_state: SessionState | str | Path | dict | None = None
    ) -> dict[str, Any]:
        """构建 new_context() 参数."""
        options: dict[str, Any] = {"viewport": dict(self.config.viewport)}
        options.update(self.settings.context_options())
        if self.config.user_agent:
            options["user_agent"] = self.config.user_agent

        if isinstance(storage_state, SessionState):
            options["storage_state"] = storage_state.to_storage_state()
        elif isinstance(storage_state, Path):
            options["storage_state"] = str(storage_state)
        elif storage_state is not None:
            options["storage_state"] = storage_state
        return options

    async def new_context(
        self, storage_state: SessionState | str | Path | dict | None = None
    ) -> BrowserContext:
        """创建新的浏览器上下文.

        Args:
            storage_state: 预加载的会话快照(对象, 文件路径或字典)

        Returns:
            新的 BrowserContext
        """
        if not self.browser:
            raise RuntimeError("浏览器未启动, 请先调用 start()")

        context = await self.browser.new_context(**self.build_context_options(storage_state))
        context.set_default_timeout(self.config.timeout)
        await context.add_init_script(_WEBDRIVER_PATCH)
        self._contexts.append(context)
        logger.debug(f"已创建浏览器上下文 (preloaded={storage_state is not None})")
        return context

    async def close_context(self, context: BrowserContext, timeout: float = 5.0) -> None:
        """关闭单个上下文(带超时)."""
        if context in self._contexts:
            self._contexts.remove(context)
        try:
            await asyncio.wait_for(context.close(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"context.close() 超时 ({timeout}s)")
        except Exception as exc:
            logger.debug(f"context.close() 失败: {exc}")

    async def close(self) -> None:
        """关闭浏览器, 确保所有资源被正确释放.

        清理顺序: Context → Browser → Playwright, 每一步都有独立超时.
        """
        errors: list[tuple[str, Exception]] = []

        for context in list(self._contexts):
            await self.close_context(context)

        try:
            if self.browser:
                try:
                    await asyncio.wait_for(self.browser.close(), timeout=10.0)
                except asyncio.TimeoutError:
                    errors.append(("browser", TimeoutError("browser.close() 超时 (10s)")))
                    logger.warning("browser.close() 超时 (10s)")
                except Exception as exc:
                    errors.append(("browser", exc))
                    logger.debug(f"browser.close() 失败: {exc}")
        finally:
            self.browser = None

        # 必须执行, 否则进程残留
        try:
            if self.playwright:
                try:
                    await asyncio.wait_for(self.playwright.stop(), timeout=5.0)
                except asyncio.TimeoutError:
                    errors.append(("playwright", TimeoutError("playwright.stop() 超时 (5s)")))
                    logger.warning("playwright.stop() 超时 (5s)")
                except Exception as exc:
                    errors.append(("playwright", exc))
                    logger.debug(f"playwright.stop() 失败: {exc}")
        finally:
            self.playwright = None

        if errors:
            error_summary = ", ".join(f"{name}:{type(e).__name__}" for name, e in errors)
            logger.warning(f"浏览器关闭过程中有 {len(errors)} 个错误: {error_summary}")
        else:
            logger.info("浏览器已关闭")

    async def __aenter__(self):
        """异步上下文管理器入口."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """异步上下文管理器出口."""
        await self.close()
