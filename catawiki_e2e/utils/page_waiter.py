"""
@PURPOSE: 提供统一的页面等待能力, 所有等待都有上限, 超时不抛出而是返回结果
@OUTLINE:
  - @dataclass WaitStrategy: 存放等待策略
  - class PageWaiter: 封装可复用的等待工具
    - async def wait_for_network_idle(): 等待网络空闲(超时不致命)
    - async def poll_until(): 轮询直到条件返回真值
    - async def wait_for_condition(): 通用条件等待
    - async def apply_retry_backoff(): 应用指数退避
    - async def safe_click(): 确保可见可用的安全点击
    - async def wait_for_locator_hidden(): 等待定位器隐藏或脱离 DOM
@GOTCHAS:
  - 反爬站点的 networkidle 可能永远不触发, 只能作为有上限的等待
  - 轮询使用 time.monotonic 计算截止时间, 不依赖页面时钟
@DEPENDENCIES:
  - 外部: playwright, loguru
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from loguru import logger
from playwright.async_api import Locator, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

if TYPE_CHECKING:
    from ..config.settings import ConsentConfig, RetryConfig

T = TypeVar("T")


@dataclass(slots=True)
class WaitStrategy:
    """等待策略配置."""

    wait_for_network_idle_timeout_ms: int = 10000
    poll_interval_ms: int = 200
    validation_timeout_ms: int = 5000
    retry_initial_delay_ms: int = 250
    retry_backoff_factor: float = 1.6
    retry_max_delay_ms: int = 2000

    @classmethod
    def from_config(cls, consent: ConsentConfig, retry: RetryConfig) -> WaitStrategy:
        """根据配置构建等待策略."""
        return cls(
            wait_for_network_idle_timeout_ms=consent.network_idle_timeout_ms,
            poll_interval_ms=consent.poll_interval_ms,
            validation_timeout_ms=consent.accept_timeout_ms,
            retry_initial_delay_ms=retry.initial_delay_ms,
            retry_backoff_factor=retry.backoff_factor,
            retry_max_delay_ms=retry.max_delay_ms,
        )

    def next_retry_delay(self, attempt: int) -> float:
        """根据重试次数计算指数退避延迟(秒)."""

        delay_ms = self.retry_initial_delay_ms * (self.retry_backoff_factor**attempt)
        delay_ms = min(delay_ms, self.retry_max_delay_ms)
        return max(delay_ms, 0) / 1000


class PageWaiter:
    """可复用的页面等待工具."""

    def __init__(self, page: Page, strategy: WaitStrategy | None = None):
        """初始化等待工具.

        Args:
            page: Playwright Page 对象
            strategy: 等待策略配置
        """
        self.page = page
        self.strategy = strategy or WaitStrategy()

    async def wait_for_network_idle(self, timeout_ms: int | None = None) -> bool:
        """等待网络空闲.

        Returns:
            True 表示进入空闲, False 表示超时(调用方继续执行)
        """

        timeout = self.strategy.wait_for_network_idle_timeout_ms if timeout_ms is None else timeout_ms

        try:
            await self.page.wait_for_load_state("networkidle", timeout=timeout)
            return True
        except PlaywrightTimeoutError:
            logger.debug("等待 networkidle 超时({}ms), 继续执行后续逻辑", timeout)
            return False

    async def poll_until(
        self,
        condition: Callable[[Page], Awaitable[T | None]],
        timeout_ms: int | None = None,
        interval_ms: int | None = None,
    ) -> T | None:
        """轮询直到条件返回真值或超时.

        条件至少会被执行一次, 即使 timeout_ms 为 0.

        Args:
            condition: 接收 page 的异步条件, 返回真值表示满足
            timeout_ms: 超时时间(毫秒)
            interval_ms: 轮询间隔(毫秒)

        Returns:
            条件返回的第一个真值, 超时返回 None
        """

        timeout = self.strategy.validation_timeout_ms if timeout_ms is None else timeout_ms
        poll_interval = interval_ms or self.strategy.poll_interval_ms
        deadline = time.monotonic() + timeout / 1000

        while True:
            try:
                result = await condition(self.page)
                if result:
                    return result
            except Exception as exc:
                logger.debug(f"条件检查失败: {exc}")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(poll_interval / 1000, remaining))

    async def wait_for_condition(
        self,
        condition: Callable[[Page], Awaitable[bool]],
        timeout_ms: int | None = None,
        interval_ms: int | None = None,
    ) -> bool:
        """等待自定义条件成立."""

        return bool(await self.poll_until(condition, timeout_ms, interval_ms))

    async def apply_retry_backoff(self, attempt: int) -> None:
        """应用指数退避等待."""

        delay = self.strategy.next_retry_delay(attempt)
        if delay > 0:
            logger.debug(f"指数退避等待 {delay:.3f}s")
            await asyncio.sleep(delay)

    async def safe_click(
        self,
        locator: Locator | None,
        *,
        timeout_ms: int | None = None,
        ensure_enabled: bool = True,
        scroll: bool = True,
        force: bool = False,
        name: str | None = None,
    ) -> bool:
        """安全点击:可见/可用校验 + 可选滚动.

        Args:
            locator: 目标元素定位器
            timeout_ms: 超时时间(毫秒)
            ensure_enabled: 是否确保元素可用
            scroll: 是否滚动到元素位置
            force: 是否强制点击
            name: 元素名称(用于日志)

        Returns:
            点击是否成功
        """
        if locator is None:
            return False

        effective_timeout = timeout_ms or self.strategy.validation_timeout_ms
        label = name or ""

        try:
            await locator.wait_for(state="visible", timeout=effective_timeout)
            if ensure_enabled:
                try:
                    if not await locator.is_enabled():
                        logger.debug(f"safe_click: 元素未启用 name={label}")
                        return False
                except Exception as exc:
                    logger.debug(f"safe_click: 检查启用失败 name={label} err={exc}")

            if scroll:
                try:
                    await locator.scroll_into_view_if_needed(timeout=effective_timeout)
                except Exception as exc:
                    logger.debug(f"safe_click: 滚动失败 name={label} err={exc}")

            await locator.click(timeout=effective_timeout, force=force)
            return True
        except PlaywrightTimeoutError:
            logger.debug(f"safe_click: 等待超时 name={label}")
            return False
        except Exception as exc:
            logger.debug(f"safe_click: 点击异常 name={label} err={exc}")
            return False

    async def wait_for_locator_hidden(
        self, locator: Locator, timeout_ms: int | None = None
    ) -> bool:
        """等待指定定位器隐藏或从 DOM 中移除."""

        timeout = self.strategy.validation_timeout_ms if timeout_ms is None else timeout_ms

        try:
            await locator.wait_for(state="hidden", timeout=timeout)
            return True
        except PlaywrightTimeoutError:
            return False
