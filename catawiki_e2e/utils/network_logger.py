"""
@PURPOSE: 记录页面的 XHR/fetch 响应与页面交互, 便于排查测试失败
@OUTLINE:
  - @dataclass NetworkEntry: 单条响应记录
  - class NetworkLogger: 订阅 page 或 context 的 response 事件并输出 "[API] <status> <url>"
  - def log_page_interaction(): 记录页面交互动作
@GOTCHAS:
  - 只记录 xhr / fetch 类型, 静态资源太多会淹没日志
  - 只保留最近 max_entries 条记录, 供诊断快照引用
@DEPENDENCIES:
  - 外部: playwright, loguru
"""

from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext, Page, Response

DEFAULT_RESOURCE_TYPES = ("xhr", "fetch")


@dataclass(frozen=True)
class NetworkEntry:
    method: str
    status: int
    url: str
    resource_type: str


class NetworkLogger:
    """页面网络日志记录器.

    Examples:
        >>> network = NetworkLogger()
        >>> network.attach(page)
        >>> await page.goto("https://www.catawiki.com/en")
        >>> network.entries[-1].status
        200
    """

    def __init__(
        self,
        resource_types: tuple[str, ...] = DEFAULT_RESOURCE_TYPES,
        url_pattern: str | None = None,
        max_entries: int = 200,
    ):
        self.resource_types = resource_types
        self.url_pattern = re.compile(url_pattern) if url_pattern else None
        self.entries: deque[NetworkEntry] = deque(maxlen=max_entries)
        self._targets: list[Page | BrowserContext] = []

    def _on_response(self, response: Response) -> None:
        request = response.request
        if request.resource_type not in self.resource_types:
            return
        if self.url_pattern and not self.url_pattern.search(response.url):
            return

        entry = NetworkEntry(
            method=request.method,
            status=response.status,
            url=response.url,
            resource_type=request.resource_type,
        )
        self.entries.append(entry)
        if entry.status >= 400:
            logger.warning(f"[API] {entry.status} {entry.url}")
        else:
            logger.debug(f"[API] {entry.status} {entry.url}")

    def attach(self, target: Page | BrowserContext) -> None:
        """开始监听页面(或整个上下文)的响应."""
        if target in self._targets:
            return
        target.on("response", self._on_response)
        self._targets.append(target)

    def detach(self, target: Page | BrowserContext | None = None) -> None:
        """停止监听, target 为 None 时移除全部."""
        targets = [target] if target is not None else list(self._targets)
        for item in targets:
            if item not in self._targets:
                continue
            try:
                item.remove_listener("response", self._on_response)
            except Exception as exc:
                logger.debug(f"移除响应监听失败: {exc}")
            self._targets.remove(item)

    def failures(self) -> list[NetworkEntry]:
        """状态码 >= 400 的记录."""
        return [entry for entry in self.entries if entry.status >= 400]


def log_page_interaction(action: str, **details: Any) -> None:
    """记录页面交互动作.

    Examples:
        >>> log_page_interaction("click", target="Agree")
    """
    if details:
        detail_str = ", ".join(f"{key}={value}" for key, value in details.items())
        logger.info(f"[UI] {action} ({detail_str})")
    else:
        logger.info(f"[UI] {action}")
