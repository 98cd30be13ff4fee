"""
@PURPOSE: 浏览器相关 Mock 类
@OUTLINE:
  - MockLocator: 模拟 Playwright Locator(支持严格模式, 可见性与点击回调)
  - MockPage: 模拟 Playwright Page(按选择器 / 角色 / test id 注册定位器)
@DEPENDENCIES:
  - 外部: playwright(仅异常类型)
"""

from __future__ import annotations

import re
from typing import Any, Callable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError


def role_key(role: str, name: str | re.Pattern | None = None) -> str:
    """get_by_role 在 MockPage 中对应的注册键."""
    if name is None:
        return f"role={role}"
    label = name.pattern if isinstance(name, re.Pattern) else name
    return f"role={role}[name={label}]"


class MockLocator:
    """模拟 Playwright Locator 对象

    同一个定位器的 first 视图与原对象共享状态, 隐藏或点击会同时反映到两者.
    """

    def __init__(
        self,
        text: str = "",
        is_visible: bool = True,
        count: int = 1,
        *,
        on_click: Callable[[], None] | None = None,
        click_error: Exception | None = None,
        enabled: bool = True,
    ):
        self._text = text
        self._state: dict[str, Any] = {
            "visible": is_visible,
            "count": count,
            "clicks": 0,
            "wait_calls": [],
        }
        self._single = False
        self._on_click = on_click
        self._click_error = click_error
        self._enabled = enabled

    # ---------- 测试辅助 ----------

    @property
    def clicks(self) -> int:
        return self._state["clicks"]

    @property
    def wait_calls(self) -> list[dict[str, Any]]:
        return self._state["wait_calls"]

    def detach(self) -> None:
        """模拟元素从 DOM 中移除"""
        self._state["count"] = 0
        self._state["visible"] = False

    def hide(self) -> None:
        self._state["visible"] = False

    def reveal_after(self, waits: int) -> None:
        """先隐藏, 第 waits 次 wait_for 之后变为可见"""
        self._state["visible"] = False
        self._state["reveal_after"] = waits

    # ---------- Locator API ----------

    @property
    def first(self) -> MockLocator:
        """获取第一个元素"""
        view = MockLocator.__new__(MockLocator)
        view.__dict__.update(self.__dict__)
        view._single = True
        return view

    async def count(self) -> int:
        """返回匹配元素数量"""
        count = self._state["count"]
        return min(count, 1) if self._single else count

    async def is_visible(self, **kwargs) -> bool:
        """检查是否可见"""
        return self._state["visible"] and self._state["count"] > 0

    async def is_enabled(self, **kwargs) -> bool:
        """检查是否启用"""
        return self._enabled

    async def scroll_into_view_if_needed(self, **kwargs) -> None:
        """模拟滚动到视图"""

    async def wait_for(self, state: str = "visible", timeout: float | None = None) -> None:
        """按状态等待, 条件不满足时立即抛出超时"""
        self._state["wait_calls"].append({"state": state, "timeout": timeout})
        reveal_after = self._state.get("reveal_after")
        if reveal_after is not None and len(self._state["wait_calls"]) > reveal_after:
            self._state["visible"] = True
        count = await self.count()
        visible = await self.is_visible()

        if state in ("visible", "attached") and count > 1:
            raise PlaywrightError(
                f"Error: strict mode violation: locator resolved to {count} elements"
            )
        if state == "visible" and not visible:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded.")
        if state == "attached" and count == 0:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded.")
        if state == "hidden" and visible:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded.")
        if state == "detached" and count > 0:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded.")

    async def click(self, **kwargs) -> None:
        """模拟点击"""
        if self._click_error is not None:
            raise self._click_error
        self._state["clicks"] += 1
        if self._on_click is not None:
            self._on_click()

    async def text_content(self, **kwargs) -> str:
        """获取文本内容"""
        return self._text


class MockPage:
    """模拟 Playwright Page 对象

    未注册的定位器视为不存在(count=0, 不可见).
    """

    def __init__(self, url: str = "about:blank", context: Any = None):
        self._url = url
        self.context = context
        self._locators: dict[str, MockLocator] = {}
        self._listeners: dict[str, list[Callable]] = {}
        self.local_storage: dict[str, str] = {}
        self.goto_calls: list[dict[str, Any]] = []
        self.goto_errors: list[Exception] = []
        self.network_idle_error: Exception | None = None
        self.screenshots: list[dict[str, Any]] = []
        self.lookups: list[str] = []

    @property
    def url(self) -> str:
        return self._url

    def is_closed(self) -> bool:
        return False

    async def goto(self, url: str, **kwargs) -> None:
        """导航到URL, goto_errors 中的异常按顺序抛出"""
        self.goto_calls.append({"url": url, **kwargs})
        if self.goto_errors:
            raise self.goto_errors.pop(0)
        self._url = url

    async def wait_for_load_state(self, state: str = "load", **kwargs) -> None:
        """等待加载状态"""
        if state == "networkidle" and self.network_idle_error is not None:
            raise self.network_idle_error

    def _lookup(self, key: str) -> MockLocator:
        self.lookups.append(key)
        return self._locators.get(key) or MockLocator(is_visible=False, count=0)

    def locator(self, selector: str) -> MockLocator:
        """获取定位器"""
        return self._lookup(selector)

    def get_by_role(self, role: str, name: str | re.Pattern | None = None, **kwargs) -> MockLocator:
        """通过角色获取"""
        return self._lookup(role_key(role, name))

    def get_by_test_id(self, test_id: str) -> MockLocator:
        return self._lookup(f"test_id={test_id}")

    def get_by_text(self, text: str, **kwargs) -> MockLocator:
        """通过文本获取"""
        return self._lookup(f"text={text}")

    async def evaluate(self, expression: str, *args) -> Any:
        """执行JavaScript, 只模拟读取 localStorage 键"""
        if "localStorage" in expression:
            return list(self.local_storage)
        return None

    async def screenshot(self, **kwargs) -> bytes:
        """截图"""
        self.screenshots.append(kwargs)
        return b""

    def on(self, event: str, handler: Callable) -> None:
        self._listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable) -> None:
        self._listeners.get(event, []).remove(handler)

    def emit(self, event: str, payload: Any) -> None:
        """触发事件(测试辅助方法)"""
        for handler in list(self._listeners.get(event, [])):
            handler(payload)

    def set_mock_locator(self, selector: str, locator: MockLocator) -> None:
        """设置模拟定位器(测试辅助方法)"""
        self._locators[selector] = locator
