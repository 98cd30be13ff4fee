"""
@PURPOSE: Cookie 同意会话引导器 - 为测试提供一个不被同意弹层遮挡的页面, 并产出可复用的会话快照
@OUTLINE:
  - enum ConsentOutcome: 引导结果
  - enum BootstrapPhase: 引导阶段(带显式的状态转换表)
  - enum ConfirmationSignal: 判定弹层已关闭的信号
  - @dataclass ConsentDiagnostics: 失败诊断快照
  - @dataclass BootstrapResult: 完整引导结果
  - class ConsentBootstrapper: 引导器主类
    - async def bootstrap(): 返回可用页面
    - async def run(): 返回完整结果
    - async def collect_diagnostics(): 采集诊断信息
@GOTCHAS:
  - 只有入口导航失败是致命的(FatalNavigationError), 其余失败都降级为 DEGRADED_READY
  - 传入有效的会话快照时走快速路径, 不会查询检测策略或按钮策略
  - 确认阶段使用轮询, 任意一个信号成立即视为成功, 不使用固定 sleep
  - strict=True 时降级改为抛出 ConsentDismissFailure
@DEPENDENCIES:
  - 外部: playwright, loguru
  - 内部: resilient_selector.py, session_state.py, catawiki_e2e.utils.page_waiter, catawiki_e2e.errors
@RELATED: fixtures.py, cli/commands/session.py
"""

from __future__ import annotations

import json
import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger
from playwright.async_api import Error as PlaywrightError

from ..errors import ConsentDismissFailure, FatalNavigationError
from ..utils.network_logger import log_page_interaction
from ..utils.page_waiter import PageWaiter, WaitStrategy
from .resilient_selector import LocatorHit, ResilientLocator, StrategyChain
from .session_state import OriginStorage, SessionState, SessionStateStore

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext, Page

    from ..config.settings import ConsentConfig, DebugConfig, RetryConfig, Settings


class ConsentOutcome(str, Enum):
    """引导结果."""

    ALREADY_CONSENTED = "already_consented"
    DISMISSED_VIA_AGREE = "dismissed_via_agree"
    DISMISSED_VIA_REJECT = "dismissed_via_reject"
    NOT_PRESENT = "not_present"
    TIMED_OUT = "timed_out"
    FAILED = "failed"

    @property
    def degraded(self) -> bool:
        return self in (ConsentOutcome.TIMED_OUT, ConsentOutcome.FAILED)


class BootstrapPhase(str, Enum):
    """引导阶段."""

    START = "start"
    APPLYING_STATE = "applying_state"
    NAVIGATING = "navigating"
    PROBE_INTERSTITIAL = "probe_interstitial"
    DISMISSING = "dismissing"
    READY = "ready"
    DEGRADED_READY = "degraded_ready"


_TRANSITIONS: dict[BootstrapPhase, frozenset[BootstrapPhase]] = {
    BootstrapPhase.START: frozenset({BootstrapPhase.APPLYING_STATE, BootstrapPhase.NAVIGATING}),
    BootstrapPhase.APPLYING_STATE: frozenset({BootstrapPhase.READY}),
    BootstrapPhase.NAVIGATING: frozenset({BootstrapPhase.PROBE_INTERSTITIAL}),
    BootstrapPhase.PROBE_INTERSTITIAL: frozenset(
        {BootstrapPhase.DISMISSING, BootstrapPhase.READY}
    ),
    BootstrapPhase.DISMISSING: frozenset({BootstrapPhase.READY, BootstrapPhase.DEGRADED_READY}),
    BootstrapPhase.READY: frozenset(),
    BootstrapPhase.DEGRADED_READY: frozenset(),
}


class ConfirmationSignal(str, Enum):
    """弹层已关闭的判定信号(任意一个成立即可)."""

    INTERSTITIAL_DETACHED = "interstitial_detached"
    CONSENT_COOKIE = "consent_cookie"
    CONSENT_STORAGE_KEY = "consent_storage_key"
    ANY_COOKIE = "any_cookie"


@dataclass
class ConsentDiagnostics:
    """弹层关闭失败时的诊断快照.

    Attributes:
        url: 当前页面 URL
        cookie_names: 当前 Cookie 名称
        local_storage_keys: 当前 localStorage 键
        interstitial_presence: 每个检测策略是否仍匹配到元素
        attempts: 每次尝试的失败原因
        screenshot_path: 截图路径(未截图为 None)
    """

    url: str = ""
    cookie_names: list[str] = field(default_factory=list)
    local_storage_keys: list[str] = field(default_factory=list)
    interstitial_presence: dict[str, bool] = field(default_factory=dict)
    attempts: list[str] = field(default_factory=list)
    screenshot_path: str | None = None

    @property
    def interstitial_present(self) -> bool:
        return any(self.interstitial_presence.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "cookie_names": list(self.cookie_names),
            "local_storage_keys": list(self.local_storage_keys),
            "interstitial_presence": dict(self.interstitial_presence),
            "attempts": list(self.attempts),
            "screenshot_path": self.screenshot_path,
        }

    def summary(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


@dataclass
class BootstrapResult:
    """一次引导的完整结果."""

    page: Page
    outcome: ConsentOutcome
    phases: list[BootstrapPhase]
    detection: str | None = None
    dismissed_by: str | None = None
    confirmation: ConfirmationSignal | None = None
    diagnostics: ConsentDiagnostics | None = None
    session_state: SessionState | None = None
    elapsed_ms: float = 0.0

    @property
    def degraded(self) -> bool:
        return self.outcome.degraded

    @property
    def final_phase(self) -> BootstrapPhase:
        return self.phases[-1]


class _PhaseTracker:
    """按转换表推进阶段, 非法转换属于编程错误."""

    def __init__(self, log: Any):
        self.phases: list[BootstrapPhase] = [BootstrapPhase.START]
        self._log = log

    @property
    def current(self) -> BootstrapPhase:
        return self.phases[-1]

    def advance(self, phase: BootstrapPhase) -> None:
        if phase not in _TRANSITIONS[self.current]:
            raise RuntimeError(f"非法的阶段转换: {self.current.value} -> {phase.value}")
        self._log.bind(phase=phase.value).debug(f"阶段 {self.current.value} -> {phase.value}")
        self.phases.append(phase)


def _local_storage_script(origin: OriginStorage) -> str:
    """生成在指定 origin 下写入 localStorage 的 init script."""
    entries = {entry.name: entry.value for entry in origin.local_storage}
    return (
        "(() => {\n"
        f"  if (window.location.origin !== {json.dumps(origin.origin)}) return;\n"
        f"  const entries = {json.dumps(entries, ensure_ascii=False)};\n"
        "  for (const [key, value] of Object.entries(entries)) {\n"
        "    try { window.localStorage.setItem(key, value); } catch (e) {}\n"
        "  }\n"
        "})();"
    )


class ConsentBootstrapper:
    """Cookie 同意会话引导器.

    所有入口 URL, 超时预算与定位策略都来自 ConsentConfig.

    Examples:
        >>> bootstrapper = ConsentBootstrapper()
        >>> page = await bootstrapper.bootstrap(context)
        >>> result = await bootstrapper.run(context, saved_state=state)
        >>> result.outcome
        <ConsentOutcome.ALREADY_CONSENTED: 'already_consented'>
    """

    DETECTION_CHAIN = "consent_interstitial"
    ACCEPT_CHAIN = "consent_agree"
    REJECT_CHAIN = "consent_reject"

    _STORAGE_KEYS_SCRIPT = "() => Object.keys(window.localStorage)"

    def __init__(
        self,
        config: ConsentConfig | None = None,
        retry: RetryConfig | None = None,
        *,
        debug: DebugConfig | None = None,
        resilient: ResilientLocator | None = None,
        debug_dir: str | Path | None = None,
    ):
        """初始化引导器.

        Args:
            config: 同意引导配置, 默认使用 settings.consent
            retry: 重试配置, 默认使用 settings.retry
            debug: 调试配置, 默认使用 settings.debug
            resilient: 弹性定位器, 默认新建
            debug_dir: 截图目录, 默认由 settings 解析 debug.debug_dir
        """
        if config is None or retry is None or debug is None or debug_dir is None:
            from ..config import settings

            config = config or settings.consent
            retry = retry or settings.retry
            debug = debug or settings.debug
            debug_dir = debug_dir or settings.get_absolute_path(debug.debug_dir)

        self.config = config
        self.retry = retry
        self.debug = debug
        self.debug_dir = Path(debug_dir)
        self.max_age = timedelta(hours=config.max_age_hours)
        self.wait_strategy = WaitStrategy.from_config(config, retry)
        self._cookie_re = re.compile(config.consent_cookie_pattern, re.IGNORECASE)
        self._storage_re = re.compile(config.consent_storage_pattern, re.IGNORECASE)

        self.resilient = resilient or ResilientLocator()
        self.resilient.register_chain(
            StrategyChain.from_specs(
                self.DETECTION_CHAIN, config.detection_strategies, description="Cookie 同意弹层"
            )
        )
        self.resilient.register_chain(
            StrategyChain.from_specs(
                self.ACCEPT_CHAIN, config.accept_strategies, description="同意按钮"
            )
        )
        self.resilient.register_chain(
            StrategyChain.from_specs(
                self.REJECT_CHAIN, config.reject_strategies, description="拒绝按钮"
            )
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> ConsentBootstrapper:
        """根据完整配置创建引导器."""
        return cls(
            settings.consent,
            settings.retry,
            debug=settings.debug,
            debug_dir=settings.get_absolute_path(settings.debug.debug_dir),
        )

    # ========== 对外接口 ==========

    async def bootstrap(
        self,
        context: BrowserContext,
        saved_state: SessionState | None = None,
        *,
        persist_to: SessionStateStore | str | Path | None = None,
    ) -> Page:
        """引导会话并返回可交互的页面.

        Args:
            context: 浏览器上下文(每个测试独立)
            saved_state: 之前保存的会话快照
            persist_to: 成功后保存快照的位置

        Returns:
            同意弹层不再遮挡交互的页面(降级时也会返回)

        Raises:
            FatalNavigationError: 入口页面无法访问
            ConsentDismissFailure: strict 模式下弹层未能关闭
        """
        result = await self.run(context, saved_state, persist_to=persist_to)
        return result.page

    async def run(
        self,
        context: BrowserContext,
        saved_state: SessionState | None = None,
        *,
        persist_to: SessionStateStore | str | Path | None = None,
    ) -> BootstrapResult:
        """执行引导流程并返回完整结果(参数与 bootstrap 相同)."""
        log = logger.bind(run_id=uuid.uuid4().hex, action="consent_bootstrap")
        tracker = _PhaseTracker(log)
        started = time.perf_counter()

        if saved_state is not None:
            if not saved_state.is_expired(self.max_age):
                page = await self._apply_saved_state(context, saved_state, tracker, log)
                tracker.advance(BootstrapPhase.READY)
                log.success("会话快照有效, 跳过同意弹层处理")
                return BootstrapResult(
                    page=page,
                    outcome=ConsentOutcome.ALREADY_CONSENTED,
                    phases=tracker.phases,
                    session_state=saved_state,
                    elapsed_ms=self._elapsed_ms(started),
                )
            log.info("会话快照已过期, 执行完整引导流程")

        tracker.advance(BootstrapPhase.NAVIGATING)
        page = await self._open_page(context)
        waiter = PageWaiter(page, self.wait_strategy)
        await self._navigate(page, waiter, log)
        await waiter.wait_for_network_idle(self.config.network_idle_timeout_ms)

        tracker.advance(BootstrapPhase.PROBE_INTERSTITIAL)
        hit = await self.resilient.locate(
            page, self.DETECTION_CHAIN, timeout=self.config.detection_timeout_ms
        )

        result = BootstrapResult(page=page, outcome=ConsentOutcome.NOT_PRESENT, phases=tracker.phases)

        if hit is None:
            if await self._has_consent_marker(page):
                result.outcome = ConsentOutcome.ALREADY_CONSENTED
            tracker.advance(BootstrapPhase.READY)
            log.info(f"未检测到同意弹层, outcome={result.outcome.value}")
        else:
            result.detection = hit.strategy.label
            log.info(f"检测到同意弹层: {hit.strategy.label}")
            tracker.advance(BootstrapPhase.DISMISSING)
            await self._dismiss(page, hit, waiter, result, log)

            if result.degraded:
                tracker.advance(BootstrapPhase.DEGRADED_READY)
                log.warning(
                    "同意弹层未能确认关闭, 降级继续 outcome={} diagnostics={}",
                    result.outcome.value,
                    result.diagnostics.summary() if result.diagnostics else "{}",
                )
                if self.config.strict:
                    raise ConsentDismissFailure(result.outcome.value, result.diagnostics)
            else:
                tracker.advance(BootstrapPhase.READY)
                log.success(
                    f"同意弹层已关闭: outcome={result.outcome.value}, "
                    f"by={result.dismissed_by}, signal={result.confirmation.value}"
                )

        if not result.degraded:
            result.session_state = await self._capture_state(context, persist_to, log)

        result.elapsed_ms = self._elapsed_ms(started)
        return result

    async def collect_diagnostics(
        self, page: Page, attempts: list[str] | None = None
    ) -> ConsentDiagnostics:
        """采集当前页面的诊断信息(全部为尽力而为)."""
        diagnostics = ConsentDiagnostics(url=page.url, attempts=list(attempts or []))
        diagnostics.cookie_names = await self._cookie_names(page)
        diagnostics.local_storage_keys = await self._storage_keys(page)
        diagnostics.interstitial_presence = await self.resilient.presence(
            page, self.DETECTION_CHAIN
        )

        if self.debug.screenshot_on_failure:
            target = self.debug_dir / f"consent_{datetime.now():%Y%m%d_%H%M%S_%f}.png"
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                await page.screenshot(path=str(target), full_page=True)
                diagnostics.screenshot_path = str(target)
            except Exception as exc:
                logger.debug(f"诊断截图失败: {exc}")

        return diagnostics

    # ========== 流程步骤 ==========

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return round((time.perf_counter() - started) * 1000, 2)

    @staticmethod
    async def _open_page(context: BrowserContext) -> Page:
        if context.pages:
            return context.pages[0]
        return await context.new_page()

    async def _apply_saved_state(
        self,
        context: BrowserContext,
        state: SessionState,
        tracker: _PhaseTracker,
        log: Any,
    ) -> Page:
        """快速路径: 注入 Cookie 与 localStorage, 不处理同意弹层."""
        tracker.advance(BootstrapPhase.APPLYING_STATE)

        cookies = state.playwright_cookies()
        if cookies:
            await context.add_cookies(cookies)
        for origin in state.origins:
            if origin.local_storage:
                await context.add_init_script(script=_local_storage_script(origin))
        log.debug(f"已注入会话快照: {len(cookies)} 条 Cookie, {len(state.origins)} 个 origin")

        page = await self._open_page(context)
        if self.config.navigate_on_fast_path:
            await self._navigate(page, PageWaiter(page, self.wait_strategy), log)
        return page

    async def _navigate(self, page: Page, waiter: PageWaiter, log: Any) -> None:
        """导航到入口页面, 全部尝试失败时抛出 FatalNavigationError."""
        url = self.config.entry_url
        attempts = self.retry.navigation_attempts
        last_error: Exception | None = None

        for attempt in range(attempts):
            try:
                response = await page.goto(
                    url, wait_until="domcontentloaded", timeout=self.config.navigation_timeout_ms
                )
            except PlaywrightError as exc:
                last_error = exc
                log.warning(f"导航失败({attempt + 1}/{attempts}) {url}: {exc}")
                if attempt < attempts - 1:
                    await waiter.apply_retry_backoff(attempt)
                continue

            status = getattr(response, "status", None)
            if status is not None and status >= 400:
                log.warning(f"入口页面返回 HTTP {status}, 继续执行: {url}")
            else:
                log.debug(f"已导航到入口页面: {url}")
            return

        log.error(f"入口页面无法访问, 已尝试 {attempts} 次: {url}")
        raise FatalNavigationError(url, attempts, last_error)

    def _dismiss_chains(self) -> list[tuple[str, ConsentOutcome]]:
        agree = (self.ACCEPT_CHAIN, ConsentOutcome.DISMISSED_VIA_AGREE)
        reject = (self.REJECT_CHAIN, ConsentOutcome.DISMISSED_VIA_REJECT)
        if self.config.decision == "reject":
            return [reject]
        if self.config.fallback_to_reject:
            return [agree, reject]
        return [agree]

    async def _dismiss(
        self,
        page: Page,
        detection: LocatorHit,
        waiter: PageWaiter,
        result: BootstrapResult,
        log: Any,
    ) -> None:
        """定位并点击同意(或拒绝)按钮, 然后确认弹层已关闭.

        成功时写入 outcome / dismissed_by / confirmation,
        失败时写入 TIMED_OUT(点击后未确认) 或 FAILED(无法点击)以及诊断信息.
        """
        failures: list[str] = []
        clicked_any = False
        dismiss_attempts = self.retry.dismiss_attempts

        for chain_key, success_outcome in self._dismiss_chains():
            # accept_timeout_ms 是整条策略链所有尝试共享的查找预算
            deadline = time.monotonic() + self.config.accept_timeout_ms / 1000
            for attempt in range(dismiss_attempts):
                label = f"{chain_key}#{attempt + 1}"
                remaining_ms = int((deadline - time.monotonic()) * 1000)
                if remaining_ms <= 0:
                    failures.append(f"{label}: 查找预算 {self.config.accept_timeout_ms}ms 已用尽")
                    break

                hit = await self.resilient.locate(page, chain_key, timeout=remaining_ms)
                if hit is None:
                    # 查找已耗尽剩余预算, 不再重复整轮策略
                    failures.append(f"{label}: 未找到可点击的按钮")
                    log.debug(f"关闭弹层未成功: {failures[-1]}")
                    break

                clicked = await waiter.safe_click(
                    hit.locator,
                    timeout_ms=self.config.accept_timeout_ms,
                    name=hit.strategy.label,
                )
                if not clicked:
                    failures.append(f"{label}: 点击失败 {hit.strategy.label}")
                else:
                    clicked_any = True
                    log_page_interaction("click", target=hit.strategy.label)
                    signal = await waiter.poll_until(
                        lambda p: self._check_confirmation(p, detection),
                        timeout_ms=self.config.confirmation_timeout_ms,
                    )
                    if signal is not None:
                        result.outcome = success_outcome
                        result.dismissed_by = hit.strategy.label
                        result.confirmation = signal
                        return
                    failures.append(
                        f"{label}: 已点击 {hit.strategy.label} 但 "
                        f"{self.config.confirmation_timeout_ms}ms 内未确认关闭"
                    )

                log.debug(f"关闭弹层未成功: {failures[-1]}")
                if attempt < dismiss_attempts - 1:
                    await waiter.apply_retry_backoff(attempt)

        result.outcome = ConsentOutcome.TIMED_OUT if clicked_any else ConsentOutcome.FAILED
        result.diagnostics = await self.collect_diagnostics(page, failures)

    async def _check_confirmation(
        self, page: Page, detection: LocatorHit
    ) -> ConfirmationSignal | None:
        """检查一次确认信号, 按 弹层消失 → 同意 Cookie → 同意存储键 → 任意 Cookie 的顺序."""
        if await self._interstitial_gone(page, detection):
            return ConfirmationSignal.INTERSTITIAL_DETACHED

        cookie_names = await self._cookie_names(page)
        if any(self._cookie_re.search(name) for name in cookie_names):
            return ConfirmationSignal.CONSENT_COOKIE

        storage_keys = await self._storage_keys(page)
        if any(self._storage_re.search(key) for key in storage_keys):
            return ConfirmationSignal.CONSENT_STORAGE_KEY

        if cookie_names:
            return ConfirmationSignal.ANY_COOKIE
        return None

    @staticmethod
    async def _interstitial_gone(page: Page, detection: LocatorHit) -> bool:
        locator = detection.strategy.build(page)
        try:
            if await locator.count() == 0:
                return True
            return not await locator.first.is_visible()
        except PlaywrightError as exc:
            logger.debug(f"检查弹层状态失败: {exc}")
            return False

    async def _has_consent_marker(self, page: Page) -> bool:
        if any(self._cookie_re.search(name) for name in await self._cookie_names(page)):
            return True
        return any(self._storage_re.search(key) for key in await self._storage_keys(page))

    @staticmethod
    async def _cookie_names(page: Page) -> list[str]:
        try:
            cookies = await page.context.cookies()
        except PlaywrightError as exc:
            logger.debug(f"读取 Cookie 失败: {exc}")
            return []
        return [cookie.get("name", "") for cookie in cookies]

    async def _storage_keys(self, page: Page) -> list[str]:
        try:
            keys = await page.evaluate(self._STORAGE_KEYS_SCRIPT)
        except PlaywrightError as exc:
            logger.debug(f"读取 localStorage 失败: {exc}")
            return []
        return [str(key) for key in keys or []]

    async def _capture_state(
        self,
        context: BrowserContext,
        persist_to: SessionStateStore | str | Path | None,
        log: Any,
    ) -> SessionState | None:
        """采集会话快照并按需保存."""
        try:
            state = await SessionState.capture(context)
        except PlaywrightError as exc:
            log.warning(f"采集会话快照失败: {exc}")
            return None

        if persist_to is not None:
            store = (
                persist_to
                if isinstance(persist_to, SessionStateStore)
                else SessionStateStore(persist_to, self.config.max_age_hours)
            )
            store.save(state)
        return state
