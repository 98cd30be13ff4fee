"""
@PURPOSE: 弹性定位器 - 按优先级依次尝试多个定位策略, 第一个命中的策略获胜
@OUTLINE:
  - @dataclass LocatorStrategy: 单个定位策略(css / role / test_id / text)
  - @dataclass StrategyChain: 策略链配置
  - @dataclass LocatorHit: 命中结果(定位器 + 策略 + 序号)
  - @dataclass SelectorHitMetrics: 命中统计
  - class ResilientLocator: 弹性定位器
    - async def locate(): 按优先级尝试定位元素
    - async def presence(): 不等待地统计每个策略是否存在
    - def register_chain(): 注册策略链
    - def get_metrics(): 获取命中统计
@GOTCHAS:
  - 策略链应按从精确到宽泛排序
  - 未开启 allow_multiple 的策略匹配到多个元素时视为歧义, 直接跳到下一个策略
  - 总超时按策略数量平均分配, 单项不低于 MIN_TIMEOUT_PER_SELECTOR_MS
@DEPENDENCIES:
  - 外部: playwright, loguru
  - 内部: catawiki_e2e.errors, catawiki_e2e.config
"""

from __future__ import annotations

import re
import time
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..errors import DetectionAmbiguity

if TYPE_CHECKING:
    from playwright.async_api import Frame, Locator, Page

    from ..config.settings import LocatorSpec

_STRICT_MODE_MARKER = "strict mode violation"
_COUNT_PATTERN = re.compile(r"resolved to (\d+) elements")


@dataclass(frozen=True)
class LocatorStrategy:
    """单个定位策略.

    Attributes:
        kind: 定位方式 css / role / test_id / text
        value: 选择器、ARIA 角色、test id 或文本
        name: 可访问名称(role 使用)
        name_pattern: 可访问名称正则, 忽略大小写(role 使用)
        exact: 名称或文本是否精确匹配
        allow_multiple: 匹配多个元素时取第一个
        description: 日志描述
    """

    kind: str
    value: str
    name: str | None = None
    name_pattern: str | None = None
    exact: bool = False
    allow_multiple: bool = False
    description: str = ""

    @classmethod
    def from_spec(cls, spec: LocatorSpec | Mapping[str, Any]) -> LocatorStrategy:
        """从配置项(LocatorSpec 或字典)构建策略."""
        data = dict(spec) if isinstance(spec, Mapping) else spec.model_dump()
        return cls(
            kind=data.get("kind", "css"),
            value=data["value"],
            name=data.get("name"),
            name_pattern=data.get("name_pattern"),
            exact=bool(data.get("exact", False)),
            allow_multiple=bool(data.get("allow_multiple", False)),
            description=data.get("description", ""),
        )

    @property
    def label(self) -> str:
        """日志中使用的策略标签."""
        if self.kind == "role":
            accessible = self.name if self.name is not None else f"/{self.name_pattern or ''}/i"
            return f"role={self.value}[name={accessible}]"
        return f"{self.kind}={self.value}"

    def build(self, page: Page | Frame) -> Locator:
        """构建原始定位器(不做 first 处理)."""
        if self.kind == "css":
            return page.locator(self.value)
        if self.kind == "role":
            if self.name is not None:
                return page.get_by_role(self.value, name=self.name, exact=self.exact)
            if self.name_pattern:
                pattern = re.compile(self.name_pattern, re.IGNORECASE)
                return page.get_by_role(self.value, name=pattern)
            return page.get_by_role(self.value)
        if self.kind == "test_id":
            return page.get_by_test_id(self.value)
        if self.kind == "text":
            return page.get_by_text(self.value, exact=self.exact)
        raise ValueError(f"不支持的定位方式: {self.kind}")

    def resolve(self, page: Page | Frame) -> Locator:
        """构建用于等待和交互的定位器."""
        locator = self.build(page)
        return locator.first if self.allow_multiple else locator


@dataclass
class StrategyChain:
    """策略链 - 按优先级依次尝试.

    Attributes:
        key: 唯一标识符
        strategies: 按优先级排列的策略
        description: 用于日志的描述
        wait_state: 等待元素的状态 (visible, attached, hidden, detached)
        timeout_per_strategy: 未指定总超时时每个策略的超时(毫秒)
    """

    key: str
    strategies: list[LocatorStrategy] = field(default_factory=list)
    description: str = ""
    wait_state: str = "visible"
    timeout_per_strategy: int = 2000

    @classmethod
    def from_specs(
        cls,
        key: str,
        specs: Iterable[LocatorSpec | Mapping[str, Any]],
        *,
        description: str = "",
        wait_state: str = "visible",
    ) -> StrategyChain:
        """由配置列表构建策略链."""
        return cls(
            key=key,
            strategies=[LocatorStrategy.from_spec(spec) for spec in specs],
            description=description or key,
            wait_state=wait_state,
        )


@dataclass
class LocatorHit:
    """策略链命中结果."""

    locator: Locator
    strategy: LocatorStrategy
    index: int
    elapsed_ms: float = 0.0


@dataclass
class SelectorHitMetrics:
    """策略命中统计.

    用于分析哪些策略最有效, 指导策略顺序优化.
    """

    chain_key: str
    hits: dict[int, int] = field(default_factory=lambda: defaultdict(int))
    misses: int = 0
    ambiguous: int = 0
    total_time_ms: float = 0.0

    def record_hit(self, strategy_index: int, time_ms: float) -> None:
        """记录命中"""
        self.hits[strategy_index] += 1
        self.total_time_ms += time_ms

    def record_miss(self, time_ms: float) -> None:
        """记录未命中"""
        self.misses += 1
        self.total_time_ms += time_ms

    @property
    def total_attempts(self) -> int:
        """总尝试次数"""
        return sum(self.hits.values()) + self.misses

    @property
    def success_rate(self) -> float:
        """成功率"""
        total = self.total_attempts
        if total == 0:
            return 0.0
        return sum(self.hits.values()) / total

    @property
    def primary_hit_rate(self) -> float:
        """首选策略命中率"""
        total = self.total_attempts
        if total == 0:
            return 0.0
        return self.hits.get(0, 0) / total

    def to_dict(self) -> dict[str, Any]:
        """转换为字典"""
        return {
            "chain_key": self.chain_key,
            "hits_by_index": dict(self.hits),
            "misses": self.misses,
            "ambiguous": self.ambiguous,
            "total_attempts": self.total_attempts,
            "success_rate": round(self.success_rate, 3),
            "primary_hit_rate": round(self.primary_hit_rate, 3),
            "avg_time_ms": round(self.total_time_ms / max(self.total_attempts, 1), 2),
        }


class ResilientLocator:
    """弹性定位器 - 自动降级定位策略.

    Examples:
        >>> resilient = ResilientLocator([StrategyChain.from_specs("agree", specs)])
        >>> hit = await resilient.locate(page, "agree", timeout=5000)
        >>> if hit:
        ...     await hit.locator.click()
    """

    ALLOWED_WAIT_STATES = {"attached", "detached", "visible", "hidden"}
    MIN_TIMEOUT_PER_SELECTOR_MS = 120

    def __init__(self, chains: Iterable[StrategyChain] | None = None):
        """初始化弹性定位器"""
        self._chains: dict[str, StrategyChain] = {}
        self._metrics: dict[str, SelectorHitMetrics] = {}
        for chain in chains or ():
            self.register_chain(chain)

    @classmethod
    def _normalize_wait_state(cls, requested: str | None, default_state: str) -> str:
        """确保等待状态合法, 非法值回退到可见状态."""
        candidate = requested or default_state
        if candidate in cls.ALLOWED_WAIT_STATES:
            return candidate
        logger.debug(f"非法 wait_state={candidate!r}, 回退为 visible")
        return "visible"

    @classmethod
    def _compute_timeout_per_selector(cls, total_timeout: int, selector_count: int) -> int:
        """计算单个策略的等待时间, 避免过小导致瞬时超时."""
        if selector_count <= 0:
            return total_timeout
        per_selector = max(total_timeout // selector_count, 1)
        if per_selector < cls.MIN_TIMEOUT_PER_SELECTOR_MS:
            logger.debug(
                "分配给单个策略的超时过低({}ms), 提升至安全下限 {}ms",
                per_selector,
                cls.MIN_TIMEOUT_PER_SELECTOR_MS,
            )
            per_selector = min(cls.MIN_TIMEOUT_PER_SELECTOR_MS, total_timeout)
        return per_selector

    @staticmethod
    def _is_target_closed(page: Page | Frame) -> bool:
        """检测 Page/Frame 是否已关闭或分离."""
        try:
            if hasattr(page, "is_closed") and callable(page.is_closed) and page.is_closed():
                return True
            if hasattr(page, "is_detached") and callable(page.is_detached) and page.is_detached():
                return True
        except Exception:
            return False
        return False

    @staticmethod
    def _log_failure_context(chain: StrategyChain, timeout_per: int, failures: list[str]) -> None:
        """输出失败上下文, 便于调试."""
        if not failures:
            logger.info(f"所有策略均未命中: {chain.description}")
            return
        logger.info(
            "所有策略均未命中: {} | 单项超时: {}ms | 尝试: {}",
            chain.description,
            timeout_per,
            "; ".join(failures[:5]),
        )

    def register_chain(self, chain: StrategyChain) -> None:
        """注册策略链

        Args:
            chain: 策略链配置
        """
        self._chains[chain.key] = chain
        logger.debug(f"已注册策略链: {chain.key} ({len(chain.strategies)} 个策略)")

    def get_chain(self, key: str) -> StrategyChain | None:
        """获取策略链, 不存在则返回 None"""
        return self._chains.get(key)

    async def probe(
        self,
        page: Page | Frame,
        strategy: LocatorStrategy,
        *,
        state: str,
        timeout: int,
    ) -> Locator:
        """等待单个策略到达指定状态.

        Raises:
            DetectionAmbiguity: 非 allow_multiple 策略匹配到多个元素
            PlaywrightTimeoutError: 超时内未到达目标状态
        """
        locator = strategy.resolve(page)
        try:
            await locator.wait_for(state=state, timeout=timeout)
        except PlaywrightTimeoutError:
            raise
        except PlaywrightError as exc:
            message = str(exc)
            if _STRICT_MODE_MARKER not in message:
                raise
            match = _COUNT_PATTERN.search(message)
            count = int(match.group(1)) if match else 2
            raise DetectionAmbiguity(strategy.label, count) from exc
        return locator

    async def locate(
        self,
        page: Page | Frame,
        key: str,
        *,
        timeout: int | None = None,
        wait_state: str | None = None,
    ) -> LocatorHit | None:
        """按优先级尝试定位元素

        Args:
            page: Playwright Page 或 Frame 对象
            key: 策略链的键
            timeout: 总超时时间(毫秒), 默认使用链配置
            wait_state: 等待状态, 默认使用链配置

        Returns:
            命中结果, 所有策略失败则返回 None
        """
        chain = self._chains.get(key)
        if chain is None:
            logger.error(f"未知的策略链: {key}")
            return None

        count = len(chain.strategies)
        effective_timeout = (
            timeout if timeout is not None else chain.timeout_per_strategy * max(count, 1)
        )
        effective_state = self._normalize_wait_state(wait_state, chain.wait_state)
        timeout_per = self._compute_timeout_per_selector(effective_timeout, count)

        start_time = time.perf_counter()
        metrics = self._metrics.setdefault(key, SelectorHitMetrics(chain_key=key))

        if self._is_target_closed(page):
            logger.error("页面已关闭/分离, 无法定位 {}", chain.description)
            return None

        failures: list[str] = []
        for idx, strategy in enumerate(chain.strategies):
            try:
                locator = await self.probe(
                    page, strategy, state=effective_state, timeout=timeout_per
                )
            except DetectionAmbiguity as exc:
                metrics.ambiguous += 1
                failures.append(f"#{idx} ambiguous({exc.count}) {strategy.label}")
                logger.debug(f"策略歧义 [{idx}] {chain.description}: {exc}")
                continue
            except PlaywrightTimeoutError:
                failures.append(f"#{idx} timeout {strategy.label}")
                logger.debug(f"策略超时 [{idx}] {chain.description}: {strategy.label}")
                continue
            except Exception as exc:
                failures.append(f"#{idx} {type(exc).__name__}: {exc}")
                logger.debug(f"策略异常 [{idx}] {chain.description}: {exc}")
                continue

            elapsed_ms = (time.perf_counter() - start_time) * 1000
            metrics.record_hit(idx, elapsed_ms)
            if idx > 0:
                logger.warning(f"使用降级策略[{idx}] 定位 {chain.description}: {strategy.label}")
            else:
                logger.debug(f"定位成功 {chain.description}: {strategy.label}")
            return LocatorHit(locator=locator, strategy=strategy, index=idx, elapsed_ms=elapsed_ms)

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        metrics.record_miss(elapsed_ms)
        self._log_failure_context(chain, timeout_per, failures)
        return None

    async def presence(self, page: Page | Frame, key: str) -> dict[str, bool]:
        """不等待地检查每个策略当前是否匹配到元素(用于诊断)."""
        chain = self._chains.get(key)
        if chain is None:
            return {}

        flags: dict[str, bool] = {}
        for strategy in chain.strategies:
            try:
                flags[strategy.label] = await strategy.build(page).count() > 0
            except Exception as exc:
                logger.debug(f"统计元素数量失败 {strategy.label}: {exc}")
                flags[strategy.label] = False
        return flags

    def get_metrics(self, key: str | None = None) -> dict[str, Any]:
        """获取命中统计

        Args:
            key: 策略链的键, 为 None 时返回全部

        Returns:
            统计数据
        """
        if key is not None:
            metrics = self._metrics.get(key)
            return metrics.to_dict() if metrics else {}
        return {chain_key: metrics.to_dict() for chain_key, metrics in self._metrics.items()}

    def reset_metrics(self) -> None:
        """清空命中统计"""
        self._metrics.clear()
