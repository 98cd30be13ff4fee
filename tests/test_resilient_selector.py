"""
@PURPOSE: 测试弹性定位器
@OUTLINE:
  - TestLocatorStrategy: 单个策略的构建与标签
  - TestSelectorHitMetrics: 命中统计
  - TestResilientLocator: 按优先级定位, 歧义跳过, 超时分配
@DEPENDENCIES:
  - 外部: pytest, pytest-asyncio
  - 内部: catawiki_e2e.browser.resilient_selector, tests.mocks
"""

import re
from unittest.mock import MagicMock

import pytest

from catawiki_e2e.browser.resilient_selector import (
    LocatorStrategy,
    ResilientLocator,
    SelectorHitMetrics,
    StrategyChain,
)
from catawiki_e2e.config import LocatorSpec
from catawiki_e2e.errors import DetectionAmbiguity
from tests.mocks import MockLocator, MockPage, role_key


def make_chain(*strategies: LocatorStrategy, key: str = "target") -> StrategyChain:
    return StrategyChain(key=key, strategies=list(strategies), description="测试元素")


class TestLocatorStrategy:
    """测试 LocatorStrategy"""

    def test_from_spec(self):
        """从 LocatorSpec 构建"""
        spec = LocatorSpec(kind="role", value="button", name="Agree", exact=True)

        strategy = LocatorStrategy.from_spec(spec)

        assert strategy.kind == "role"
        assert strategy.name == "Agree"
        assert strategy.exact is True
        assert strategy.allow_multiple is False

    def test_from_mapping_defaults_to_css(self):
        strategy = LocatorStrategy.from_spec({"value": "#agree"})

        assert strategy.kind == "css"
        assert strategy.label == "css=#agree"

    def test_role_labels(self):
        exact = LocatorStrategy(kind="role", value="button", name="Agree")
        fuzzy = LocatorStrategy(kind="role", value="button", name_pattern="agree")

        assert exact.label == "role=button[name=Agree]"
        assert fuzzy.label == "role=button[name=/agree/i]"

    def test_build_role_with_pattern(self):
        """name_pattern 编译为忽略大小写的正则"""
        page = MagicMock()
        strategy = LocatorStrategy(kind="role", value="button", name_pattern="^agree")

        strategy.build(page)

        _, kwargs = page.get_by_role.call_args
        assert isinstance(kwargs["name"], re.Pattern)
        assert kwargs["name"].flags & re.IGNORECASE

    def test_build_role_exact(self):
        page = MagicMock()

        LocatorStrategy(kind="role", value="button", name="Agree", exact=True).build(page)

        page.get_by_role.assert_called_once_with("button", name="Agree", exact=True)

    def test_build_test_id_and_text(self):
        page = MagicMock()

        LocatorStrategy(kind="test_id", value="cookie-bar").build(page)
        LocatorStrategy(kind="text", value="Agree", exact=True).build(page)

        page.get_by_test_id.assert_called_once_with("cookie-bar")
        page.get_by_text.assert_called_once_with("Agree", exact=True)

    def test_build_unknown_kind(self):
        with pytest.raises(ValueError):
            LocatorStrategy(kind="xpath", value="//button").build(MagicMock())

    def test_resolve_first_when_multiple_allowed(self):
        page = MagicMock()
        strategy = LocatorStrategy(kind="css", value="button", allow_multiple=True)

        locator = strategy.resolve(page)

        assert locator is page.locator.return_value.first


class TestSelectorHitMetrics:
    """测试命中统计"""

    def test_rates(self):
        metrics = SelectorHitMetrics(chain_key="test")

        metrics.record_hit(0, 100.0)
        metrics.record_hit(1, 100.0)
        metrics.record_miss(100.0)

        assert metrics.total_attempts == 3
        assert metrics.success_rate == pytest.approx(2 / 3, rel=0.01)
        assert metrics.primary_hit_rate == pytest.approx(1 / 3, rel=0.01)

    def test_to_dict(self):
        metrics = SelectorHitMetrics(chain_key="test")
        metrics.record_hit(0, 50.0)
        metrics.ambiguous += 1

        data = metrics.to_dict()

        assert data["chain_key"] == "test"
        assert data["hits_by_index"] == {0: 1}
        assert data["ambiguous"] == 1
        assert data["avg_time_ms"] == 50.0

    def test_empty_rates(self):
        metrics = SelectorHitMetrics(chain_key="test")

        assert metrics.success_rate == 0.0
        assert metrics.primary_hit_rate == 0.0


class TestResilientLocator:
    """测试 ResilientLocator"""

    def test_compute_timeout_per_selector(self):
        """总预算平均分配, 不低于下限"""
        assert ResilientLocator._compute_timeout_per_selector(4000, 4) == 1000
        assert ResilientLocator._compute_timeout_per_selector(300, 4) == 120
        assert ResilientLocator._compute_timeout_per_selector(50, 4) == 50
        assert ResilientLocator._compute_timeout_per_selector(500, 0) == 500

    def test_normalize_wait_state(self):
        assert ResilientLocator._normalize_wait_state("hidden", "visible") == "hidden"
        assert ResilientLocator._normalize_wait_state(None, "attached") == "attached"
        assert ResilientLocator._normalize_wait_state("bogus", "visible") == "visible"

    def test_register_and_get_chain(self):
        resilient = ResilientLocator()
        chain = make_chain(LocatorStrategy(kind="css", value="#a"))

        resilient.register_chain(chain)

        assert resilient.get_chain("target") is chain
        assert resilient.get_chain("missing") is None

    @pytest.mark.asyncio
    async def test_first_strategy_wins(self):
        """第一个命中的策略获胜, 后续策略不再查询"""
        page = MockPage()
        page.set_mock_locator("#primary", MockLocator())
        page.set_mock_locator("#fallback", MockLocator())
        resilient = ResilientLocator(
            [
                make_chain(
                    LocatorStrategy(kind="css", value="#primary"),
                    LocatorStrategy(kind="css", value="#fallback"),
                )
            ]
        )

        hit = await resilient.locate(page, "target", timeout=1000)

        assert hit.index == 0
        assert hit.strategy.value == "#primary"
        assert page.lookups == ["#primary"]

    @pytest.mark.asyncio
    async def test_falls_back_to_next_strategy(self):
        page = MockPage()
        page.set_mock_locator(role_key("button", "Agree"), MockLocator(text="Agree"))
        resilient = ResilientLocator(
            [
                make_chain(
                    LocatorStrategy(kind="css", value="#gone"),
                    LocatorStrategy(kind="role", value="button", name="Agree"),
                )
            ]
        )

        hit = await resilient.locate(page, "target", timeout=1000)

        assert hit.index == 1
        assert resilient.get_metrics("target")["hits_by_index"] == {1: 1}

    @pytest.mark.asyncio
    async def test_ambiguous_strategy_skipped(self):
        """匹配多个元素且不允许多个时跳到下一个策略"""
        page = MockPage()
        page.set_mock_locator("button", MockLocator(count=3))
        page.set_mock_locator("#agree", MockLocator())
        resilient = ResilientLocator(
            [
                make_chain(
                    LocatorStrategy(kind="css", value="button"),
                    LocatorStrategy(kind="css", value="#agree"),
                )
            ]
        )

        hit = await resilient.locate(page, "target", timeout=1000)

        assert hit.strategy.value == "#agree"
        assert resilient.get_metrics("target")["ambiguous"] == 1

    @pytest.mark.asyncio
    async def test_allow_multiple_uses_first(self):
        page = MockPage()
        page.set_mock_locator("button", MockLocator(count=3))
        resilient = ResilientLocator(
            [make_chain(LocatorStrategy(kind="css", value="button", allow_multiple=True))]
        )

        hit = await resilient.locate(page, "target", timeout=1000)

        assert hit is not None
        assert await hit.locator.count() == 1

    @pytest.mark.asyncio
    async def test_probe_raises_ambiguity(self):
        page = MockPage()
        page.set_mock_locator("button", MockLocator(count=2))

        with pytest.raises(DetectionAmbiguity) as exc_info:
            await ResilientLocator().probe(
                page, LocatorStrategy(kind="css", value="button"), state="visible", timeout=100
            )

        assert exc_info.value.count == 2
        assert exc_info.value.strategy == "css=button"

    @pytest.mark.asyncio
    async def test_all_miss_returns_none(self):
        """所有策略都未命中时返回 None 并记录未命中"""
        page = MockPage()
        resilient = ResilientLocator(
            [
                make_chain(
                    LocatorStrategy(kind="css", value="#a"),
                    LocatorStrategy(kind="css", value="#b"),
                )
            ]
        )

        hit = await resilient.locate(page, "target", timeout=1000)

        assert hit is None
        assert resilient.get_metrics("target")["misses"] == 1

    @pytest.mark.asyncio
    async def test_hidden_element_is_a_miss(self):
        page = MockPage()
        page.set_mock_locator("#a", MockLocator(is_visible=False))
        resilient = ResilientLocator([make_chain(LocatorStrategy(kind="css", value="#a"))])

        assert await resilient.locate(page, "target", timeout=500) is None

    @pytest.mark.asyncio
    async def test_attached_state(self):
        """wait_state=attached 时不可见元素也算命中"""
        page = MockPage()
        page.set_mock_locator("#a", MockLocator(is_visible=False))
        resilient = ResilientLocator([make_chain(LocatorStrategy(kind="css", value="#a"))])

        hit = await resilient.locate(page, "target", timeout=500, wait_state="attached")

        assert hit is not None
        assert page._locators["#a"].wait_calls[-1]["state"] == "attached"

    @pytest.mark.asyncio
    async def test_timeout_split_across_strategies(self):
        page = MockPage()
        first = MockLocator(is_visible=False)
        page.set_mock_locator("#a", first)
        resilient = ResilientLocator(
            [
                make_chain(
                    LocatorStrategy(kind="css", value="#a"),
                    LocatorStrategy(kind="css", value="#b"),
                )
            ]
        )

        await resilient.locate(page, "target", timeout=4000)

        assert first.wait_calls[0]["timeout"] == 2000

    @pytest.mark.asyncio
    async def test_unknown_chain(self):
        assert await ResilientLocator().locate(MockPage(), "missing") is None

    @pytest.mark.asyncio
    async def test_presence(self):
        """presence 不等待, 只统计每个策略是否存在"""
        page = MockPage()
        page.set_mock_locator("#a", MockLocator())
        resilient = ResilientLocator(
            [
                make_chain(
                    LocatorStrategy(kind="css", value="#a"),
                    LocatorStrategy(kind="css", value="#b"),
                )
            ]
        )

        flags = await resilient.presence(page, "target")

        assert flags == {"css=#a": True, "css=#b": False}
        assert page._locators["#a"].wait_calls == []

    @pytest.mark.asyncio
    async def test_reset_metrics(self):
        page = MockPage()
        resilient = ResilientLocator([make_chain(LocatorStrategy(kind="css", value="#a"))])
        await resilient.locate(page, "target", timeout=200)

        resilient.reset_metrics()

        assert resilient.get_metrics() == {}
