"""
@PURPOSE: pytest fixtures, 向测试用例暴露唯一的能力: 一个已处理 Cookie 同意弹层的页面
@OUTLINE:
  - record_consent_result(): 记录引导结果, 降级时附加诊断信息
  - bootstrap_settings: 全局配置(session)
  - session_state_store: 会话快照文件(session)
  - saved_session_state: 会话内的快照复用策略, 结束时最多写回一次(session)
  - browser_manager: 已启动的浏览器(每个测试)
  - browser_context: 测试独立的浏览器上下文
  - consented_page: 已处理同意弹层的页面
@GOTCHAS:
  - 需要在根 conftest.py 的 pytest_plugins 中注册 "catawiki_e2e.fixtures"
  - 异步 fixture 依赖 pytest-asyncio 的 auto 模式
  - 降级引导(弹层未关闭)仍然返回页面, 诊断信息以 WARNING 记录并附加到测试报告
@DEPENDENCIES:
  - 外部: pytest, pytest-asyncio, loguru
  - 内部: catawiki_e2e.browser, catawiki_e2e.config
"""

from collections.abc import AsyncIterator, Iterator

import pytest
from loguru import logger
from playwright.async_api import BrowserContext, Page

from .browser.browser_manager import BrowserManager
from .browser.consent_bootstrapper import BootstrapResult, ConsentBootstrapper
from .browser.session_state import SessionSnapshot, SessionStateStore
from .config import Settings, settings
from .utils.logger_setup import get_logger_with_context
from .utils.network_logger import NetworkLogger


def record_consent_result(node: pytest.Item, result: BootstrapResult) -> None:
    """把引导结果挂到测试节点上, 降级时诊断信息写入测试报告的 user_properties."""
    node.consent_result = result
    if result.degraded and result.diagnostics is not None:
        node.user_properties.append(("consent_diagnostics", result.diagnostics.summary()))
    get_logger_with_context(test=node.name).info(
        f"会话引导完成: outcome={result.outcome.value}, elapsed={result.elapsed_ms}ms"
    )


@pytest.fixture(scope="session")
def bootstrap_settings() -> Settings:
    """全局配置, 测试可通过覆盖此 fixture 注入自定义配置."""
    return settings


@pytest.fixture(scope="session")
def session_state_store(bootstrap_settings: Settings) -> SessionStateStore:
    return SessionStateStore.from_settings(bootstrap_settings)


@pytest.fixture(scope="session")
def saved_session_state(
    bootstrap_settings: Settings, session_state_store: SessionStateStore
) -> Iterator[SessionSnapshot]:
    """会话开始时加载快照, 会话结束时按需写回一次."""
    snapshot = SessionSnapshot(
        session_state_store, persist=bootstrap_settings.consent.persist_session
    )
    yield snapshot

    saved = snapshot.finalize()
    if saved:
        logger.info(f"已写回会话快照: {saved}")


@pytest.fixture
async def browser_manager(bootstrap_settings: Settings) -> AsyncIterator[BrowserManager]:
    manager = BrowserManager(bootstrap_settings.browser)
    await manager.start()
    yield manager
    await manager.close()


@pytest.fixture
async def browser_context(browser_manager: BrowserManager) -> AsyncIterator[BrowserContext]:
    """每个测试独立的浏览器上下文."""
    context = await browser_manager.new_context()
    yield context
    await browser_manager.close_context(context)


@pytest.fixture
async def consented_page(
    bootstrap_settings: Settings,
    browser_context: BrowserContext,
    saved_session_state: SessionSnapshot,
    request: pytest.FixtureRequest,
) -> AsyncIterator[Page]:
    """已处理 Cookie 同意弹层的页面.

    有效快照存在时直接注入, 否则执行完整引导; 引导结果写入
    request.node.consent_result 便于失败时排查.
    """
    network = None
    if bootstrap_settings.logging.log_network:
        network = NetworkLogger()
        network.attach(browser_context)

    bootstrapper = ConsentBootstrapper.from_settings(bootstrap_settings)
    result = await bootstrapper.run(browser_context, saved_session_state.state)
    saved_session_state.offer(result.session_state)
    record_consent_result(request.node, result)

    yield result.page

    if network is not None:
        network.detach()
