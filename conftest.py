"""
@PURPOSE: Pytest 根配置, 注册标记, 初始化日志并加载会话引导 fixtures
@OUTLINE:
  - pytest_configure(): 注册标记并配置日志
  - pytest_collection_modifyitems(): 未开启 RUN_E2E 时跳过集成测试
  - pytest_plugins: catawiki_e2e.fixtures
@DEPENDENCIES:
  - 外部: pytest, pytest-asyncio
  - 内部: catawiki_e2e.fixtures, catawiki_e2e.utils.logger_setup
"""

import os

import pytest

# pytest-asyncio 通过 entry point 自动加载, asyncio_mode 在 pyproject.toml 中设为 auto
pytest_plugins = ("catawiki_e2e.fixtures",)


def pytest_configure(config):
    """配置pytest."""
    config.addinivalue_line("markers", "asyncio: 标记异步测试")
    config.addinivalue_line("markers", "integration: 标记集成测试(需要真实浏览器与网络)")
    config.addinivalue_line("markers", "slow: 标记慢速测试")

    from catawiki_e2e.utils.logger_setup import setup_logger

    setup_logger()


def pytest_collection_modifyitems(config, items):
    """未设置 RUN_E2E=1 时跳过 integration 测试."""
    if os.getenv("RUN_E2E") == "1":
        return

    skip_live = pytest.mark.skip(reason="设置 RUN_E2E=1 以运行集成测试")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_live)
