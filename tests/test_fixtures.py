"""
@PURPOSE: 测试 pytest fixtures 中的引导结果记录
@OUTLINE:
  - TestRecordConsentResult: 结果挂载到测试节点, 降级时附加诊断信息
@DEPENDENCIES:
  - 外部: pytest
  - 内部: catawiki_e2e.fixtures, catawiki_e2e.browser.consent_bootstrapper
"""

import json
from types import SimpleNamespace

from catawiki_e2e.browser.consent_bootstrapper import (
    BootstrapPhase,
    BootstrapResult,
    ConsentDiagnostics,
    ConsentOutcome,
)
from catawiki_e2e.fixtures import record_consent_result
from tests.mocks import MockPage


def make_node() -> SimpleNamespace:
    return SimpleNamespace(name="test_homepage", user_properties=[])


class TestRecordConsentResult:
    """测试引导结果记录"""

    def test_ready_result_attached_to_node(self):
        node = make_node()
        result = BootstrapResult(
            page=MockPage(),
            outcome=ConsentOutcome.DISMISSED_VIA_AGREE,
            phases=[BootstrapPhase.READY],
        )

        record_consent_result(node, result)

        assert node.consent_result is result
        assert node.user_properties == []

    def test_degraded_diagnostics_attached_to_report(self):
        """降级时诊断快照写入 user_properties"""
        node = make_node()
        diagnostics = ConsentDiagnostics(
            url="https://www.catawiki.com/en",
            cookie_names=["session_id"],
            attempts=["agree#1: 未找到可点击的按钮"],
        )
        result = BootstrapResult(
            page=MockPage(),
            outcome=ConsentOutcome.FAILED,
            phases=[BootstrapPhase.DEGRADED_READY],
            diagnostics=diagnostics,
        )

        record_consent_result(node, result)

        assert len(node.user_properties) == 1
        name, value = node.user_properties[0]
        assert name == "consent_diagnostics"
        data = json.loads(value)
        assert data["url"] == "https://www.catawiki.com/en"
        assert data["cookie_names"] == ["session_id"]
