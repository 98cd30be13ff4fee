"""
@PURPOSE: 测试网络日志记录器
@OUTLINE:
  - TestNetworkLogger: 订阅 response 事件, 过滤与失败记录
@DEPENDENCIES:
  - 外部: pytest, loguru
  - 内部: catawiki_e2e.utils.network_logger
"""

from types import SimpleNamespace

from loguru import logger

from catawiki_e2e.utils.network_logger import NetworkLogger, log_page_interaction
from tests.mocks import MockPage


def fake_response(url: str, status: int = 200, resource_type: str = "xhr", method: str = "GET"):
    request = SimpleNamespace(resource_type=resource_type, method=method)
    return SimpleNamespace(url=url, status=status, request=request)


class TestNetworkLogger:
    """测试 NetworkLogger"""

    def test_records_xhr(self):
        page = MockPage()
        network = NetworkLogger()
        network.attach(page)

        page.emit("response", fake_response("https://www.catawiki.com/buyer/api/v1/search/suggest"))

        assert len(network.entries) == 1
        assert network.entries[0].status == 200

    def test_ignores_static_resources(self):
        page = MockPage()
        network = NetworkLogger()
        network.attach(page)

        page.emit("response", fake_response("https://cdn/app.js", resource_type="script"))

        assert len(network.entries) == 0

    def test_url_pattern(self):
        page = MockPage()
        network = NetworkLogger(url_pattern=r"/buyer/api/")
        network.attach(page)

        page.emit("response", fake_response("https://www.catawiki.com/other"))
        page.emit("response", fake_response("https://www.catawiki.com/buyer/api/v1/x"))

        assert [entry.url for entry in network.entries] == ["https://www.catawiki.com/buyer/api/v1/x"]

    def test_max_entries(self):
        page = MockPage()
        network = NetworkLogger(max_entries=2)
        network.attach(page)

        for index in range(5):
            page.emit("response", fake_response(f"https://x/{index}"))

        assert [entry.url for entry in network.entries] == ["https://x/3", "https://x/4"]

    def test_failures_logged_as_warning(self):
        """状态码 >= 400 以 WARNING 输出"""
        messages = []
        sink_id = logger.add(lambda message: messages.append(message.record), level="DEBUG")
        page = MockPage()
        network = NetworkLogger()
        network.attach(page)

        try:
            page.emit("response", fake_response("https://x/ok"))
            page.emit("response", fake_response("https://x/fail", status=500))
        finally:
            logger.remove(sink_id)

        assert [entry.url for entry in network.failures()] == ["https://x/fail"]
        levels = {record["message"]: record["level"].name for record in messages}
        assert levels["[API] 500 https://x/fail"] == "WARNING"
        assert levels["[API] 200 https://x/ok"] == "DEBUG"

    def test_attach_once_and_detach(self):
        page = MockPage()
        network = NetworkLogger()
        network.attach(page)
        network.attach(page)

        assert len(page._listeners["response"]) == 1

        network.detach()
        page.emit("response", fake_response("https://x/after"))

        assert len(network.entries) == 0
        assert page._listeners["response"] == []

    def test_log_page_interaction(self):
        messages = []
        sink_id = logger.add(lambda message: messages.append(message.record["message"]))
        try:
            log_page_interaction("click", target="Agree")
            log_page_interaction("scroll")
        finally:
            logger.remove(sink_id)

        assert "[UI] click (target=Agree)" in messages
        assert "[UI] scroll" in messages
