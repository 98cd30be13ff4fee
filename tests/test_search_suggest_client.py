"""
@PURPOSE: 测试搜索建议 API 客户端(使用 httpx.MockTransport, 不访问网络)
@OUTLINE:
  - TestSuggestModels: 响应契约模型
  - TestSearchSuggestClient: 请求参数, Cookie 传递与契约错误
@DEPENDENCIES:
  - 外部: pytest, pytest-asyncio, httpx
  - 内部: catawiki_e2e.api.search_suggest
"""

import httpx
import pytest

from catawiki_e2e.api.search_suggest import SearchSuggestClient, SuggestResponse
from catawiki_e2e.browser.session_state import SessionState
from catawiki_e2e.errors import SuggestContractError
from tests.mocks import MockBrowserContext
from tests.mocks.consent_mock import CONSENT_COOKIE

SAMPLE_PAYLOAD = {
    "query_terms": [
        {
            "text": "rolex",
            "highlighted": "<em>rolex</em>",
            "entity": {"type": "query_term", "value": None},
        },
        {
            "text": "rolex submariner",
            "highlighted": "<em>rolex</em> submariner",
            "entity": {"type": "query_term", "value": None},
        },
    ],
    "auctions": [],
    "categories": [{"id": 333, "title": "Watches"}],
}


def make_transport(requests: list, status: int = 200, payload=SAMPLE_PAYLOAD, text=None):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if text is not None:
            return httpx.Response(status, text=text)
        return httpx.Response(status, json=payload)

    return httpx.MockTransport(handler)


class TestSuggestModels:
    """测试响应契约模型"""

    def test_parse_payload(self):
        response = SuggestResponse.model_validate(SAMPLE_PAYLOAD)

        assert response.texts == ["rolex", "rolex submariner"]
        assert response.query_terms[0].entity.type == "query_term"
        assert response.query_terms[0].entity.value is None

    def test_extra_groups_preserved(self):
        response = SuggestResponse.model_validate(SAMPLE_PAYLOAD)

        assert response.model_extra["categories"][0]["title"] == "Watches"

    def test_entity_value_int(self):
        payload = {
            "query_terms": [
                {"text": "x", "highlighted": "x", "entity": {"type": "category", "value": 333}}
            ]
        }

        assert SuggestResponse.model_validate(payload).query_terms[0].entity.value == 333


class TestSearchSuggestClient:
    """测试 SearchSuggestClient"""

    def test_build_params(self):
        client = SearchSuggestClient(locale="nl")

        params = client.build_params("rolex", size=5)

        assert params == {
            "q": "rolex",
            "locale": "nl",
            "size": 5,
            "filters": SearchSuggestClient.DEFAULT_FILTERS,
        }

    @pytest.mark.asyncio
    async def test_suggest_success(self):
        requests = []
        client = SearchSuggestClient(
            [dict(CONSENT_COOKIE)], transport=make_transport(requests)
        )

        async with client:
            result = await client.suggest("rolex")

        assert result.status == 200
        assert result.elapsed_ms >= 0
        assert "rolex" in result.data.texts[0]
        request = requests[0]
        assert request.url.path == "/buyer/api/v1/search/suggest"
        assert request.url.params["q"] == "rolex"
        assert request.url.params["locale"] == "en"
        assert "cookie_preferences_used_cta=true" in request.headers["cookie"]

    @pytest.mark.asyncio
    async def test_non_200_raises(self):
        client = SearchSuggestClient(transport=make_transport([], status=503))

        with pytest.raises(SuggestContractError) as exc_info:
            await client.suggest("rolex")
        await client.close()

        assert exc_info.value.status == 503

    @pytest.mark.asyncio
    async def test_non_json_raises(self):
        client = SearchSuggestClient(transport=make_transport([], text="<html>blocked</html>"))

        with pytest.raises(SuggestContractError):
            await client.suggest("rolex")
        await client.close()

    @pytest.mark.asyncio
    async def test_shape_mismatch_raises(self):
        """query_terms 缺少必需字段"""
        client = SearchSuggestClient(
            transport=make_transport([], payload={"query_terms": [{"text": "rolex"}]})
        )

        with pytest.raises(SuggestContractError) as exc_info:
            await client.suggest("rolex")
        await client.close()

        assert exc_info.value.payload == {"query_terms": [{"text": "rolex"}]}

    @pytest.mark.asyncio
    async def test_missing_query_terms_raises(self):
        client = SearchSuggestClient(transport=make_transport([], payload={"auctions": []}))

        with pytest.raises(SuggestContractError):
            await client.suggest("rolex")
        await client.close()

    @pytest.mark.asyncio
    async def test_from_playwright_context(self):
        context = MockBrowserContext()
        await context.add_cookies([dict(CONSENT_COOKIE)])

        client = await SearchSuggestClient.from_playwright_context(context)

        assert client._http_cookies == {"cookie_preferences_used_cta": "true"}

    def test_from_session_state(self):
        state = SessionState.from_storage_state({"cookies": [CONSENT_COOKIE]})

        client = SearchSuggestClient.from_session_state(state, locale="de")

        assert client._http_cookies == {"cookie_preferences_used_cta": "true"}
        assert client.locale == "de"

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        client = SearchSuggestClient(transport=make_transport([]))
        await client.suggest("rolex")

        await client.close()
        await client.close()

        assert client._client is None
