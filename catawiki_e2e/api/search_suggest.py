"""
@PURPOSE: 搜索建议接口客户端, 复用已同意会话的 Cookie 直接调用 HTTP 接口并校验响应结构
@OUTLINE:
  - class SuggestEntity / QueryTerm / SuggestResponse: 响应契约模型
  - @dataclass SuggestResult: 响应 + 状态码 + 耗时
  - class SearchSuggestClient: API 客户端主类
    - async def from_playwright_context(): 从 Playwright 上下文创建客户端
    - def from_session_state(): 从会话快照创建客户端
    - async def suggest(): 请求搜索建议
@GOTCHAS:
  - 结构校验在模型里完成, 业务断言(耗时, 文本包含关键字)由测试用例自己做
  - 非 200 响应, 非 JSON 响应与结构不符都会抛出 SuggestContractError
@DEPENDENCIES:
  - 外部: httpx, pydantic, loguru
  - 内部: catawiki_e2e.errors, catawiki_e2e.browser.session_state
@RELATED: tests/e2e/test_search_suggest.py
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict, ValidationError

from ..errors import SuggestContractError

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext

    from ..browser.session_state import SessionState


class SuggestEntity(BaseModel):
    """建议项关联的实体, 纯关键字建议的 value 为 null."""

    model_config = ConfigDict(extra="allow")

    type: str
    value: str | int | None = None


class QueryTerm(BaseModel):
    model_config = ConfigDict(extra="allow")

    text: str
    highlighted: str
    entity: SuggestEntity


class SuggestResponse(BaseModel):
    """搜索建议响应, 只约束 query_terms, 其他分组原样保留."""

    model_config = ConfigDict(extra="allow")

    query_terms: list[QueryTerm]

    @property
    def texts(self) -> list[str]:
        return [term.text for term in self.query_terms]


@dataclass
class SuggestResult:
    status: int
    elapsed_ms: float
    data: SuggestResponse


class SearchSuggestClient:
    """搜索建议 API 客户端.

    Examples:
        >>> client = await SearchSuggestClient.from_playwright_context(context)
        >>> async with client:
        ...     result = await client.suggest("rolex")
        >>> result.data.texts[:3]
        ['rolex', 'rolex submariner', 'rolex datejust']
    """

    BASE_URL: ClassVar[str] = "https://www.catawiki.com"
    SUGGEST_PATH: ClassVar[str] = "/buyer/api/v1/search/suggest"
    DEFAULT_FILTERS: ClassVar[str] = "query_terms,auctions,categories,collections,sellers"

    def __init__(
        self,
        cookies: list[dict[str, Any]] | None = None,
        *,
        base_url: str | None = None,
        locale: str = "en",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """初始化 API 客户端.

        Args:
            cookies: Playwright 格式的 Cookie 列表
            base_url: 站点根地址
            locale: 请求语言
            timeout: 请求超时(秒)
            transport: 自定义 httpx 传输层
        """
        self.base_url = base_url or self.BASE_URL
        self.locale = locale
        self.timeout = timeout
        self._http_cookies = {cookie["name"]: cookie["value"] for cookie in cookies or []}
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """获取或创建 HTTP 客户端."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                cookies=self._http_cookies,
                headers={
                    "Accept": "application/json, text/plain, */*",
                    "Accept-Language": "en-US,en;q=0.9",
                    "Referer": f"{self.base_url}/{self.locale}",
                },
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """关闭 HTTP 客户端."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> SearchSuggestClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @classmethod
    async def from_playwright_context(
        cls, context: BrowserContext, **kwargs: Any
    ) -> SearchSuggestClient:
        """从 Playwright 浏览器上下文创建 API 客户端."""
        cookies = await context.cookies()
        logger.debug(f"从 Playwright 上下文获取到 {len(cookies)} 个 Cookie")
        return cls(cookies, **kwargs)

    @classmethod
    def from_session_state(cls, state: SessionState, **kwargs: Any) -> SearchSuggestClient:
        """从会话快照创建 API 客户端."""
        return cls(state.playwright_cookies(), **kwargs)

    def build_params(
        self, query: str, *, size: int = 10, filters: str | None = None
    ) -> dict[str, Any]:
        return {
            "q": query,
            "locale": self.locale,
            "size": size,
            "filters": filters or self.DEFAULT_FILTERS,
        }

    async def suggest(
        self, query: str, *, size: int = 10, filters: str | None = None
    ) -> SuggestResult:
        """请求搜索建议.

        Args:
            query: 搜索关键字
            size: 每个分组的数量
            filters: 返回的分组, 逗号分隔

        Returns:
            状态码, 耗时与校验后的响应

        Raises:
            SuggestContractError: 响应不符合契约
            httpx.HTTPError: 网络错误
        """
        client = await self._get_client()
        params = self.build_params(query, size=size, filters=filters)

        started = time.perf_counter()
        response = await client.get(self.SUGGEST_PATH, params=params)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.debug(f"[API] {response.status_code} {response.url} ({elapsed_ms}ms)")

        if response.status_code != 200:
            raise SuggestContractError(
                f"搜索建议接口返回 HTTP {response.status_code}",
                status=response.status_code,
                payload=response.text[:500],
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise SuggestContractError(
                "搜索建议接口返回的不是 JSON", status=response.status_code, payload=response.text[:500]
            ) from exc

        try:
            data = SuggestResponse.model_validate(payload)
        except ValidationError as exc:
            raise SuggestContractError(
                f"搜索建议响应结构不符: {exc.error_count()} 处错误",
                status=response.status_code,
                payload=payload,
            ) from exc

        return SuggestResult(status=response.status_code, elapsed_ms=elapsed_ms, data=data)
