"""
@PURPOSE: Playwright 运行参数与路径解析(浏览器缓存目录、语言、时区、启动参数)
@OUTLINE:
  - class BrowserSettings: 从环境变量 / .env 读取浏览器运行参数并写入 Playwright 环境变量
@GOTCHAS:
  - 环境变量前缀为 BROWSER_, 例如 BROWSER_LOCALE=nl-NL
  - 与 Settings.browser(前缀 BROWSER__)互不干扰: 后者描述启动方式, 这里描述运行环境
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..config.settings import PROJECT_ROOT


class BrowserSettings(BaseSettings):
    """浏览器运行环境配置.

    Attributes:
        browsers_path: 浏览器安装缓存目录, 为空则沿用 Playwright 默认位置.
        launch_args: 追加的浏览器启动参数.
        locale: 语言区域.
        timezone_id: 时区.
        accept_language: Accept-Language 请求头.
        headless: 是否强制无头模式, None 表示遵循 Settings.browser.
    """

    model_config = SettingsConfigDict(
        env_prefix="BROWSER_",
        env_file=(".env",),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    browsers_path: str | None = Field(
        default=None,
        description="PLAYWRIGHT_BROWSERS_PATH, 统一浏览器安装缓存目录",
    )
    launch_args: list[str] = Field(default_factory=list, description="附加的浏览器启动参数")
    locale: str = Field(default="en-US", description="语言区域")
    timezone_id: str = Field(default="Europe/Amsterdam", description="时区 ID")
    accept_language: str = Field(default="en-US,en;q=0.9", description="Accept-Language")
    headless: bool | None = Field(
        default=None, description="覆盖无头模式; None 表示沿用 Settings.browser"
    )

    def resolve_path(self, path: str | Path) -> Path:
        """将相对路径解析为绝对路径(相对于项目根目录).

        Examples:
            >>> BrowserSettings().resolve_path("data").is_absolute()
            True
        """

        path_obj = Path(path)
        if path_obj.is_absolute():
            return path_obj
        return PROJECT_ROOT / path_obj

    def apply_environment(self) -> None:
        """写入 Playwright 相关环境变量(已存在的不覆盖)."""

        if not self.browsers_path:
            return
        browsers_root = self.resolve_path(self.browsers_path)
        browsers_root.mkdir(parents=True, exist_ok=True)
        os.environ.setdefault("PLAYWRIGHT_BROWSERS_PATH", str(browsers_root))

    def context_options(self) -> dict[str, object]:
        """new_context() 需要的环境相关参数."""

        return {
            "locale": self.locale,
            "timezone_id": self.timezone_id,
            "extra_http_headers": {"Accept-Language": self.accept_language},
        }
