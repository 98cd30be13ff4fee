"""
@PURPOSE: 测试套件配置管理, 使用 Pydantic Settings 管理配置, 支持多环境 YAML 与 .env 覆盖
@OUTLINE:
  - class LocatorSpec: 定位策略的声明式配置
  - class DebugConfig: 调试配置
  - class LoggingConfig: 日志配置
  - class BrowserConfig: 浏览器配置
  - class RetryConfig: 重试配置
  - class ConsentConfig: Cookie 同意引导配置(唯一的配置入口)
  - class Settings: 配置主类
  - def load_environment_config(): 加载环境 YAML(支持别名引用)
  - def create_settings(): 创建配置实例
@GOTCHAS:
  - 环境配置优先级: 环境变量 > YAML > 默认值
  - 嵌套字段通过双下划线覆盖, 例如 CONSENT__ACCEPT_TIMEOUT_MS=8000
  - 不要将 .env 提交到 git
@DEPENDENCIES:
  - 外部: pydantic, pydantic_settings, pyyaml, python-dotenv
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

VALID_ENVIRONMENTS = ["development", "ci", "production"]

# 相对路径的基准目录, 默认是包所在目录的上一级, 可用 E2E_PROJECT_ROOT 覆盖
PROJECT_ROOT = Path(os.getenv("E2E_PROJECT_ROOT") or Path(__file__).resolve().parents[2])


# ========== 定位策略 ==========

class LocatorSpec(BaseModel):
    """定位策略的声明式描述.

    Attributes:
        kind: 定位方式 css / role / test_id / text
        value: 选择器、ARIA 角色、test id 或文本
        name: 可访问名称(精确匹配, 仅 role 使用)
        name_pattern: 可访问名称正则(忽略大小写, 仅 role 使用)
        exact: 名称是否精确匹配
        allow_multiple: 匹配多个元素时是否取第一个(否则视为歧义)
        description: 日志描述
    """

    kind: Literal["css", "role", "test_id", "text"] = "css"
    value: str
    name: Optional[str] = None
    name_pattern: Optional[str] = None
    exact: bool = False
    allow_multiple: bool = False
    description: str = ""


def _default_detection() -> List[LocatorSpec]:
    return [
        LocatorSpec(
            kind="css",
            value='aside[class*="CookiesBar"]',
            allow_multiple=True,
            description="CookiesBar 结构标记",
        ),
        LocatorSpec(
            kind="role",
            value="complementary",
            name_pattern="cookie",
            allow_multiple=True,
            description="complementary 角色",
        ),
        LocatorSpec(
            kind="css",
            value="#cookie_bar_agree_button, button.gtm-cookie-bar-agree",
            allow_multiple=True,
            description="同意按钮标识",
        ),
    ]


def _default_accept() -> List[LocatorSpec]:
    return [
        LocatorSpec(kind="role", value="button", name="Agree", exact=True, description="Agree 按钮"),
        LocatorSpec(
            kind="role",
            value="button",
            name_pattern=r"^\s*(agree|accept)",
            description="Agree/Accept 按钮(模糊)",
        ),
        # 站点没有 data-testid, id 是同意按钮唯一稳定的标识属性
        LocatorSpec(kind="css", value="#cookie_bar_agree_button", description="同意按钮稳定标识(id)"),
        LocatorSpec(
            kind="css",
            value="button.gtm-cookie-bar-agree",
            allow_multiple=True,
            description="同意按钮 class",
        ),
    ]


def _default_reject() -> List[LocatorSpec]:
    return [
        LocatorSpec(
            kind="role",
            value="button",
            name="Continue without accepting",
            exact=True,
            description="拒绝按钮",
        ),
        LocatorSpec(
            kind="role",
            value="button",
            name_pattern=r"without accepting|reject|decline",
            description="拒绝按钮(模糊)",
        ),
    ]


# ========== 子配置类 ==========

class _SubConfig(BaseSettings):
    """子配置基类: 环境变量优先于 YAML 传入的初始化参数."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return env_settings, dotenv_settings, init_settings, file_secret_settings


class DebugConfig(_SubConfig):
    """调试配置.

    Attributes:
        screenshot_on_failure: 同意弹层关闭失败时截图
        debug_dir: 截图目录
    """
    model_config = SettingsConfigDict(env_prefix="DEBUG__")

    screenshot_on_failure: bool = Field(default=True, description="失败时截图")
    debug_dir: str = Field(default="data/debug", description="调试目录")


class LoggingConfig(_SubConfig):
    """日志配置.

    Attributes:
        level: 日志级别
        format: 日志格式 detailed / json / simple
        output: 输出目标列表
        file_path: 文件路径
        rotation: 轮转大小
        retention: 保留时间
        log_network: 是否记录 XHR/fetch 响应
    """
    model_config = SettingsConfigDict(env_prefix="LOGGING__")

    level: str = Field(default="INFO", description="日志级别")
    format: str = Field(default="detailed", description="日志格式")
    output: List[str] = Field(default=["console", "file"], description="输出目标")
    file_path: str = Field(default="data/logs/e2e.log", description="文件路径")
    rotation: str = Field(default="10 MB", description="轮转大小")
    retention: str = Field(default="7 days", description="保留时间")
    log_network: bool = Field(default=False, description="记录 XHR/fetch 响应")


class BrowserConfig(_SubConfig):
    """浏览器配置.

    Attributes:
        type: 浏览器类型 chromium / firefox / webkit
        headless: 无头模式
        slow_mo: 慢速模式(毫秒)
        timeout: 默认超时(毫秒)
        viewport: 视口大小
        user_agent: 用户代理
    """
    model_config = SettingsConfigDict(env_prefix="BROWSER__")

    type: str = Field(default="chromium", description="浏览器类型")
    headless: bool = Field(default=True, description="无头模式")
    slow_mo: int = Field(default=0, ge=0, description="慢速模式(毫秒)")
    timeout: int = Field(default=30000, ge=1000, description="默认超时(毫秒)")
    viewport: Dict[str, int] = Field(
        default={"width": 1440, "height": 900},
        description="视口大小",
    )
    user_agent: Optional[str] = Field(default=None, description="用户代理")

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        """验证浏览器类型."""
        if v not in ("chromium", "firefox", "webkit"):
            raise ValueError(f"不支持的浏览器类型: {v}")
        return v


class RetryConfig(_SubConfig):
    """重试配置.

    Attributes:
        navigation_attempts: 入口导航最大尝试次数
        dismiss_attempts: 关闭同意弹层最大尝试次数
        backoff_factor: 退避因子
        initial_delay_ms: 初始延迟(毫秒)
        max_delay_ms: 最大延迟(毫秒)
    """
    model_config = SettingsConfigDict(env_prefix="RETRY__")

    navigation_attempts: int = Field(default=2, ge=1, description="导航最大尝试次数")
    dismiss_attempts: int = Field(default=2, ge=1, description="关闭弹层最大尝试次数")
    backoff_factor: float = Field(default=1.6, ge=1.0, description="退避因子")
    initial_delay_ms: int = Field(default=250, ge=0, description="初始延迟(毫秒)")
    max_delay_ms: int = Field(default=2000, ge=0, description="最大延迟(毫秒)")


class ConsentConfig(_SubConfig):
    """Cookie 同意引导配置.

    入口 URL, 超时预算, 检测策略与按钮策略都集中在这里,
    由 ConsentBootstrapper 统一读取.

    Attributes:
        entry_url: 入口页面
        navigation_timeout_ms: 单次导航超时
        network_idle_timeout_ms: 等待网络空闲的上限(超时不致命)
        detection_timeout_ms: 检测弹层的总预算
        accept_timeout_ms: 定位同意按钮的总预算
        confirmation_timeout_ms: 确认关闭的轮询预算
        poll_interval_ms: 轮询间隔
        decision: 首选操作 agree / reject
        fallback_to_reject: 同意按钮失败时是否尝试拒绝按钮
        strict: 关闭失败时是否抛出 ConsentDismissFailure
        navigate_on_fast_path: 快速路径是否仍导航到入口页面
        consent_cookie_pattern: 同意 Cookie 名称正则
        consent_storage_pattern: 同意 localStorage 键正则
        session_state_path: 会话快照文件
        seed_state_path: 种子快照(主快照缺失时使用)
        max_age_hours: 快照最大有效期
        persist_session: 是否在没有有效快照时保存新快照
    """
    model_config = SettingsConfigDict(env_prefix="CONSENT__")

    entry_url: str = Field(default="https://www.catawiki.com/en", description="入口页面")
    navigation_timeout_ms: int = Field(default=30000, ge=1000, description="导航超时")
    network_idle_timeout_ms: int = Field(default=10000, ge=0, description="网络空闲上限")
    detection_timeout_ms: int = Field(default=4000, ge=0, description="检测预算")
    accept_timeout_ms: int = Field(default=5000, ge=0, description="同意按钮预算")
    confirmation_timeout_ms: int = Field(default=10000, ge=0, description="确认预算")
    poll_interval_ms: int = Field(default=200, ge=10, description="轮询间隔")
    decision: Literal["agree", "reject"] = Field(default="agree", description="首选操作")
    fallback_to_reject: bool = Field(default=False, description="失败时尝试拒绝按钮")
    strict: bool = Field(default=False, description="关闭失败时抛出异常")
    navigate_on_fast_path: bool = Field(default=True, description="快速路径导航入口")
    consent_cookie_pattern: str = Field(
        default=(
            r"enable_marketing_cookies|enable_analytical_cookies|"
            r"cookie_preferences_used_cta|cw_consent|consent"
        ),
        description="同意 Cookie 名称正则",
    )
    consent_storage_pattern: str = Field(default=r"consent|cookie", description="同意存储键正则")
    detection_strategies: List[LocatorSpec] = Field(default_factory=_default_detection)
    accept_strategies: List[LocatorSpec] = Field(default_factory=_default_accept)
    reject_strategies: List[LocatorSpec] = Field(default_factory=_default_reject)
    session_state_path: str = Field(
        default="data/auth/storage_state.json", description="会话快照文件"
    )
    seed_state_path: Optional[str] = Field(
        default="data/auth/ui_smoke_state.json", description="种子快照"
    )
    max_age_hours: float = Field(default=24.0, gt=0, description="快照有效期(小时)")
    persist_session: bool = Field(default=True, description="保存新快照")


# ========== 主配置类 ==========

class Settings(BaseSettings):
    """配置主类.

    从环境变量、.env 文件和 YAML 配置文件加载配置。
    优先级：环境变量 > YAML > 默认值

    Examples:
        >>> from catawiki_e2e.config import settings
        >>> settings.consent.entry_url
        'https://www.catawiki.com/en'
    """

    environment: str = Field(default="development", description="运行环境")

    data_logs_dir: str = Field(default="data/logs", description="日志目录")
    data_auth_dir: str = Field(default="data/auth", description="会话快照目录")

    debug: DebugConfig = Field(default_factory=DebugConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    consent: ConsentConfig = Field(default_factory=ConsentConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",  # 支持 CONSENT__STRICT=true
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """验证环境名称."""
        if v not in VALID_ENVIRONMENTS:
            raise ValueError(f"环境必须是: {VALID_ENVIRONMENTS}")
        return v

    def get_absolute_path(self, relative_path: str | Path) -> Path:
        """将相对路径转换为绝对路径(相对于项目根目录).

        Args:
            relative_path: 相对路径

        Returns:
            绝对路径
        """
        path = Path(relative_path)
        if path.is_absolute():
            return path
        return PROJECT_ROOT / path

    def ensure_directories(self) -> None:
        """确保所有必需的目录存在."""
        for dir_path in [self.data_logs_dir, self.data_auth_dir, self.debug.debug_dir]:
            self.get_absolute_path(dir_path).mkdir(parents=True, exist_ok=True)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典."""
        return self.model_dump(mode="json")


# ========== 配置加载 ==========

def load_environment_config(env: str = "development") -> Dict[str, Any]:
    """从 YAML 文件加载环境配置, 支持别名引用."""

    config_dir = Path(__file__).parent / "environments"
    target_file = config_dir / f"{env}.yaml"

    def _load(file_path: Path, seen: set[Path]) -> Dict[str, Any]:
        if file_path in seen:
            raise ValueError(f"检测到环境配置的循环引用: {file_path}")
        seen.add(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"环境配置文件不存在: {file_path}")

        with file_path.open("r", encoding="utf-8") as handle:
            content = yaml.safe_load(handle)

        if content is None:
            return {}

        if isinstance(content, str):
            alias = content.strip()
            if not alias:
                raise ValueError(f"环境配置别名不能为空: {file_path}")

            if alias.endswith((".yaml", ".yml")):
                alias_file = file_path.parent / alias
            else:
                alias_file = file_path.parent / f"{alias}.yaml"

            return _load(alias_file, seen)

        if not isinstance(content, dict):
            raise TypeError(
                f"环境配置 {file_path} 必须是字典或别名字符串, 当前类型: {type(content).__name__}",
            )

        return content

    return _load(target_file, set())


def create_settings(env: Optional[str] = None) -> Settings:
    """创建配置实例.

    YAML 中的值作为默认值, 环境变量仍然可以覆盖.

    Args:
        env: 环境名称, 为 None 时从 E2E_ENVIRONMENT 获取

    Returns:
        配置实例
    """
    if env is None:
        # E2E_ENVIRONMENT 可以写在 .env 中, 已存在的环境变量不会被覆盖
        load_dotenv(PROJECT_ROOT / ".env")
        env = os.getenv("E2E_ENVIRONMENT", "development")

    yaml_config = load_environment_config(env)

    return Settings(
        environment=env,
        debug=DebugConfig(**yaml_config.get("debug", {})),
        logging=LoggingConfig(**yaml_config.get("logging", {})),
        browser=BrowserConfig(**yaml_config.get("browser", {})),
        retry=RetryConfig(**yaml_config.get("retry", {})),
        consent=ConsentConfig(**yaml_config.get("consent", {})),
    )


# ========== 全局配置实例 ==========

settings = create_settings()
