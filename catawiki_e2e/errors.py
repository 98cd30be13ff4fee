"""
@PURPOSE: 定义会话引导与契约校验相关的自定义异常
@OUTLINE:
  - ConsentBootstrapError: 所有引导异常的基类
  - FatalNavigationError: 入口 URL 无法访问(致命, 向上抛出)
  - ConsentDismissFailure: Cookie 同意弹层无法确认关闭(默认降级, strict 模式抛出)
  - DetectionAmbiguity: 检测策略匹配到 0 个或多个候选(仅在策略链内部使用)
  - SessionStateError: 会话快照文件损坏
  - SuggestContractError: 搜索建议接口返回不符合契约
@DEPENDENCIES:
  - 外部: 无
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .browser.consent_bootstrapper import ConsentDiagnostics


class ConsentBootstrapError(Exception):
    """会话引导异常基类."""


class FatalNavigationError(ConsentBootstrapError):
    """入口 URL 无法访问时抛出此异常.

    导航失败是引导流程中唯一的致命错误, 调用方应中止本次测试运行.
    """

    def __init__(self, url: str, attempts: int, cause: BaseException | None = None) -> None:
        """初始化导航异常.

        Args:
            url: 目标入口 URL
            attempts: 已尝试次数
            cause: 最后一次失败的原始异常
        """
        self.url = url
        self.attempts = attempts
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"无法访问入口页面 {url} (尝试 {attempts} 次){detail}")


class ConsentDismissFailure(ConsentBootstrapError):
    """Cookie 同意弹层无法确认关闭.

    默认情况下只记录诊断信息并降级继续; 仅当调用方开启 strict 模式时抛出.
    """

    def __init__(self, outcome: str, diagnostics: ConsentDiagnostics | None = None) -> None:
        """初始化关闭失败异常.

        Args:
            outcome: 引导结果(ConsentOutcome 的值)
            diagnostics: 失败时采集的诊断快照
        """
        self.outcome = outcome
        self.diagnostics = diagnostics
        super().__init__(f"Cookie 同意弹层未能关闭 (outcome={outcome})")


class DetectionAmbiguity(ConsentBootstrapError):
    """某个定位策略匹配到 0 个或多个候选元素.

    策略链捕获该异常后继续尝试下一个策略, 不会向外传播.
    """

    def __init__(self, strategy: str, count: int) -> None:
        self.strategy = strategy
        self.count = count
        super().__init__(f"策略 {strategy} 匹配到 {count} 个候选")


class SessionStateError(ConsentBootstrapError):
    """会话快照文件无法解析."""

    def __init__(self, path: Any, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"会话快照无效 {path}: {reason}")


class SuggestContractError(Exception):
    """搜索建议接口的响应不符合约定的契约."""

    def __init__(self, message: str, status: int | None = None, payload: Any = None) -> None:
        self.status = status
        self.payload = payload
        super().__init__(message)
