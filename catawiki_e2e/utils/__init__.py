"""工具模块."""

from .network_logger import NetworkLogger, log_page_interaction
from .page_waiter import PageWaiter, WaitStrategy

__all__ = [
    "NetworkLogger",
    "PageWaiter",
    "WaitStrategy",
    "log_page_interaction",
]
