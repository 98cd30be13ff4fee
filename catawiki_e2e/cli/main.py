"""
@PURPOSE: CLI 主入口 - catawiki-e2e 命令行工具
@OUTLINE:
  - app: Typer 主应用
  - 集成命令组(session/config)
  - version(): 版本信息
@GOTCHAS:
  - 确保 Playwright 浏览器已安装(playwright install chromium)
  - 运行环境由 E2E_ENVIRONMENT 决定
@DEPENDENCIES:
  - 内部: catawiki_e2e.cli.commands.*
  - 外部: typer, rich
"""

import sys
from pathlib import Path

import typer
from rich.console import Console

from .. import __version__
from ..config import settings
from ..utils.logger_setup import setup_logger
from .commands.config import config_app
from .commands.session import session_app

app = typer.Typer(
    name="catawiki-e2e",
    help="Catawiki 端到端测试工具: 会话引导与快照管理",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()

app.add_typer(session_app, name="session")
app.add_typer(config_app, name="config")


@app.callback()
def main() -> None:
    """初始化日志."""
    setup_logger()


@app.command()
def version():
    """显示版本信息.

    Examples:
        catawiki-e2e version
    """
    console.print("\n[bold cyan]Catawiki E2E[/bold cyan]")
    console.print(f"版本: [bold]{__version__}[/bold]")
    console.print("\n环境配置:")
    console.print(f"  环境: {settings.environment}")
    console.print(f"  入口: {settings.consent.entry_url}")
    console.print(f"  Python: {sys.version.split()[0]}")
    console.print(f"  工作目录: {Path.cwd()}")


if __name__ == "__main__":
    app()
