"""
@PURPOSE: CLI 会话命令 - 生成, 查看与清除同意后的会话快照
@OUTLINE:
  - session_app: Typer 会话命令组
  - prepare(): 启动浏览器执行一次完整引导并保存快照
  - show(): 显示快照状态
  - clear(): 删除快照
@GOTCHAS:
  - prepare 在已有有效快照时直接返回, 使用 --force 强制重新生成
  - 降级引导不会保存快照, 退出码为 2
@DEPENDENCIES:
  - 内部: catawiki_e2e.browser, catawiki_e2e.config
  - 外部: typer, rich
"""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from ...browser.browser_manager import BrowserManager
from ...browser.consent_bootstrapper import BootstrapResult, ConsentBootstrapper
from ...browser.session_state import SessionStateStore
from ...config import settings
from ...errors import ConsentDismissFailure, FatalNavigationError

session_app = typer.Typer(
    name="session",
    help="会话快照管理",
)

console = Console()


async def _prepare(store: SessionStateStore, headless: bool | None) -> BootstrapResult:
    manager = BrowserManager(settings.browser)
    await manager.start(headless=headless)
    try:
        context = await manager.new_context()
        bootstrapper = ConsentBootstrapper.from_settings(settings)
        return await bootstrapper.run(context, persist_to=store)
    finally:
        await manager.close()


def _render_result(result: BootstrapResult) -> Table:
    table = Table(title="引导结果", show_header=False)
    table.add_column("项目", style="bold")
    table.add_column("值")
    table.add_row("outcome", result.outcome.value)
    table.add_row("phases", " → ".join(phase.value for phase in result.phases))
    table.add_row("detection", result.detection or "-")
    table.add_row("dismissed_by", result.dismissed_by or "-")
    table.add_row("confirmation", result.confirmation.value if result.confirmation else "-")
    table.add_row("elapsed", f"{result.elapsed_ms:.0f}ms")
    if result.session_state is not None:
        table.add_row("cookies", str(len(result.session_state.cookies)))
    return table


@session_app.command("prepare")
def prepare(
    headless: bool | None = typer.Option(None, "--headless/--headed", help="是否无头模式"),
    force: bool = typer.Option(False, "--force", help="忽略已有的有效快照"),
):
    """执行一次完整引导并保存会话快照.

    Examples:
        catawiki-e2e session prepare
        catawiki-e2e session prepare --headed --force
    """
    store = SessionStateStore.from_settings(settings)

    if not force and store.load_valid() is not None:
        console.print(f"[green]✓[/green] 已存在有效快照: {store.path}")
        console.print("  使用 --force 重新生成")
        return

    try:
        result = asyncio.run(_prepare(store, headless))
    except FatalNavigationError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1) from None
    except ConsentDismissFailure as e:
        console.print(f"[red]✗[/red] {e}")
        if e.diagnostics is not None:
            console.print_json(e.diagnostics.summary())
        raise typer.Exit(2) from None

    console.print(_render_result(result))

    if result.degraded:
        console.print("[yellow]⚠[/yellow] 同意弹层未能确认关闭, 未保存快照")
        if result.diagnostics is not None:
            console.print_json(result.diagnostics.summary())
        raise typer.Exit(2)

    console.print(f"[green]✓[/green] 会话快照已保存: {store.path}")


@session_app.command("show")
def show():
    """显示会话快照状态.

    Examples:
        catawiki-e2e session show
    """
    store = SessionStateStore.from_settings(settings)
    info = store.describe()

    table = Table(title="会话快照", show_header=False)
    table.add_column("项目", style="bold")
    table.add_column("值")
    for key, value in info.items():
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)

    if not info["exists"]:
        console.print("[yellow]⚠[/yellow] 快照不存在, 运行 catawiki-e2e session prepare 生成")
    elif "error" in info:
        raise typer.Exit(1)


@session_app.command("clear")
def clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="跳过确认"),
):
    """删除会话快照.

    Examples:
        catawiki-e2e session clear -y
    """
    store = SessionStateStore.from_settings(settings)
    if not store.exists():
        console.print("快照不存在, 无需清除")
        return

    if not yes and not typer.confirm(f"确认删除 {store.path}?"):
        raise typer.Exit(1)

    store.clear()
    console.print(f"[green]✓[/green] 已清除: {store.path}")
