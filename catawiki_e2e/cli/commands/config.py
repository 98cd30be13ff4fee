"""
@PURPOSE: CLI 配置命令 - 查看与校验配置
@OUTLINE:
  - config_app: Typer 配置命令组
  - show(): 显示配置
  - validate(): 验证环境配置文件
@DEPENDENCIES:
  - 内部: catawiki_e2e.config
  - 外部: typer, rich, pyyaml, pydantic
"""

import json
from pathlib import Path

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.syntax import Syntax

from ...config import settings
from ...config.settings import (
    VALID_ENVIRONMENTS,
    BrowserConfig,
    ConsentConfig,
    DebugConfig,
    LoggingConfig,
    RetryConfig,
    create_settings,
)

config_app = typer.Typer(
    name="config",
    help="配置管理",
)

console = Console()

_SECTIONS = {
    "debug": DebugConfig,
    "logging": LoggingConfig,
    "browser": BrowserConfig,
    "retry": RetryConfig,
    "consent": ConsentConfig,
}


@config_app.command("show")
def show(
    env: str | None = typer.Option(None, "--env", help="环境名称"),
    format: str = typer.Option("yaml", "--format", "-f", help="输出格式(yaml/json)"),
):
    """显示当前配置.

    Examples:
        catawiki-e2e config show
        catawiki-e2e config show --env ci -f json
    """
    if env and env not in VALID_ENVIRONMENTS:
        console.print(f"[red]✗[/red] 无效的环境名称: {env}")
        console.print(f"  有效值: {', '.join(VALID_ENVIRONMENTS)}")
        raise typer.Exit(1) from None

    current = create_settings(env) if env else settings
    console.print(f"[bold]环境:[/bold] {current.environment}\n")

    config_dict = current.to_dict()
    if format == "json":
        output = json.dumps(config_dict, indent=2, ensure_ascii=False)
        syntax = Syntax(output, "json", theme="monokai", line_numbers=True)
    else:
        output = yaml.dump(config_dict, allow_unicode=True, default_flow_style=False)
        syntax = Syntax(output, "yaml", theme="monokai", line_numbers=True)

    console.print(syntax)


@config_app.command("validate")
def validate(
    config_file: Path = typer.Argument(..., help="环境配置文件路径"),
):
    """验证环境配置文件.

    Examples:
        catawiki-e2e config validate catawiki_e2e/config/environments/ci.yaml
    """
    if not config_file.exists():
        console.print(f"[red]✗[/red] 文件不存在: {config_file}")
        raise typer.Exit(1) from None

    console.print(f"验证文件: {config_file}")

    try:
        with config_file.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        console.print(f"[red]✗[/red] YAML 语法错误: {e}")
        raise typer.Exit(1) from None

    if isinstance(data, str):
        console.print(f"[green]✓[/green] 别名配置, 指向: {data.strip()}")
        return

    if not isinstance(data, dict):
        console.print(f"[red]✗[/red] 顶层必须是字典, 当前类型: {type(data).__name__}")
        raise typer.Exit(1) from None

    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        console.print(f"[yellow]⚠[/yellow] 未知配置段: {', '.join(unknown)}")

    errors = 0
    for name, model in _SECTIONS.items():
        try:
            model(**(data.get(name) or {}))
        except ValidationError as e:
            errors += 1
            console.print(f"[red]✗[/red] {name}: {e.error_count()} 处错误")
            for item in e.errors():
                location = ".".join(str(part) for part in item["loc"])
                console.print(f"    {location}: {item['msg']}")

    if errors:
        raise typer.Exit(1)

    console.print("\n[green]✓ 配置文件有效[/green]")
