"""
命令行入口 - 连接诊断与临时查询
可以作为模块运行：python -m dbweave
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.theme import Theme

from dbweave.adapters.adapter_factory import supported_backends
from dbweave.adapters.base import DataAdapter
from dbweave.adapters.connection_manager import ConnectionManager
from dbweave.config.base import DbWeaveConfig
from dbweave.config.connection import BaseConnectionConfig, config_from_url
from dbweave.telemetry.logger import setup_logging
from dbweave.types.core_types import QueryResult, TableInfo
from dbweave.utils.errors import ConfigurationError, DatabaseError


# 简洁的主题（仅4种颜色）
db_theme = Theme({
    "success": "green",
    "error": "red",
    "warning": "yellow",
    "info": "cyan"
})

console = Console(theme=db_theme)
err_console = Console(theme=db_theme, stderr=True)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _format_value(value: Any) -> str:
    """单元格文本，转义rich标记"""
    if value is None:
        return "NULL"
    if isinstance(value, (dict, list)):
        return escape(json.dumps(value, ensure_ascii=False, default=str))
    return escape(str(value))


def _resolve_config(settings: DbWeaveConfig, name: Optional[str], url: Optional[str]) -> BaseConnectionConfig:
    """--name 从配置文件取连接，--url 直接解析连接字符串，二者必须且只能给一个"""
    if bool(name) == bool(url):
        raise ConfigurationError("Specify exactly one of --name or --url", config_key="connection")
    if name:
        return settings.get_connection_config(name)
    return config_from_url(url)


def connection_options(func: Callable) -> Callable:
    """为子命令添加 --name / --url 选项"""
    func = click.option("--url", help="连接字符串，如 redis://localhost:6379/0")(func)
    func = click.option("--name", "-n", help="配置文件中 connections 下的连接名")(func)
    return func


def _echo_error(ctx: click.Context, message: str) -> None:
    err_console.print(f"[error]Error:[/error] {escape(message)}", highlight=False)
    ctx.exit(1)


def run_with_adapter(
    ctx: click.Context,
    name: Optional[str],
    url: Optional[str],
    action: Callable[[DataAdapter], Awaitable[Any]]
) -> Any:
    """连接一个适配器执行action，结束后关闭；类型化错误以红色输出并退出码1"""
    settings: DbWeaveConfig = ctx.obj

    async def runner() -> Any:
        config = _resolve_config(settings, name, url)
        async with ConnectionManager() as manager:
            adapter = await manager.create_connection(name or "cli", config.type, config)
            return await action(adapter)

    try:
        return asyncio.run(runner())
    except DatabaseError as e:
        _echo_error(ctx, str(e))


def _render_result(result: QueryResult) -> None:
    columns = [field.name for field in result.fields]
    if not columns and result.rows:
        columns = list(result.rows[0])

    table = Table(show_header=True, header_style="bold")
    for column in columns:
        table.add_column(escape(column))
    for row in result.rows:
        table.add_row(*(_format_value(row.get(column)) for column in columns))

    console.print(table)
    console.print(f"[info]{result.row_count} row(s)[/info]")


def _render_table_info(info: TableInfo) -> None:
    title = escape(f"{info.schema}.{info.name}" if info.schema else info.name)
    columns = Table(title=f"{title} ({info.kind.value})", header_style="bold")
    for header in ("Column", "Type", "Nullable", "Default", "Key"):
        columns.add_column(header)
    for column in info.columns:
        key = "PK" if column.is_primary_key else ("FK" if column.is_foreign_key else "")
        columns.add_row(
            _format_value(column.name),
            column.data_type,
            "YES" if column.nullable else "NO",
            _format_value(column.default_value) if column.default_value is not None else "",
            key
        )
    console.print(columns)

    if info.indexes:
        indexes = Table(title="Indexes", header_style="bold")
        for header in ("Name", "Columns", "Unique", "Type"):
            indexes.add_column(header)
        for index in info.indexes:
            indexes.add_row(_format_value(index.name), escape(", ".join(index.columns)), "YES" if index.unique else "NO", index.index_type)
        console.print(indexes)

    if info.constraints:
        constraints = Table(title="Constraints", header_style="bold")
        for header in ("Name", "Kind", "Columns", "References"):
            constraints.add_column(header)
        for constraint in info.constraints:
            reference = ""
            if constraint.referenced_table:
                reference = escape(f"{constraint.referenced_table}({', '.join(constraint.referenced_columns or [])})")
            constraints.add_row(_format_value(constraint.name), constraint.kind.value, escape(", ".join(constraint.columns)), reference)
        console.print(constraints)


@click.group()
@click.option("--config", "config_file",
              type=click.Path(exists=True, dir_okay=False),
              help="配置文件路径（YAML）")
@click.option("--log-level",
              type=click.Choice(LOG_LEVELS, case_sensitive=False),
              help="日志级别")
@click.option("--env-file",
              type=click.Path(exists=True, dir_okay=False),
              help=".env 文件路径，默认读取当前目录下的 .env")
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[str], log_level: Optional[str], env_file: Optional[str]):
    """
    DbWeave - 统一访问PostgreSQL、Redis、MongoDB
    """
    # 已存在的环境变量优先于 .env
    if env_file:
        load_dotenv(env_file, override=False)
    elif (Path.cwd() / ".env").exists():
        load_dotenv(Path.cwd() / ".env", override=False)

    try:
        settings = DbWeaveConfig(config_file=config_file)
    except ConfigurationError as e:
        _echo_error(ctx, str(e))
        return

    setup_logging(
        level=log_level or settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file
    )
    ctx.obj = settings


@cli.command()
@connection_options
@click.pass_context
def ping(ctx: click.Context, name: Optional[str], url: Optional[str]):
    """检查连接是否可用"""
    async def action(adapter: DataAdapter) -> bool:
        return await adapter.validate_connection()

    if run_with_adapter(ctx, name, url, action):
        console.print("[success]OK[/success]")
    else:
        _echo_error(ctx, "Connection check failed")


@cli.command()
@click.argument("command")
@click.argument("params", nargs=-1)
@connection_options
@click.option("--json", "as_json", is_flag=True, help="以JSON输出结果")
@click.pass_context
def query(ctx: click.Context, command: str, params: tuple, name: Optional[str], url: Optional[str], as_json: bool):
    """执行一条命令，PARAMS 依次绑定到占位符"""
    async def action(adapter: DataAdapter) -> QueryResult:
        return await adapter.execute_query(command, list(params) or None)

    result = run_with_adapter(ctx, name, url, action)
    if as_json:
        click.echo(json.dumps(result.to_dict(), ensure_ascii=False, default=str))
    else:
        _render_result(result)


@cli.command()
@connection_options
@click.pass_context
def tables(ctx: click.Context, name: Optional[str], url: Optional[str]):
    """列出表、视图、集合或键模式"""
    async def action(adapter: DataAdapter):
        return await adapter.get_tables()

    infos = run_with_adapter(ctx, name, url, action)
    table = Table(header_style="bold")
    for header in ("Name", "Schema", "Kind", "Columns"):
        table.add_column(header)
    for info in infos:
        table.add_row(_format_value(info.name), info.schema or "", info.kind.value, str(len(info.columns)))
    console.print(table)
    console.print(f"[info]{len(infos)} table(s)[/info]")


@cli.command()
@click.argument("table_name")
@click.option("--schema", help="模式名，PostgreSQL默认为public")
@connection_options
@click.pass_context
def describe(ctx: click.Context, table_name: str, schema: Optional[str], name: Optional[str], url: Optional[str]):
    """查看一个表的列、索引和约束"""
    async def action(adapter: DataAdapter) -> Optional[TableInfo]:
        return await adapter.get_table_info(table_name, schema)

    info = run_with_adapter(ctx, name, url, action)
    if info is None:
        _echo_error(ctx, f"Table '{table_name}' not found")
        return
    _render_table_info(info)


@cli.command()
@connection_options
@click.pass_context
def stats(ctx: click.Context, name: Optional[str], url: Optional[str]):
    """数据库整体统计"""
    async def action(adapter: DataAdapter):
        return await adapter.get_database_stats()

    result = run_with_adapter(ctx, name, url, action)
    table = Table(show_header=False)
    table.add_column("Metric", style="info")
    table.add_column("Value")
    for key, value in result.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)


@cli.command()
def backends():
    """列出支持的后端类型"""
    for backend in supported_backends():
        click.echo(backend)


def main():
    """主函数"""
    cli(prog_name="dbweave")


if __name__ == "__main__":
    sys.exit(main())
