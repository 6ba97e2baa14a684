"""
CLI 命令模块 - directbot 的所有命令行命令定义。

本模块使用 Typer 框架定义 directbot 的 CLI 命令：
- onboard：初始化配置文件、会话目录和模块目录
- run：连接真实平台客户端（platform.client）并持续运行，收到信号后优雅关闭
- console：在本地回环平台上运行完整流水线，终端输入即入站消息
- status：查看配置与会话状态
- modules：列出 load_all 会发现的模块

技术栈：
- Typer：CLI 框架
- Rich：终端美化输出（表格、颜色）
- prompt_toolkit：交互式输入（历史记录、行编辑）
- loguru：日志输出，run 命令写 stderr（可选再写文件）

二开提示：
- platform.client 填写 "包.模块:工厂函数"，工厂函数接收 Config 并返回 PlatformClient
- console 命令是调试模块最快的方式，不需要任何平台账号
"""

import asyncio
import importlib
import signal
import sys
from pathlib import Path
from typing import Callable

import typer
from loguru import logger
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.table import Table

from directbot import __logo__, __version__
from directbot.config.schema import Config

# 创建 Typer 应用实例（CLI 根命令）
app = typer.Typer(
    name="directbot",
    help=f"{__logo__} directbot - Direct message automation bot",
    no_args_is_help=True,
)

console = Console()
EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit", ":q"}

CONSOLE_THREAD_ID = "console"


def version_callback(value: bool):
    """--version/-v：打印版本号并退出。"""
    if value:
        console.print(f"{__logo__} directbot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """directbot CLI 根命令回调。"""
    pass


def _load(config_path: Path | None) -> Config:
    from directbot.config.loader import load_config
    return load_config(config_path)


def _configure_logging(config: Config, verbose: bool = False) -> None:
    """
    配置 loguru 输出：stderr 按 bot.logLevel（--verbose 时为 DEBUG），
    bot.enableLogging 开启时额外写入按大小滚动的日志文件。
    """
    level = "DEBUG" if verbose else config.bot.log_level.upper()
    logger.remove()
    logger.add(sys.stderr, level=level)
    if config.bot.enable_logging:
        log_file = Path(config.bot.log_file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(log_file, level=level, rotation="10 MB", retention=5)
    logger.enable("directbot")


def _resolve_client_factory(path: str) -> Callable:
    """把 "pkg.module:factory" 解析为可调用对象。"""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise typer.BadParameter(f"platform.client must look like 'pkg.module:factory', got {path!r}")
    module = importlib.import_module(module_name)
    return getattr(module, attr)


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """
    初始化 directbot 配置。

    执行流程：
    1. 在 ~/.directbot/ 下创建默认配置文件 config.json
    2. 创建会话目录和外部模块目录
    3. 打印后续操作指引
    """
    from directbot.config.loader import get_config_path, save_config
    from directbot.utils.helpers import ensure_dir

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    save_config(config)
    console.print(f"[green]✓[/green] Created config at {config_path}")

    session_dir = ensure_dir(Path(config.account.session_path).expanduser())
    console.print(f"[green]✓[/green] Session directory: {session_dir}")
    modules_dir = ensure_dir(Path(config.modules.modules_path).expanduser())
    console.print(f"[green]✓[/green] Modules directory: {modules_dir}")

    console.print(f"\n{__logo__} directbot is ready!")
    console.print("\nNext steps:")
    console.print("  1. Set [cyan]account.username[/cyan], [cyan]account.password[/cyan] "
                  "and [cyan]platform.client[/cyan] in [cyan]~/.directbot/config.json[/cyan]")
    console.print("  2. Try it locally: [cyan]directbot console[/cyan]")
    console.print("  3. Go live: [cyan]directbot run[/cyan]")


# ============================================================================
# Run
# ============================================================================


@app.command()
def run(
    config_path: Path = typer.Option(None, "--config", "-c", help="Path to config.json"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """
    启动机器人并持续运行。

    SIGINT / SIGTERM 触发优雅关闭：保存会话 → 断开连接 → 卸载模块。
    """
    from directbot.bot import Bot
    from directbot.errors import AuthenticationError
    from directbot.utils.helpers import spawn_tracked

    config = _load(config_path)
    _configure_logging(config, verbose)

    if not config.platform.client:
        console.print("[red]platform.client is not configured.[/red] "
                      "Use [cyan]directbot console[/cyan] to try the bot locally.")
        raise typer.Exit(1)

    factory = _resolve_client_factory(config.platform.client)
    bot = Bot(config, factory(config))

    console.print(f"{__logo__} Starting directbot...")

    async def _main():
        loop = asyncio.get_running_loop()
        shutdown_tasks: set[asyncio.Task] = set()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(
                sig, lambda: spawn_tracked(bot.graceful_shutdown(), shutdown_tasks, "graceful shutdown")
            )

        try:
            await bot.initialize()
        except AuthenticationError as e:
            console.print(f"[red]Authentication failed:[/red] {e}")
            await bot.graceful_shutdown()
            raise typer.Exit(1)

        await bot.wait_until_stopped()

    asyncio.run(_main())
    console.print("Goodbye!")


# ============================================================================
# Console (loopback)
# ============================================================================


def _init_prompt_session() -> PromptSession:
    """创建 prompt_toolkit 会话，历史记录保存在 ~/.directbot/history/console_history。"""
    from directbot.utils.helpers import get_data_path

    history_file = get_data_path() / "history" / "console_history"
    history_file.parent.mkdir(parents=True, exist_ok=True)
    return PromptSession(history=FileHistory(str(history_file)), multiline=False)


@app.command("console")
def console_cmd(
    config_path: Path = typer.Option(None, "--config", "-c", help="Path to config.json"),
    user: str = typer.Option("console", "--user", "-u", help="Sender username for typed messages"),
    admin: bool = typer.Option(True, "--admin/--no-admin", help="Treat the console user as an admin"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show directbot runtime logs"),
):
    """
    在本地回环平台上运行完整的消息流水线。

    输入的每一行都作为一条入站消息（发送者为 --user），机器人的回复直接打印出来。
    输入 exit / quit 或 Ctrl+C 退出。
    """
    from directbot.bot import Bot
    from directbot.bus.events import Message
    from directbot.session.manager import SessionStore
    from directbot.transport.loopback import EVENT_OUTBOUND, LoopbackClient
    from directbot.utils.helpers import get_data_path

    config = _load(config_path)
    _configure_logging(config)
    if not logs:
        logger.disable("directbot")

    user_id = f"loopback-{user}"
    if admin and user_id not in config.bot.admin_users:
        config.bot.admin_users.append(user_id)
    config.account.username = "directbot"
    config.account.password = config.account.password or "loopback"

    client = LoopbackClient(username="directbot")
    session = SessionStore(get_data_path() / "console-session")
    bot = Bot(config, client, session=session)

    def _print_reply(thread_id: str, text: str) -> None:
        console.print(f"[cyan]{__logo__} directbot[/cyan] {text}")

    client.realtime.on(EVENT_OUTBOUND, _print_reply)

    async def _main():
        await bot.initialize()
        prompt = _init_prompt_session()
        console.print(f"{__logo__} Console mode as @{user} "
                      f"(prefix [bold]{config.bot.prefix}[/bold], type [bold]exit[/bold] to quit)\n")
        stopped = asyncio.create_task(bot.wait_until_stopped())

        try:
            while True:
                with patch_stdout():
                    reading = asyncio.create_task(prompt.prompt_async(HTML("<b fg='ansiblue'>You:</b> ")))
                    done, _ = await asyncio.wait({reading, stopped}, return_when=asyncio.FIRST_COMPLETED)
                if stopped in done:
                    reading.cancel()
                    break

                line = reading.result().strip()
                if not line:
                    continue
                if line.lower() in EXIT_COMMANDS:
                    break
                client.realtime.inject(Message(
                    sender_id=user_id,
                    sender_name=user,
                    thread_id=CONSOLE_THREAD_ID,
                    text=line,
                ))
        except (KeyboardInterrupt, EOFError):
            pass
        finally:
            await bot.graceful_shutdown()
            stopped.cancel()

    asyncio.run(_main())
    console.print("\nGoodbye!")


# ============================================================================
# Status / Modules
# ============================================================================


@app.command()
def status(
    config_path: Path = typer.Option(None, "--config", "-c", help="Path to config.json"),
):
    """显示配置文件、会话状态、命令前缀、管理员和模块设置。"""
    from directbot.config.loader import get_config_path

    path = config_path or get_config_path()
    config = _load(config_path)
    state_file = Path(config.account.session_path).expanduser() / "state.json"
    modules_dir = Path(config.modules.modules_path).expanduser()

    console.print(f"{__logo__} directbot Status\n")
    console.print(f"Config: {path} {'[green]✓[/green]' if path.exists() else '[red]✗[/red]'}")
    console.print(f"Session state: {state_file} "
                  f"{'[green]✓[/green]' if state_file.exists() else '[dim]none[/dim]'}")
    console.print(f"Account: {config.account.username or '[dim]not set[/dim]'}")
    console.print(f"Platform client: {config.platform.client or '[dim]not set[/dim]'}")
    console.print(f"Prefix: {config.bot.prefix}")
    console.print(f"Admins: {', '.join(config.bot.admin_users) or '[dim]none[/dim]'}")
    console.print(f"Modules directory: {modules_dir} "
                  f"{'[green]✓[/green]' if modules_dir.exists() else '[dim]missing[/dim]'}")
    enabled = config.modules.enabled_modules
    console.print(f"Enabled modules: {', '.join(enabled) if enabled else 'all'}")


@app.command("modules")
def modules_cmd(
    config_path: Path = typer.Option(None, "--config", "-c", help="Path to config.json"),
):
    """列出 load_all 会发现的全部模块及其启用状态。"""
    from directbot.bus.event_bus import EventBus
    from directbot.dispatch.commands import CommandRouter
    from directbot.modules.registry import ModuleRegistry

    config = _load(config_path)

    async def _no_reply(thread_id: str, text: str) -> None:
        return None

    router = CommandRouter(config.bot.prefix, EventBus(), _no_reply)
    registry = ModuleRegistry(config.modules, router)

    table = Table(title="Modules")
    table.add_column("Module", style="cyan")
    table.add_column("Source")
    table.add_column("Enabled", style="green")

    for identifier in registry.discover():
        source = "bundled" if identifier in registry.manifest else str(registry.modules_path / f"{identifier}.py")
        table.add_row(identifier, source, "✓" if registry.is_enabled(identifier) else "✗")

    console.print(table)


if __name__ == "__main__":
    app()
