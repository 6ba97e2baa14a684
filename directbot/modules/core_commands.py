"""
核心命令模块 - 机器人自带的基础命令。

命令列表：
    help [command]     列出全部命令，或显示某个命令的详细用法
    ping               测试响应并报告发送延迟
    stats              机器人运行统计
    modules            已加载模块列表（管理员）
    reload <module>    重新加载模块（管理员）
    shutdown           关闭机器人（管理员）
"""

import asyncio
import time

from directbot.bus.events import Message
from directbot.modules.base import BotModule

# shutdown 命令回复后延迟多久再真正关闭（秒），让告别消息先发出去
DEFAULT_SHUTDOWN_DELAY_S = 1.0


def format_uptime(uptime_ms: float) -> str:
    """毫秒 → "1h 2m 3s"。"""
    total = int(uptime_ms // 1000)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours}h {minutes}m {seconds}s"


class CoreCommandsModule(BotModule):
    """基础命令集合。"""

    name = "CoreCommands"
    description = "Essential bot commands"

    def __init__(self, context, config=None):
        super().__init__(context, config)
        self.shutdown_delay = float(self.config.get("shutdownDelay", DEFAULT_SHUTDOWN_DELAY_S))
        self._shutdown_task: asyncio.Task | None = None

        self.register_command("help", self.help_command,
                              description="Show available commands", usage="help [command]")
        self.register_command("ping", self.ping_command,
                              description="Check bot responsiveness", usage="ping")
        self.register_command("stats", self.stats_command,
                              description="Show bot statistics", usage="stats")
        self.register_command("modules", self.modules_command,
                              description="List loaded modules", usage="modules", admin_only=True)
        self.register_command("reload", self.reload_command,
                              description="Reload a module", usage="reload <module>", admin_only=True)
        self.register_command("shutdown", self.shutdown_command,
                              description="Shutdown the bot", usage="shutdown", admin_only=True)

    async def help_command(self, message: Message, args: list[str]) -> None:
        prefix = self.context.prefix

        if args:
            name = args[0].lower()
            command = self.context.commands.get(name)
            if command is None:
                await self.send_message(message.thread_id, f"❓ Command '{name}' not found.")
                return

            lines = [f"📖 **{name}**", command.description, "", f"**Usage:** `{prefix}{command.usage}`"]
            if command.admin_only:
                lines.append("🔒 Admin only")
            if command.cooldown_ms > 0:
                lines.append(f"⏰ Cooldown: {command.cooldown_ms / 1000:g}s")
            await self.send_message(message.thread_id, "\n".join(lines))
            return

        listing = "\n".join(f"• `{prefix}{cmd.name}`" for cmd in self.context.commands.commands)
        await self.send_message(
            message.thread_id,
            f"🤖 **Available Commands**\n\n{listing}\n\n"
            f"Use `{prefix}help <command>` for detailed info.",
        )

    async def ping_command(self, message: Message, args: list[str]) -> None:
        start = time.monotonic()
        await self.send_message(message.thread_id, "🏓 Pong!")
        latency = int((time.monotonic() - start) * 1000)
        await self.send_message(message.thread_id, f"🏓 Pong! Latency: {latency}ms")

    async def stats_command(self, message: Message, args: list[str]) -> None:
        stats = self.context.get_stats()
        user = stats.get("user") or "Unknown"
        connected = "✅" if stats.get("is_connected") else "❌"
        text = "\n".join([
            "📊 **Bot Statistics**",
            "",
            f"👤 **User:** @{user}",
            f"⏰ **Uptime:** {format_uptime(stats.get('uptime', 0))}",
            f"📨 **Messages Received:** {stats.get('messages_received', 0)}",
            f"📤 **Messages Sent:** {stats.get('messages_sent', 0)}",
            f"🔧 **Commands Executed:** {stats.get('commands_executed', 0)}",
            f"❌ **Errors:** {stats.get('errors', 0)}",
            f"📦 **Modules:** {len(stats.get('modules', []))}",
            f"🔌 **Connected:** {connected}",
        ])
        await self.send_message(message.thread_id, text)

    async def modules_command(self, message: Message, args: list[str]) -> None:
        registry = self.context.modules
        loaded = registry.get_loaded_modules()
        if not loaded:
            await self.send_message(message.thread_id, "📦 No modules loaded.")
            return

        lines = []
        for identifier in loaded:
            module = registry.get(identifier)
            description = module.description if module else "No description"
            lines.append(f"• **{identifier}** - {description}")
        await self.send_message(
            message.thread_id,
            f"📦 **Loaded Modules ({len(loaded)})**\n\n" + "\n".join(lines),
        )

    async def reload_command(self, message: Message, args: list[str]) -> None:
        if not args:
            await self.send_message(message.thread_id, "❓ Please specify a module to reload.")
            return

        identifier = args[0]
        if await self.context.modules.reload(identifier):
            await self.send_message(message.thread_id, f"✅ Module '{identifier}' reloaded successfully.")
        else:
            await self.send_message(message.thread_id, f"❌ Failed to reload module '{identifier}'.")

    async def shutdown_command(self, message: Message, args: list[str]) -> None:
        await self.send_message(message.thread_id, "👋 Shutting down bot...")
        self.log("warning", f"Shutdown requested by @{message.sender_name}")
        self._shutdown_task = asyncio.create_task(self._delayed_shutdown())

    async def _delayed_shutdown(self) -> None:
        await asyncio.sleep(self.shutdown_delay)
        await self.context.shutdown()
