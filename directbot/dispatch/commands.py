"""
命令路由模块 (dispatch/commands.py)

模块职责：
    管理所有已注册的命令，解析带前缀的消息文本，执行权限与冷却检查后调用命令处理器。

命令执行流程：
    ".reload auto_responder" → 去掉前缀 → 按空白切分 → 命令名 "reload"（大小写不敏感）
    → 参数 ["auto_responder"] → 管理员检查 → 冷却检查 → 调用处理器 → 广播 commandExecuted

各种结果（CommandOutcome）：
    - UNKNOWN：未注册的命令，静默忽略（只记 debug 日志，不回复）
    - DENIED：admin_only 命令被非管理员调用，回复固定的无权限提示
    - COOLDOWN：同一发送者冷却未结束，回复剩余秒数（向上取整），不调用处理器
    - EXECUTED：处理器成功执行
    - FAILED：处理器抛异常，记录日志并回复通用的失败提示

冷却策略：
    命令被接受时（调用处理器之前）记录 last_used[发送者]，即使处理器失败也会消耗冷却。

卸载竞态：
    dispatch() 在调用处理器之前就取得了 Command 对象，因此模块卸载时
    正在执行的命令会用旧处理器跑完；卸载之后到达的调用视为未知命令。

设计模式对比（Java 视角）：
    类似于 Spring MVC 的 DispatcherServlet + HandlerInterceptor：
    - register() 相当于注册一个 @RequestMapping
    - 权限 / 冷却检查相当于拦截器的 preHandle
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable

from loguru import logger

from directbot.bus.event_bus import EventBus
from directbot.bus.events import Message
from directbot.utils.helpers import maybe_await, now_ms

# 固定回复文本
PERMISSION_DENIED_TEXT = "❌ This command requires admin privileges."
COOLDOWN_TEXT = "⏰ Command on cooldown. Try again in {seconds} seconds."
COMMAND_FAILED_TEXT = "❌ An error occurred while executing the command."

# 命令处理器签名：(消息, 参数列表) -> 任意（可以是协程）
CommandHandler = Callable[[Message, list[str]], Any]
# 回复函数签名：(会话 ID, 文本) -> 协程
ReplyFn = Callable[[str, str], Awaitable[Any]]


class CommandOutcome(str, Enum):
    """一次命令调度的结果。"""
    UNKNOWN = "unknown"
    DENIED = "denied"
    COOLDOWN = "cooldown"
    EXECUTED = "executed"
    FAILED = "failed"


@dataclass
class Command:
    """
    已注册的命令。

    属性:
        name: 命令名（小写）
        handler: 命令处理器
        description: 帮助文本中显示的描述
        usage: 用法说明（不含前缀）
        admin_only: 是否仅管理员可用
        cooldown_ms: 同一发送者两次调用的最小间隔（毫秒），0 表示不限制
        owner: 注册该命令的模块实例；机器人自身注册的命令为 None
        last_used: 冷却记录 {发送者 ID: 上次被接受的时间（毫秒）}
    """

    name: str
    handler: CommandHandler
    description: str = "No description"
    usage: str = ""
    admin_only: bool = False
    cooldown_ms: int = 0
    owner: Any = None
    last_used: dict[str, float] = field(default_factory=dict)


class CommandRouter:
    """
    命令注册表与调度器。

    内部使用 dict[str, Command] 存储，以小写命令名为键。
    同名命令重复注册会覆盖旧命令（后注册的优先）。
    """

    def __init__(
        self,
        prefix: str,
        events: EventBus,
        reply: ReplyFn,
        admin_users: Iterable[str] = (),
        clock: Callable[[], float] = now_ms,
        admin_check: Callable[[str], bool] | None = None,
    ):
        """
        参数:
            prefix: 命令前缀
            events: 事件总线（广播 commandExecuted / error）
            reply: 回复函数，用于发送无权限、冷却中、执行失败等提示
            admin_users: 管理员用户 ID（未提供 admin_check 时使用）
            clock: 毫秒时钟，测试时可替换
            admin_check: 管理员判定函数；提供时以它为准，运行时修改配置立即生效
        """
        self.prefix = prefix
        self.events = events
        self._reply_fn = reply
        self.admin_users = {str(u) for u in admin_users}
        self._clock = clock
        self._admin_check = admin_check
        self._commands: dict[str, Command] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        description: str = "No description",
        usage: str | None = None,
        admin_only: bool = False,
        cooldown_ms: int = 0,
        owner: Any = None,
    ) -> Command:
        """
        注册一个命令。

        参数:
            name: 命令名（大小写不敏感）
            handler: 处理器，签名为 handler(message, args)
            owner: 注册者（模块实例），模块卸载时据此清理命令

        返回:
            新建的 Command 对象
        """
        key = name.lower()
        if key in self._commands:
            logger.debug(f"Overriding existing command: {key}")
        command = Command(
            name=key,
            handler=handler,
            description=description,
            usage=usage or key,
            admin_only=admin_only,
            cooldown_ms=cooldown_ms,
            owner=owner,
        )
        self._commands[key] = command
        logger.debug(f"Registered command: {key}")
        return command

    def unregister(self, name: str, owner: Any = None) -> bool:
        """
        注销命令。

        参数:
            name: 命令名
            owner: 指定时只有属于该注册者的命令才会被移除（避免误删被覆盖后的同名命令）

        返回:
            True 表示确实移除了命令
        """
        key = name.lower()
        command = self._commands.get(key)
        if command is None:
            return False
        if owner is not None and command.owner is not owner:
            return False
        del self._commands[key]
        return True

    def unregister_owner(self, owner: Any) -> list[str]:
        """移除某注册者的全部命令，返回被移除的命令名。"""
        names = self.names_owned_by(owner)
        for name in names:
            del self._commands[name]
        return names

    def names_owned_by(self, owner: Any) -> list[str]:
        """某注册者当前拥有的命令名（注册顺序）。"""
        return [name for name, cmd in self._commands.items() if cmd.owner is owner]

    def get(self, name: str) -> Command | None:
        """按名称（大小写不敏感）获取命令。"""
        return self._commands.get(name.lower())

    @property
    def commands(self) -> list[Command]:
        """全部命令（注册顺序）。"""
        return list(self._commands.values())

    def is_admin(self, user_id: str) -> bool:
        if self._admin_check is not None:
            return self._admin_check(str(user_id))
        return str(user_id) in self.admin_users

    def is_command(self, text: str | None) -> bool:
        """文本是否以命令前缀开头。"""
        return bool(text) and text.startswith(self.prefix)

    def parse(self, text: str | None) -> tuple[str, list[str]] | None:
        """
        解析命令文本。

        返回:
            (小写命令名, 参数列表)；文本不以前缀开头时返回 None。
            只有前缀没有命令名时命令名为空字符串。
        """
        if not self.is_command(text):
            return None
        parts = text[len(self.prefix):].split()
        if not parts:
            return "", []
        return parts[0].lower(), parts[1:]

    async def dispatch(self, message: Message) -> CommandOutcome:
        """
        调度一条命令消息。路由器自身从不抛异常。

        参数:
            message: 以命令前缀开头的入站消息

        返回:
            CommandOutcome 调度结果
        """
        parsed = self.parse(message.text)
        if parsed is None:
            return CommandOutcome.UNKNOWN
        name, args = parsed

        command = self._commands.get(name)
        if command is None:
            logger.debug(f"Unknown command: {name!r}")
            return CommandOutcome.UNKNOWN

        if command.admin_only and not self.is_admin(message.sender_id):
            logger.info(f"Denied admin command {name} for {message.sender_id}")
            await self._reply(message.thread_id, PERMISSION_DENIED_TEXT)
            return CommandOutcome.DENIED

        if command.cooldown_ms > 0:
            now = self._clock()
            last = command.last_used.get(message.sender_id)
            if last is not None:
                time_left = last + command.cooldown_ms - now
                if time_left > 0:
                    seconds = math.ceil(time_left / 1000)
                    await self._reply(message.thread_id, COOLDOWN_TEXT.format(seconds=seconds))
                    return CommandOutcome.COOLDOWN
            # 接受时即记录，处理器失败也消耗冷却
            command.last_used[message.sender_id] = now

        try:
            await maybe_await(command.handler(message, args))
        except Exception as e:
            logger.error(f"Command execution error in {name}: {e}")
            await self._reply(message.thread_id, COMMAND_FAILED_TEXT)
            await self.events.emit("error", e)
            return CommandOutcome.FAILED

        await self.events.emit("commandExecuted", {"command": name, "user": message.sender_id})
        logger.info(f"Executed command: {name} by @{message.sender_name}")
        return CommandOutcome.EXECUTED

    async def _reply(self, thread_id: str, text: str) -> None:
        try:
            await self._reply_fn(thread_id, text)
        except Exception as e:
            logger.error(f"Failed to reply to {thread_id}: {e}")

    def __len__(self) -> int:
        return len(self._commands)

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._commands
