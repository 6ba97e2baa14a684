"""
机器人上下文模块 - 传给每个模块的不可变能力集合。

模块构造时收到一个 BotContext，里面是配置和一组能力句柄（发送消息、注册命令、
查询统计、关闭机器人等）。模块只能通过它与机器人交互，不直接触碰 Bot 的内部状态。

BotContext 是 frozen dataclass：字段本身不可重新赋值，
但字段指向的对象（如 CommandRouter）仍然是活的、共享的。
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from directbot.bus.event_bus import EventBus
from directbot.config.schema import Config
from directbot.dispatch.commands import CommandRouter

if TYPE_CHECKING:
    from directbot.modules.registry import ModuleRegistry


@dataclass(frozen=True)
class BotContext:
    """
    模块可用的能力集合。

    属性:
        config: 全局配置
        events: 事件总线
        commands: 命令路由器（注册 / 查询命令）
        modules: 模块注册表（列出、重载模块）
        send_message: (thread_id, text) -> 发送结果
        send_photo: (thread_id, photo_bytes, caption) -> 发送结果
        send_voice: (thread_id, voice_bytes) -> 发送结果
        send_typing: (thread_id, active) -> None
        mark_seen: (thread_id, item_id) -> None
        get_stats: () -> 统计字典
        shutdown: () -> 优雅关闭协程
    """

    config: Config
    events: EventBus
    commands: CommandRouter
    modules: "ModuleRegistry"
    send_message: Callable[[str, str], Awaitable[Any]]
    send_photo: Callable[..., Awaitable[Any]]
    send_voice: Callable[[str, bytes], Awaitable[Any]]
    send_typing: Callable[[str, bool], Awaitable[None]]
    mark_seen: Callable[[str, str], Awaitable[None]]
    get_stats: Callable[[], dict[str, Any]]
    shutdown: Callable[[], Awaitable[Any]]

    @property
    def prefix(self) -> str:
        """命令前缀。"""
        return self.config.bot.prefix

    def is_admin(self, user_id: str) -> bool:
        return self.config.is_admin(user_id)
