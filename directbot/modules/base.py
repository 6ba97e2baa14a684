"""
模块基类 (modules/base.py)

模块职责：
    定义所有可插拔行为单元（模块）的统一形状 BotModule。
    三个生命周期钩子都有空实现，子类只覆盖自己需要的部分：
    - initialize()：加载后、激活前调用（建目录、预热数据等）
    - cleanup()：卸载时调用，先于命令清理执行
    - on_message(message)：每条非命令消息按加载顺序分发到这里

    基类还提供了注册命令、发送消息和带模块名前缀的日志等便捷方法。

设计模式对比（Java 视角）：
    相当于一个带默认方法的 interface（Java 8 default method）。

二开提示：
    外部模块放在 modules.modulesPath 目录下，文件需要定义：
        MODULE_API_VERSION = 1
        module_class = MyModule   # BotModule 子类
"""

from typing import Any

from loguru import logger

from directbot.bus.events import Message
from directbot.context import BotContext
from directbot.dispatch.commands import Command, CommandHandler


class BotModule:
    """
    可插拔模块基类。

    属性:
        name: 显示名（日志、modules 命令中使用）
        description: 一句话描述
        context: 机器人上下文（能力句柄集合）
        config: 本模块的配置字典
    """

    name: str = ""
    description: str = "No description"

    def __init__(self, context: BotContext, config: dict[str, Any] | None = None):
        self.context = context
        self.config = config or {}

    async def initialize(self) -> None:
        """加载后的初始化钩子，默认什么都不做。"""

    async def cleanup(self) -> None:
        """卸载前的清理钩子，默认什么都不做。"""

    async def on_message(self, message: Message) -> None:
        """非命令消息钩子，默认什么都不做。"""

    def register_command(
        self,
        name: str,
        handler: CommandHandler,
        description: str = "No description",
        usage: str | None = None,
        admin_only: bool = False,
        cooldown_ms: int = 0,
    ) -> Command:
        """注册一个归属于本模块的命令，模块卸载时自动移除。"""
        return self.context.commands.register(
            name,
            handler,
            description=description,
            usage=usage,
            admin_only=admin_only,
            cooldown_ms=cooldown_ms,
            owner=self,
        )

    @property
    def commands(self) -> list[str]:
        """本模块当前拥有的命令名。"""
        return self.context.commands.names_owned_by(self)

    async def send_message(self, thread_id: str, text: str) -> Any:
        return await self.context.send_message(thread_id, text)

    async def send_photo(self, thread_id: str, photo: bytes, caption: str = "") -> Any:
        return await self.context.send_photo(thread_id, photo, caption)

    def log(self, level: str, message: str) -> None:
        """带模块名前缀的日志。"""
        logger.opt(depth=1).log(level.upper(), f"[{self.name}] {message}")
