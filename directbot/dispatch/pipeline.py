"""
调度流水线模块 - 入站消息的完整处理链路与唯一的调度任务。

本模块实现了 DispatchPipeline 类：
- handle(message)：对单条消息执行「中间件 → 命令路由 / 自由消息分发 → message 事件」
- run(bus)：常驻的调度任务，持续消费 MessageBus，保证消息按到达顺序逐条处理

非 message 类的传输层事件（threadUpdate、typingIndicator、presenceUpdate、
push、auth、warning 等）原样转发到 EventBus，供模块和统计订阅。

【Java 开发者类比】
- run() 类似 JMS MessageListener 的消费循环（单线程消费者）
- handle() 类似 Servlet Filter Chain + DispatcherServlet 的组合
"""

import asyncio
from typing import TYPE_CHECKING, Any, Callable

from loguru import logger

from directbot.bus.event_bus import EventBus
from directbot.bus.events import Message, TransportEvent
from directbot.bus.queue import MessageBus
from directbot.dispatch.commands import CommandRouter
from directbot.dispatch.middleware import MiddlewareChain
from directbot.utils.helpers import maybe_await

if TYPE_CHECKING:
    from directbot.modules.registry import ModuleRegistry

MessageHandler = Callable[[Message], Any]


class DispatchPipeline:
    """
    入站消息调度流水线。

    属性:
        router: 命令路由器
        middleware: 中间件链
        modules: 模块注册表（on_message 分发目标）
        events: 事件总线
        _handlers: 外部注册的自由消息处理器（注册顺序）
    """

    def __init__(
        self,
        router: CommandRouter,
        middleware: MiddlewareChain,
        modules: "ModuleRegistry",
        events: EventBus,
    ):
        self.router = router
        self.middleware = middleware
        self.modules = modules
        self.events = events
        self._handlers: list[MessageHandler] = []
        self._running = False

    def add_message_handler(self, handler: MessageHandler) -> None:
        """注册一个自由消息处理器（非命令消息时调用）。"""
        self._handlers.append(handler)
        logger.debug(f"Added message handler (total: {len(self._handlers)})")

    async def handle(self, message: Message) -> None:
        """
        处理一条入站消息。本方法从不向外抛异常。

        参数:
            message: 入站消息
        """
        try:
            if not await self.middleware.run(message):
                return

            if self.router.is_command(message.text):
                await self.router.dispatch(message)
            else:
                await self._dispatch_regular(message)

            await self.events.emit("message", message)
        except Exception as e:
            logger.error(f"Error handling message: {e}")
            await self.events.emit("error", e)

    async def _dispatch_regular(self, message: Message) -> None:
        """自由消息：先外部处理器，再按加载顺序分发给各模块，逐个隔离异常并广播 error。"""
        for handler in list(self._handlers):
            try:
                await maybe_await(handler(message))
            except Exception as e:
                logger.error(f"Message handler error: {e}")
                await self.events.emit("error", e)

        for module in self.modules.modules:
            try:
                await module.on_message(message)
            except Exception as e:
                logger.error(f"Module {module.name} message handler error: {e}")
                await self.events.emit("error", e)

    async def handle_event(self, event: TransportEvent) -> None:
        """处理一条传输层事件：message 进入流水线，其他事件转发到 EventBus。"""
        if event.name == "message":
            if isinstance(event.payload, Message):
                await self.handle(event.payload)
            else:
                logger.warning(f"Dropping malformed message event from {event.source}")
            return

        logger.debug(f"{event.source} event: {event.name}")
        await self.events.emit(event.name, event.payload)

    async def run(self, bus: MessageBus) -> None:
        """
        启动调度主循环，持续从 MessageBus 消费事件。

        使用 1 秒超时轮询，以便 stop() 后能及时退出。
        """
        self._running = True
        logger.info("Dispatch loop started")

        while self._running:
            try:
                event = await asyncio.wait_for(bus.consume(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            await self.handle_event(event)

        logger.info("Dispatch loop stopped")

    def stop(self) -> None:
        """停止调度主循环（在下一次轮询超时后退出）。"""
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running
