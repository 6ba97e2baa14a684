"""
中间件链模块 - 入站消息拦截器。

中间件是一个接收 Message 的函数（普通函数或协程函数均可）：
- 返回 False：否决这条消息，后续中间件、命令路由、模块分发全部跳过
- 返回其他值（包括 None）：放行给下一个中间件
- 抛出异常：视同否决，记录日志并在 EventBus 上广播 error，不回复发送者

典型用途：屏蔽自己发出的消息、黑名单、限流、审计。
"""

from typing import Any, Callable

from loguru import logger

from directbot.bus.event_bus import EventBus
from directbot.bus.events import Message
from directbot.utils.helpers import maybe_await

Middleware = Callable[[Message], Any]


class MiddlewareChain:
    """按注册顺序串行执行的中间件列表。"""

    def __init__(self, events: EventBus | None = None):
        """
        参数:
            events: 事件总线，中间件抛异常时在这里广播 error（可选）
        """
        self.events = events
        self._middleware: list[Middleware] = []

    def use(self, middleware: Middleware) -> None:
        """追加一个中间件到链尾。"""
        self._middleware.append(middleware)
        logger.debug(f"Added middleware (total: {len(self._middleware)})")

    def remove(self, middleware: Middleware) -> bool:
        """移除中间件，返回是否找到。"""
        if middleware in self._middleware:
            self._middleware.remove(middleware)
            return True
        return False

    async def run(self, message: Message) -> bool:
        """
        依次执行所有中间件。

        返回:
            True 表示全部放行，False 表示被某个中间件否决
        """
        for middleware in list(self._middleware):
            try:
                result = await maybe_await(middleware(message))
            except Exception as e:
                logger.error(f"Middleware error, message dropped: {e}")
                if self.events is not None:
                    await self.events.emit("error", e)
                return False
            if result is False:
                logger.debug(f"Message from {message.sender_id} blocked by middleware")
                return False
        return True

    def __len__(self) -> int:
        return len(self._middleware)
