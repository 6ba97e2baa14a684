"""
入站消息队列模块 - 传输层与调度任务之间的显式通道。

本模块实现了 MessageBus 类，基于 asyncio.Queue 的生产者-消费者模式：

  实时通道 Supervisor ─┐
                       ├→ publish() → inbound 队列 → consume() → 调度任务（唯一消费者）
  推送通道 Supervisor ─┘

每条 TransportEvent 都带有 source 标记，同一生产者的事件顺序在队列中得以保留；
因为只有一个消费者，一条消息的「中间件 → 路由 → 模块分发」全部完成后
才会取下一条，天然满足单消费者的顺序保证。

【Java 开发者类比】
- asyncio.Queue 类似于 Java 的 LinkedBlockingQueue
- publish/consume 类似于 BlockingQueue.put()/take()
"""

import asyncio

from directbot.bus.events import TransportEvent


class MessageBus:
    """
    传输层入站事件总线。

    属性:
        inbound: 入站事件异步队列（Supervisor → 调度任务）
        _published: 各来源累计发布的事件数 {来源: 数量}
    """

    def __init__(self):
        self.inbound: asyncio.Queue[TransportEvent] = asyncio.Queue()
        self._published: dict[str, int] = {}

    async def publish(self, event: TransportEvent) -> None:
        """发布一条入站事件。"""
        await self.inbound.put(event)
        self._published[event.source] = self._published.get(event.source, 0) + 1

    def publish_nowait(self, event: TransportEvent) -> None:
        """
        非阻塞发布。

        供传输层的同步事件回调使用（队列无上限，不会抛 QueueFull）。
        """
        self.inbound.put_nowait(event)
        self._published[event.source] = self._published.get(event.source, 0) + 1

    async def consume(self) -> TransportEvent:
        """消费下一条入站事件（队列为空时异步等待）。"""
        return await self.inbound.get()

    def published_count(self, source: str) -> int:
        """某来源累计发布的事件数。"""
        return self._published.get(source, 0)

    @property
    def inbound_size(self) -> int:
        """待处理的入站事件数量。"""
        return self.inbound.qsize()
