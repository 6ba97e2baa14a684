"""
总线模块 - 实现传输层、调度流水线与模块之间的解耦通信。

本模块提供两条总线：
- EventBus：带历史记录和统计的发布/订阅中心，所有组件都通过它广播事件
  （connectionState、commandExecuted、messageSent、heartbeat 等）
- MessageBus：传输层 → 调度任务的显式入站通道（asyncio.Queue），
  实时通道和推送通道的事件都带着来源标记进入同一个队列，由唯一的调度任务消费

消息流向：
  平台事件 → Transport → ConnectionSupervisor → MessageBus → DispatchPipeline
  DispatchPipeline / 模块 → Bot.send_message → Transport → EventBus(messageSent)

【Java 开发者类比】
- EventBus 类似于 Guava 的 EventBus + 一个固定容量的审计日志
- MessageBus 类似于 LinkedBlockingQueue + 单消费者线程
"""

from directbot.bus.event_bus import EventBus
from directbot.bus.events import ContentKind, EventRecord, EventStats, Message, TransportEvent
from directbot.bus.queue import MessageBus

__all__ = [
    "EventBus",
    "MessageBus",
    "Message",
    "ContentKind",
    "TransportEvent",
    "EventRecord",
    "EventStats",
]
