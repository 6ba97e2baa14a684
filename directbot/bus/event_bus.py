"""
事件总线模块 - 带历史记录、统计和事件级中间件的发布/订阅中心。

本模块实现了 EventBus 类，是 directbot 中所有组件的通信中枢：
- ConnectionSupervisor 在这里广播连接状态变化
- CommandRouter 在这里广播 commandExecuted
- Bot 在这里广播 messageSent / heartbeat / ready 并统计计数

每次 emit() 都会：
1. 追加一条 EventRecord 到固定容量（1000）的环形缓冲，超出时淘汰最旧记录
2. 更新该事件名的统计（次数 +1，最后触发时间 = 现在）
3. 按订阅顺序依次 await 所有监听器（同一次 emit 内严格串行，不并发）

【核心设计：事件中间件】
use(name, middleware) 为「当前已注册的监听器」安装一个闸门：
中间件先执行，返回 False 或抛异常时，这些监听器在本次 emit 中全部跳过，
失败只记录日志，绝不向外传播。之后新订阅的监听器不受这个闸门约束。
闸门单独存放，监听器列表保持原样，因此被闸门覆盖的监听器仍然可以 unsubscribe。

【Java 开发者类比】
- subscribe/emit 类似于 Spring 的 @EventListener + ApplicationEventPublisher
- 历史缓冲类似于一个 CircularFifoQueue<EventRecord>
"""

from collections import deque
from datetime import datetime
from typing import Any, Callable

from loguru import logger

from directbot.bus.events import EventRecord, EventStats
from directbot.utils.helpers import maybe_await

# 监听器既可以是普通函数，也可以是协程函数
Listener = Callable[..., Any]

# 历史缓冲的默认容量
DEFAULT_HISTORY_SIZE = 1000


class EventBus:
    """
    发布/订阅事件总线。

    属性:
        max_history_size: 历史缓冲容量
        _listeners: 监听器字典 {事件名: [监听器列表]}，列表顺序即调用顺序
        _history: 历史记录环形缓冲
        _stats: 事件统计字典 {事件名: EventStats}
        _gates: 闸门字典 {事件名: [(中间件, 被覆盖的监听器列表)]}，按安装顺序
    """

    def __init__(self, max_history_size: int = DEFAULT_HISTORY_SIZE):
        self.max_history_size = max_history_size
        self._listeners: dict[str, list[Listener]] = {}
        self._gates: dict[str, list[tuple[Listener, list[Listener]]]] = {}
        # deque 的 maxlen 自动实现 FIFO 淘汰
        self._history: deque[EventRecord] = deque(maxlen=max_history_size)
        self._stats: dict[str, EventStats] = {}

    def subscribe(self, name: str, listener: Listener) -> None:
        """
        订阅事件。同一事件可以注册多个监听器，按注册顺序调用。

        参数:
            name: 事件名
            listener: 监听器（接收 emit 时传入的全部参数）
        """
        self._listeners.setdefault(name, []).append(listener)

    # 与 Node 风格保持一致的别名
    on = subscribe

    def unsubscribe(self, name: str, listener: Listener) -> bool:
        """
        取消订阅。

        返回:
            True 表示找到并移除了该监听器，False 表示未注册过
        """
        listeners = self._listeners.get(name, [])
        if listener not in listeners:
            return False
        listeners.remove(listener)
        for _, covered in self._gates.get(name, []):
            if listener in covered:
                covered.remove(listener)
        return True

    def listener_count(self, name: str) -> int:
        """返回某事件当前的监听器数量。"""
        return len(self._listeners.get(name, []))

    async def emit(self, name: str, *args: Any) -> bool:
        """
        触发事件。

        先记录历史和统计，再按订阅顺序依次 await 监听器。
        单个监听器抛出异常只记录日志，不影响其他监听器。

        参数:
            name: 事件名
            *args: 传给监听器的参数

        返回:
            True 表示该事件至少有一个监听器
        """
        now = datetime.now()

        stats = self._stats.setdefault(name, EventStats())
        stats.count += 1
        stats.last_emitted = now

        self._history.append(EventRecord(event=name, timestamp=now, args=len(args)))

        # 复制一份列表，避免监听器在回调中修改订阅关系导致迭代异常
        listeners = list(self._listeners.get(name, []))
        blocked = await self._run_gates(name, args)
        for listener in listeners:
            if listener in blocked:
                blocked.remove(listener)
                continue
            try:
                await maybe_await(listener(*args))
            except Exception as e:
                logger.error(f"Listener error for {name}: {e}")
        return bool(listeners)

    def use(self, name: str, middleware: Listener) -> None:
        """
        为事件安装中间件闸门，覆盖当前已注册的监听器。

        中间件返回 False 或抛出异常时，被覆盖的监听器在本次 emit 中全部跳过。

        参数:
            name: 事件名
            middleware: 中间件函数，参数与监听器相同
        """
        covered = list(self._listeners.get(name, []))
        self._gates.setdefault(name, []).append((middleware, covered))

    async def _run_gates(self, name: str, args: tuple) -> list[Listener]:
        """
        执行事件的全部闸门，返回本次 emit 需要跳过的监听器。

        后安装的闸门覆盖先安装的闸门的全部监听器，因此从最新的闸门开始执行；
        覆盖范围已经全部被拦下的闸门不再执行。
        """
        blocked: list[Listener] = []
        for middleware, covered in reversed(self._gates.get(name, [])):
            if not covered or all(listener in blocked for listener in covered):
                continue
            try:
                result = await maybe_await(middleware(*args))
            except Exception as e:
                logger.error(f"Middleware error for {name}: {e}")
                result = False
            if result is False:
                logger.debug(f"Event {name} blocked by middleware")
                blocked.extend(covered)
        return blocked

    def get_stats(self) -> dict[str, EventStats]:
        """获取所有事件的统计快照（副本，修改不影响总线）。"""
        return {
            name: EventStats(count=s.count, last_emitted=s.last_emitted)
            for name, s in self._stats.items()
        }

    def get_recent_events(self, limit: int = 10) -> list[EventRecord]:
        """
        获取最近的事件记录，按触发顺序排列（最旧在前）。

        参数:
            limit: 最多返回的条数
        """
        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    def clear_history(self) -> None:
        """清空历史记录和统计。"""
        self._history.clear()
        self._stats.clear()

    @property
    def history_size(self) -> int:
        """当前历史缓冲中的记录数。"""
        return len(self._history)
