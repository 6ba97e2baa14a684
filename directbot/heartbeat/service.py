"""
心跳服务实现 - 机器人运行期间定期广播统计快照。

本模块实现了周期性心跳机制：
- 按 bot.heartbeatInterval（毫秒）间隔触发
- 每次心跳取一次统计快照（uptime 随之刷新），记 debug 日志
- 在 EventBus 上广播 heartbeat 事件，模块和外部观察者可订阅

架构设计：
- 基于 asyncio.Task 的定期循环，先等待一个间隔再触发
- 统计的获取委托给外部回调（通常是 Bot.get_stats）

二开提示：
- 订阅 heartbeat 事件即可实现定时任务，例如定期上报指标
- trigger_now() 方法支持手动触发，适合调试
"""

import asyncio
from typing import Any, Callable

from loguru import logger

from directbot.bus.event_bus import EventBus

# 默认心跳间隔：30 秒
DEFAULT_HEARTBEAT_INTERVAL_MS = 30_000


class HeartbeatService:
    """
    心跳服务。

    属性:
        get_stats: 统计快照回调
        events: 事件总线
        interval_ms: 心跳间隔（毫秒），<= 0 表示禁用
    """

    def __init__(
        self,
        get_stats: Callable[[], dict[str, Any]],
        events: EventBus,
        interval_ms: int = DEFAULT_HEARTBEAT_INTERVAL_MS,
    ):
        self.get_stats = get_stats
        self.events = events
        self.interval_ms = interval_ms
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def enabled(self) -> bool:
        return self.interval_ms > 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """启动心跳服务。间隔 <= 0 时直接返回不启动。"""
        if not self.enabled:
            logger.info("Heartbeat disabled")
            return
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Heartbeat started (every {self.interval_ms}ms)")

    def stop(self) -> None:
        """停止心跳服务并取消循环任务。"""
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_ms / 1000)
                if self._running:
                    await self._tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Heartbeat error: {e}")

    async def _tick(self) -> dict[str, Any]:
        stats = self.get_stats()
        logger.debug(
            f"Heartbeat: uptime={int(stats.get('uptime', 0) // 1000)}s "
            f"received={stats.get('messages_received', 0)} sent={stats.get('messages_sent', 0)}"
        )
        await self.events.emit("heartbeat", stats)
        return stats

    async def trigger_now(self) -> dict[str, Any]:
        """手动触发一次心跳，返回统计快照。"""
        return await self._tick()
