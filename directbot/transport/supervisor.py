"""
连接监管模块 - 通用的断线重连状态机。

本模块实现了 ConnectionSupervisor 类。实时通道和推送通道各持有一个实例，
两者共享完全相同的重试语义，互不共享任何状态。

状态流转：
  DISCONNECTED → CONNECTING → CONNECTED
  CONNECTING  --连接失败-->  RECONNECTING
  CONNECTED   --error/close--> RECONNECTING
  RECONNECTING --重试成功--> CONNECTED（重试计数清零）
  RECONNECTING --连续失败 max_attempts 次--> FAILED（终态，不再调度重试）
  任意状态 --disconnect()--> DISCONNECTED（取消挂起的重试）

【退避策略】
线性退避：第 n 次重试前等待 reconnect_delay_ms * n 毫秒（n 从 1 开始）。
例如 max_attempts=3、延迟 D 时，等待序列为 D、2D、3D，之后进入 FAILED。

【并发约束】
同一个 Supervisor 同一时刻最多只有一个连接尝试在进行中，
由状态本身保证（CONNECTING/CONNECTED/RECONNECTING 时 connect() 直接返回），
不依赖外部加锁。状态切换在协程内的第一个 await 之前完成，因此不会被交错打断。

【Java 开发者类比】
- 相当于一个手写的 Spring Retry + 状态机，重试任务类似 ScheduledExecutorService 中的延迟任务
"""

import asyncio
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable

from loguru import logger

from directbot.bus.event_bus import EventBus
from directbot.bus.events import TransportEvent
from directbot.bus.queue import MessageBus
from directbot.transport.base import (
    EVENT_AUTH,
    EVENT_CLOSE,
    EVENT_ERROR,
    EVENT_MESSAGE,
    EVENT_PRESENCE,
    EVENT_PUSH,
    EVENT_THREAD_UPDATE,
    EVENT_TYPING,
    EVENT_WARNING,
    ConnectOptions,
    Transport,
)

# 默认转发到 MessageBus 的传输层事件
DEFAULT_FORWARDED_EVENTS = (
    EVENT_MESSAGE,
    EVENT_THREAD_UPDATE,
    EVENT_TYPING,
    EVENT_PRESENCE,
    EVENT_PUSH,
    EVENT_AUTH,
    EVENT_WARNING,
)

OptionsFactory = Callable[[], Awaitable[ConnectOptions]]
Sleeper = Callable[[float], Awaitable[Any]]


class ConnectionState(str, Enum):
    """单条传输通道的连接状态。"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class ConnectionSupervisor:
    """
    单条传输通道的生命周期与重试策略的持有者。

    属性:
        name: 通道名（"realtime" / "push"），用于日志和事件
        transport: 被监管的 Transport（独占）
        events: 事件总线，状态变化在这里广播
        bus: 入站事件总线，传输层事件转发到这里（可选）
        reconnect_delay_ms: 退避基数（毫秒）
        max_attempts: 连续重试失败的上限
    """

    def __init__(
        self,
        name: str,
        transport: Transport,
        events: EventBus,
        bus: MessageBus | None = None,
        reconnect_delay_ms: int = 5000,
        max_attempts: int = 5,
        options_factory: OptionsFactory | None = None,
        forward_events: tuple[str, ...] = DEFAULT_FORWARDED_EVENTS,
        sleep: Sleeper = asyncio.sleep,
    ):
        """
        初始化 Supervisor 并订阅传输层事件。

        参数:
            options_factory: 每次连接尝试前调用，生成 ConnectOptions
                             （实时通道在这里拉取收件箱快照）
            forward_events: 需要转发到 MessageBus 的事件名
            sleep: 退避等待函数，测试时可替换为不真正等待的实现
        """
        self.name = name
        self.transport = transport
        self.events = events
        self.bus = bus
        self.reconnect_delay_ms = reconnect_delay_ms
        self.max_attempts = max_attempts
        self._options_factory = options_factory
        self._sleep = sleep

        self._state = ConnectionState.DISCONNECTED
        self._attempts = 0
        self._retry_task: asyncio.Task | None = None
        # 正在进行的 transport.connect()，同一时刻最多一个
        self._attempt_task: asyncio.Task | None = None
        # 每次 disconnect() 加一，旧代次的连接结果一律作废
        self._generation = 0

        transport.on(EVENT_ERROR, self._on_transport_error)
        transport.on(EVENT_CLOSE, self._on_transport_close)
        for event in forward_events:
            transport.on(event, partial(self._forward, event))

    @property
    def state(self) -> ConnectionState:
        """当前连接状态。"""
        return self._state

    @property
    def attempts(self) -> int:
        """当前连续重试次数（连接成功后清零）。"""
        return self._attempts

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    async def connect(self) -> bool:
        """
        建立连接（幂等）。

        - 已连接、连接中或重连中时直接返回，不会发起第二个连接尝试
        - 从 DISCONNECTED 或 FAILED 出发时重试计数清零，重新开始
        - 首次连接失败不抛异常，而是进入 RECONNECTING 并在后台按退避策略重试

        返回:
            True 表示本次调用后已处于 CONNECTED
        """
        if self._state in (
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.RECONNECTING,
        ):
            logger.debug(f"{self.name}: connect() ignored in state {self._state.value}")
            return self._state is ConnectionState.CONNECTED

        self._attempts = 0
        generation = self._generation
        await self._set_state(ConnectionState.CONNECTING)
        logger.info(f"Connecting {self.name}...")

        if await self._try_connect():
            return True

        # 连接期间如果被 disconnect()，不再调度重试
        if generation == self._generation and self._state is ConnectionState.CONNECTING:
            self._schedule_reconnect()
        return False

    async def disconnect(self) -> None:
        """
        断开连接，无论当前处于什么状态都会进入 DISCONNECTED，
        并取消挂起的重试和正在进行的连接尝试。
        传输层的断开错误只记录日志。
        """
        old = self._transition(ConnectionState.DISCONNECTED)
        self._generation += 1

        retry, self._retry_task = self._retry_task, None
        attempt, self._attempt_task = self._attempt_task, None
        await self._cancel(retry)
        opened = await self._cancel(attempt)

        if old is ConnectionState.CONNECTED or opened:
            try:
                await self.transport.disconnect()
                logger.info(f"{self.name} disconnected")
            except Exception as e:
                logger.error(f"{self.name} disconnect error: {e}")

        if old is not ConnectionState.DISCONNECTED:
            await self._publish_state(old, ConnectionState.DISCONNECTED)

    async def reconnect(self) -> bool:
        """显式重连：先断开再连接。FAILED 状态下恢复通道的唯一途径。"""
        await self.disconnect()
        return await self.connect()

    async def wait_settled(self) -> None:
        """等待挂起的重试任务结束（连上、进入 FAILED 或被取消）。"""
        task = self._retry_task
        if task and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass

    def status(self) -> dict[str, Any]:
        """状态快照，供 CLI 和 stats 命令展示。"""
        return {
            "state": self._state.value,
            "attempts": self._attempts,
            "max_attempts": self.max_attempts,
        }

    async def _cancel(self, task: asyncio.Task | None) -> bool:
        """
        取消并等待后台任务结束。

        返回:
            True 表示任务在取消生效前已经正常完成
        """
        if task is None or task is asyncio.current_task():
            return False
        if not task.done():
            task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return not task.cancelled() and task.exception() is None

    async def _open(self) -> None:
        options = await self._options_factory() if self._options_factory else ConnectOptions()
        await self.transport.connect(options)

    async def _try_connect(self) -> bool:
        """
        执行一次连接尝试。失败只记录日志并返回 False。

        transport.connect() 运行在独立任务中，disconnect() 可以取消它；
        尝试结束时代次已变化则结果作废（已建立的连接由 disconnect() 关闭）。
        """
        generation = self._generation
        attempt = asyncio.ensure_future(self._open())
        self._attempt_task = attempt
        try:
            await attempt
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            logger.info(f"{self.name} connection attempt cancelled")
            return False
        except Exception as e:
            logger.error(f"{self.name} connection failed: {e}")
            return False
        finally:
            if self._attempt_task is attempt:
                self._attempt_task = None

        if generation != self._generation:
            return False

        self._attempts = 0
        await self._set_state(ConnectionState.CONNECTED)
        logger.info(f"{self.name} connection established")
        return True

    def _schedule_reconnect(self) -> None:
        """进入 RECONNECTING 并启动后台重试任务。"""
        old = self._transition(ConnectionState.RECONNECTING)
        self._retry_task = asyncio.get_running_loop().create_task(self._run_reconnect(old))

    async def _run_reconnect(self, old: ConnectionState) -> None:
        await self._publish_state(old, ConnectionState.RECONNECTING)

        while self._attempts < self.max_attempts:
            if self._state is not ConnectionState.RECONNECTING:
                return
            self._attempts += 1
            delay_ms = self.reconnect_delay_ms * self._attempts
            logger.warning(
                f"Reconnecting {self.name} in {delay_ms}ms "
                f"(attempt {self._attempts}/{self.max_attempts})"
            )
            await self._sleep(delay_ms / 1000)
            if self._state is not ConnectionState.RECONNECTING:
                return
            if await self._try_connect():
                return

        if self._state is not ConnectionState.RECONNECTING:
            return
        await self._set_state(ConnectionState.FAILED)
        logger.error(f"{self.name}: max reconnection attempts reached ({self.max_attempts}), giving up")
        await self.events.emit("connectionFailed", self.name, self._attempts)

    def _on_transport_error(self, error: Any = None) -> None:
        logger.error(f"{self.name} transport error: {error}")
        self._connection_lost()

    def _on_transport_close(self, *args: Any) -> None:
        logger.warning(f"{self.name} connection closed")
        self._connection_lost()

    def _connection_lost(self) -> None:
        # 只有 CONNECTED 状态下的掉线才触发重连，其余状态下重试已经在进行或已被主动断开
        if self._state is not ConnectionState.CONNECTED:
            return
        self._attempts = 0
        self._schedule_reconnect()

    def _forward(self, event: str, *args: Any) -> None:
        """把传输层事件转发到 MessageBus。"""
        if self.bus is None:
            return
        payload = args[0] if len(args) == 1 else (args or None)
        self.bus.publish_nowait(TransportEvent(source=self.name, name=event, payload=payload))

    def _transition(self, new: ConnectionState) -> ConnectionState:
        """同步切换状态，返回旧状态。"""
        old, self._state = self._state, new
        if old is not new:
            logger.debug(f"{self.name}: {old.value} -> {new.value}")
        return old

    async def _set_state(self, new: ConnectionState) -> None:
        old = self._transition(new)
        await self._publish_state(old, new)

    async def _publish_state(self, old: ConnectionState, new: ConnectionState) -> None:
        if old is not new:
            await self.events.emit("connectionState", self.name, old.value, new.value)
