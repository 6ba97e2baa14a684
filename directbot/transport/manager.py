"""
连接管理器模块 - 统一持有实时通道和推送通道的两个 Supervisor。

本模块负责：
1. 根据配置为平台客户端的两条 Transport 各创建一个 ConnectionSupervisor
2. 为每次连接尝试生成 ConnectOptions（实时通道在这里拉取收件箱快照）
3. 统一连接 / 断开，并提供状态快照

两个 Supervisor 互不共享状态：一条通道进入 FAILED 不影响另一条。

【Java 开发者类比】
- 相当于一个持有两个连接池的 Facade，connect_all/disconnect_all 类似 SmartLifecycle 的 start/stop
"""

import asyncio
from typing import Any

from loguru import logger

from directbot.bus.event_bus import EventBus
from directbot.bus.queue import MessageBus
from directbot.config.schema import Config
from directbot.transport.base import ConnectOptions, PlatformClient
from directbot.transport.supervisor import ConnectionSupervisor, Sleeper

REALTIME = "realtime"
PUSH = "push"


class ConnectionManager:
    """
    连接管理器。

    属性:
        config: 全局配置
        client: 平台客户端
        supervisors: {通道名: Supervisor}，顺序为 realtime、push
    """

    def __init__(
        self,
        config: Config,
        client: PlatformClient,
        events: EventBus,
        bus: MessageBus,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.config = config
        self.client = client
        self.supervisors: dict[str, ConnectionSupervisor] = {
            REALTIME: ConnectionSupervisor(
                REALTIME,
                client.realtime,
                events,
                bus,
                reconnect_delay_ms=config.realtime.reconnect_delay,
                max_attempts=config.realtime.max_reconnect_attempts,
                options_factory=self._realtime_options,
                sleep=sleep,
            ),
            PUSH: ConnectionSupervisor(
                PUSH,
                client.push,
                events,
                bus,
                reconnect_delay_ms=config.push.reconnect_delay,
                max_attempts=config.push.max_reconnect_attempts,
                options_factory=self._push_options,
                sleep=sleep,
            ),
        }

    @property
    def realtime(self) -> ConnectionSupervisor:
        return self.supervisors[REALTIME]

    @property
    def push(self) -> ConnectionSupervisor:
        return self.supervisors[PUSH]

    def get(self, name: str) -> ConnectionSupervisor | None:
        return self.supervisors.get(name)

    async def _realtime_options(self) -> ConnectOptions:
        cfg = self.config.realtime
        snapshot = None
        if cfg.fetch_inbox_snapshot:
            logger.debug("Fetching inbox snapshot before realtime connect")
            snapshot = await self.client.fetch_inbox_snapshot()
        return ConnectOptions(
            trace_enabled=cfg.trace_enabled,
            subscriptions=list(cfg.subscriptions),
            prior_inbox_snapshot=snapshot,
        )

    async def _push_options(self) -> ConnectOptions:
        return ConnectOptions(trace_enabled=self.config.push.trace_enabled)

    async def connect_all(self) -> dict[str, bool]:
        """
        依次连接两条通道。首次连接失败的通道会在后台自行重试。

        返回:
            {通道名: 本次调用后是否已连接}
        """
        results = {}
        for name, supervisor in self.supervisors.items():
            results[name] = await supervisor.connect()
        logger.info(f"Connections: {', '.join(f'{n}={s.state.value}' for n, s in self.supervisors.items())}")
        return results

    async def disconnect_all(self) -> None:
        """断开全部通道并取消挂起的重试。单条通道的错误不影响另一条。"""
        for name, supervisor in self.supervisors.items():
            try:
                await supervisor.disconnect()
            except Exception as e:
                logger.error(f"Error disconnecting {name}: {e}")

    @property
    def is_connected(self) -> bool:
        """实时通道是否在线（消息收发依赖它）。"""
        return self.realtime.is_connected

    def get_status(self) -> dict[str, Any]:
        return {name: supervisor.status() for name, supervisor in self.supervisors.items()}
