"""
机器人主体模块 - 把所有组件组装在一起的组合根。

Bot 负责：
1. 认证：优先导入保存的会话状态，失效时（允许的话）用密码重新登录
2. 组装：EventBus、MessageBus、两条连接的 Supervisor、中间件链、命令路由、模块注册表
3. 运行：启动调度任务、加载模块、连接两条通道、启动心跳
4. 出站：send_message / send_photo / send_voice，成功后广播 messageSent
5. 统计：订阅 message / messageSent / commandExecuted / error 事件计数
6. 关闭：标记停止 → 保存会话状态 → 断开两条通道 → 卸载全部模块（严格按此顺序）

【Java 开发者类比】
- Bot 相当于 Spring Boot 的 Application 主类 + ApplicationContext
- initialize() 相当于 refresh()，graceful_shutdown() 相当于 close()

二开提示：
- 在 initialize() 之前调用 use() / on_message() / register_command() 扩展行为
- 通过 on("heartbeat", ...) 等订阅任意事件
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any

from loguru import logger

from directbot.bus.event_bus import EventBus, Listener
from directbot.bus.queue import MessageBus
from directbot.config.schema import Config
from directbot.context import BotContext
from directbot.dispatch.commands import Command, CommandHandler, CommandRouter
from directbot.dispatch.middleware import Middleware, MiddlewareChain
from directbot.dispatch.pipeline import DispatchPipeline, MessageHandler
from directbot.errors import AuthenticationError
from directbot.heartbeat.service import HeartbeatService
from directbot.modules.base import BotModule
from directbot.modules.registry import ModuleRegistry
from directbot.session.manager import SessionStore
from directbot.transport.base import Account, PlatformClient
from directbot.transport.manager import ConnectionManager
from directbot.transport.supervisor import Sleeper
from directbot.utils.helpers import truncate_string


@dataclass
class BotStats:
    """运行统计计数。uptime 单位为毫秒，在 get_stats() 时刷新。"""
    messages_received: int = 0
    messages_sent: int = 0
    commands_executed: int = 0
    errors: int = 0
    uptime: float = 0


class Bot:
    """
    聊天自动化机器人。

    属性:
        config: 全局配置
        client: 平台客户端
        events: 事件总线
        bus: 入站消息总线
        session: 会话状态存储
        connections: 连接管理器（realtime / push 两个 Supervisor）
        middleware: 中间件链
        commands: 命令路由器
        modules: 模块注册表
        pipeline: 调度流水线
        heartbeat: 心跳服务
        context: 传给模块的能力集合
        user: 当前登录账号
    """

    def __init__(
        self,
        config: Config,
        client: PlatformClient,
        session: SessionStore | None = None,
        manifest: dict[str, type[BotModule]] | None = None,
        sleep: Sleeper = asyncio.sleep,
    ):
        """
        参数:
            config: 全局配置
            client: 平台客户端
            session: 会话状态存储，默认使用 account.sessionPath
            manifest: 内置模块清单，None 表示使用默认清单
            sleep: 重连退避等待函数，测试时可替换
        """
        self.config = config
        self.client = client
        self.events = EventBus()
        self.bus = MessageBus()
        self.session = session or SessionStore(config.account.session_path)
        self.connections = ConnectionManager(config, client, self.events, self.bus, sleep=sleep)

        self.middleware = MiddlewareChain(self.events)
        self.commands = CommandRouter(
            config.bot.prefix,
            self.events,
            self.send_message,
            admin_check=config.is_admin,
        )
        self.modules = ModuleRegistry(config.modules, self.commands, manifest)
        self.pipeline = DispatchPipeline(self.commands, self.middleware, self.modules, self.events)
        self.heartbeat = HeartbeatService(self.get_stats, self.events, config.bot.heartbeat_interval)

        self.context = BotContext(
            config=config,
            events=self.events,
            commands=self.commands,
            modules=self.modules,
            send_message=self.send_message,
            send_photo=self.send_photo,
            send_voice=self.send_voice,
            send_typing=self.send_typing,
            mark_seen=self.mark_seen,
            get_stats=self.get_stats,
            shutdown=self.graceful_shutdown,
        )
        self.modules.attach(self.context)

        self.user: Account | None = None
        self.stats = BotStats()
        self._running = False
        self._shutting_down = False
        self._start_time: float | None = None
        self._dispatch_task: asyncio.Task | None = None
        self._stopped = asyncio.Event()

        self._setup_event_handlers()

    def _setup_event_handlers(self) -> None:
        self.events.subscribe("message", self._count_received)
        self.events.subscribe("messageSent", self._count_sent)
        self.events.subscribe("commandExecuted", self._count_command)
        self.events.subscribe("error", self._count_error)
        self.events.subscribe("auth", self._on_push_auth)

    def _count_received(self, *_: Any) -> None:
        self.stats.messages_received += 1

    def _count_sent(self, *_: Any) -> None:
        self.stats.messages_sent += 1

    def _count_command(self, *_: Any) -> None:
        self.stats.commands_executed += 1

    def _count_error(self, error: Any = None) -> None:
        self.stats.errors += 1
        logger.debug(f"Bot error recorded: {error}")

    async def _on_push_auth(self, *_: Any) -> None:
        # 推送通道认证后令牌会更新，需要立即保存完整会话状态
        logger.info("Push channel authenticated, saving session state")
        await self._persist_state()

    @property
    def is_running(self) -> bool:
        return self._running

    async def initialize(self) -> None:
        """
        启动机器人。

        顺序：认证 → 加载模块 → 启动调度任务 → 连接两条通道 → ready → 心跳。

        异常:
            AuthenticationError: 会话失效且无法重新登录，机器人不会进入运行状态
        """
        logger.info("Initializing bot...")
        await self._authenticate()

        await self.modules.load_all()

        self._stopped.clear()
        self._shutting_down = False
        self._dispatch_task = asyncio.create_task(self.pipeline.run(self.bus))
        await self.connections.connect_all()

        self._running = True
        self._start_time = time.monotonic()
        logger.info(f"Bot initialized as @{self.user.username} (ID: {self.user.user_id})")
        await self.events.emit("ready")

        await self.heartbeat.start()

    async def _authenticate(self) -> None:
        state = self.session.load_state()
        if state:
            try:
                await self.client.import_state(state)
                self.user = await self.client.current_user()
                logger.info("Logged in using saved session state")
            except Exception as e:
                logger.warning(f"Saved session state invalid or expired ({e}), clearing it")
                self.user = None
                self.session.clear_session()

        if self.user is not None:
            return

        account = self.config.account
        if not account.allow_fresh_login:
            raise AuthenticationError("Fresh login disabled and session login failed")
        if not account.password:
            raise AuthenticationError("Password required for fresh login")

        logger.info(f"Attempting fresh login as {account.username}...")
        try:
            await self.client.login(account.username, account.password)
            self.user = await self.client.current_user()
        except AuthenticationError:
            raise
        except Exception as e:
            raise AuthenticationError(f"Login failed: {e}") from e

        await self._persist_state()
        logger.info("Fresh login successful, session state saved")

    async def _persist_state(self) -> bool:
        try:
            state = await self.client.export_state()
        except Exception as e:
            logger.error(f"Failed to export session state: {e}")
            self.stats.errors += 1
            return False
        return self.session.save_state(state)

    # ========== 扩展点 ==========

    def use(self, middleware: Middleware) -> None:
        """添加中间件（按注册顺序执行）。"""
        self.middleware.use(middleware)

    def on_message(self, handler: MessageHandler) -> None:
        """添加自由消息处理器。"""
        self.pipeline.add_message_handler(handler)

    def register_command(self, name: str, handler: CommandHandler, **options: Any) -> Command:
        """注册机器人级命令（不属于任何模块，不会被模块卸载清理）。"""
        return self.commands.register(name, handler, **options)

    def on(self, event: str, listener: Listener) -> None:
        self.events.subscribe(event, listener)

    def is_admin(self, user_id: str) -> bool:
        return self.config.is_admin(user_id)

    # ========== 出站 ==========

    async def send_message(self, thread_id: str, text: str) -> Any:
        """发送文本消息，成功后广播 messageSent。发送失败时异常向上抛出。"""
        try:
            result = await self.client.realtime.send_text(thread_id, text)
        except Exception as e:
            logger.error(f"Failed to send message to {thread_id}: {e}")
            raise
        await self.events.emit("messageSent", {"thread_id": thread_id, "content": text, "result": result})
        logger.info(f"Sent message to {thread_id}: {truncate_string(text, 50)}")
        return result

    async def send_photo(self, thread_id: str, photo: bytes, caption: str = "") -> Any:
        try:
            result = await self.client.realtime.broadcast_photo(thread_id, photo, caption)
        except Exception as e:
            logger.error(f"Failed to send photo to {thread_id}: {e}")
            raise
        await self.events.emit("messageSent", {"thread_id": thread_id, "type": "photo", "caption": caption})
        logger.info(f"Sent photo to {thread_id}")
        return result

    async def send_voice(self, thread_id: str, voice: bytes) -> Any:
        try:
            result = await self.client.realtime.broadcast_voice(thread_id, voice)
        except Exception as e:
            logger.error(f"Failed to send voice to {thread_id}: {e}")
            raise
        await self.events.emit("messageSent", {"thread_id": thread_id, "type": "voice"})
        logger.info(f"Sent voice message to {thread_id}")
        return result

    async def send_typing(self, thread_id: str, active: bool = True) -> None:
        """发送输入状态。未连接或失败时只记录日志。"""
        if not self.connections.is_connected:
            return
        try:
            await self.client.realtime.send_typing(thread_id, active)
        except Exception as e:
            logger.error(f"Failed to send typing indicator: {e}")

    async def mark_seen(self, thread_id: str, item_id: str) -> None:
        """标记已读。未连接或失败时只记录日志。"""
        if not self.connections.is_connected:
            return
        try:
            await self.client.realtime.mark_seen(thread_id, item_id)
        except Exception as e:
            logger.error(f"Failed to mark as seen: {e}")

    # ========== 状态 ==========

    def get_stats(self) -> dict[str, Any]:
        """统计快照（刷新 uptime）。"""
        if self._start_time is not None and self._running:
            self.stats.uptime = (time.monotonic() - self._start_time) * 1000
        return {
            "messages_received": self.stats.messages_received,
            "messages_sent": self.stats.messages_sent,
            "commands_executed": self.stats.commands_executed,
            "errors": self.stats.errors,
            "uptime": self.stats.uptime,
            "is_running": self._running,
            "is_connected": self.connections.is_connected,
            "user": self.user.username if self.user else None,
            "user_id": self.user.user_id if self.user else None,
            "modules": self.modules.get_loaded_modules(),
            "connections": self.connections.get_status(),
            "events": {name: s.count for name, s in self.events.get_stats().items()},
        }

    # ========== 关闭 ==========

    async def graceful_shutdown(self) -> None:
        """
        优雅关闭（重复调用只执行一次）：
        标记停止 → 保存会话状态 → 断开两条通道 → 卸载全部模块 → 停止调度任务。
        """
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.info("Initiating graceful shutdown...")

        self._running = False
        self.heartbeat.stop()

        if await self._persist_state():
            logger.info("Final session state saved")

        await self.connections.disconnect_all()
        await self.modules.unload_all()

        self.pipeline.stop()
        task, self._dispatch_task = self._dispatch_task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._stopped.set()
        logger.info("Graceful shutdown completed")

    async def wait_until_stopped(self) -> None:
        """阻塞直到 graceful_shutdown() 完成。"""
        await self._stopped.wait()
