"""
传输层基类模块 - 定义外部平台客户端需要满足的统一接口。

本模块提供两个抽象基类：
- Transport：一条长连接。实时通道和推送通道各是一个 Transport 实例
- PlatformClient：平台客户端，持有两条 Transport，并负责登录与会话状态

【核心抽象方法（Transport）】
- connect(options) / disconnect()：建立 / 断开连接
- send_text / send_typing / mark_seen / broadcast_photo / broadcast_voice：出站操作

【公共能力（Transport）】
- on(event, callback)：订阅传输层事件（message、threadUpdate、typingIndicator、
  presenceUpdate、error、close，推送通道另有 push、auth、warning）
- _emit(event, *args)：子类收到平台事件后调用，按订阅顺序通知回调

【Java 开发者类比】
- Transport 相当于 Java 的 abstract class + interface
- on/_emit 相当于一个最小化的 Observer 模式实现
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

from directbot.utils.helpers import spawn_tracked

# 标准事件名
EVENT_MESSAGE = "message"
EVENT_THREAD_UPDATE = "threadUpdate"
EVENT_TYPING = "typingIndicator"
EVENT_PRESENCE = "presenceUpdate"
EVENT_ERROR = "error"
EVENT_CLOSE = "close"
EVENT_PUSH = "push"
EVENT_AUTH = "auth"
EVENT_WARNING = "warning"


@dataclass
class ConnectOptions:
    """
    连接参数。

    属性:
        trace_enabled: 是否开启协议级跟踪日志
        auto_reconnect: 是否允许底层客户端自行重连（外层 Supervisor 仍然生效）
        subscriptions: 实时通道订阅的主题列表
        prior_inbox_snapshot: 连接前拉取的收件箱快照，实时通道用它续接消息序列
    """

    trace_enabled: bool = False
    auto_reconnect: bool = True
    subscriptions: list[str] = field(default_factory=list)
    prior_inbox_snapshot: Any = None


@dataclass(frozen=True)
class Account:
    """当前登录的平台账号。"""

    user_id: str
    username: str
    full_name: str = ""


class Transport(ABC):
    """
    长连接抽象基类。

    属性:
        name: 通道标识名（"realtime" / "push"），子类可覆盖
        _callbacks: 事件回调字典 {事件名: [回调列表]}
        _tasks: 协程回调产生的后台任务（持有引用直到结束）
    """

    name: str = "transport"

    def __init__(self):
        self._callbacks: dict[str, list[Callable[..., Any]]] = {}
        self._tasks: set[asyncio.Task] = set()

    @abstractmethod
    async def connect(self, options: ConnectOptions) -> None:
        """
        建立连接。失败时抛出异常（通常是 TransportError），
        由 ConnectionSupervisor 负责重试。
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """断开连接并释放资源。"""

    async def send_text(self, thread_id: str, text: str) -> Any:
        """向会话发送文本消息，返回平台的发送结果。"""
        raise NotImplementedError(f"{self.name} transport cannot send text")

    async def send_typing(self, thread_id: str, active: bool = True) -> None:
        """发送「正在输入」状态。"""
        raise NotImplementedError(f"{self.name} transport cannot send typing indicators")

    async def mark_seen(self, thread_id: str, item_id: str) -> None:
        """将会话中的某条消息标记为已读。"""
        raise NotImplementedError(f"{self.name} transport cannot mark items as seen")

    async def broadcast_photo(self, thread_id: str, photo: bytes, caption: str = "") -> Any:
        """向会话发送图片。"""
        raise NotImplementedError(f"{self.name} transport cannot send photos")

    async def broadcast_voice(self, thread_id: str, voice: bytes) -> Any:
        """向会话发送语音。"""
        raise NotImplementedError(f"{self.name} transport cannot send voice notes")

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        """
        订阅传输层事件。

        参数:
            event: 事件名
            callback: 回调函数，可以是普通函数或协程函数
        """
        self._callbacks.setdefault(event, []).append(callback)

    def off(self, event: str, callback: Callable[..., Any]) -> None:
        """取消订阅，未订阅过时静默忽略。"""
        callbacks = self._callbacks.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def _emit(self, event: str, *args: Any) -> None:
        """
        通知事件回调（子类在收到平台事件后调用）。

        协程回调会被调度为后台任务，因此 _emit 本身不会阻塞平台客户端的读循环；
        任务异常会在任务结束时记录日志。
        """
        for callback in list(self._callbacks.get(event, [])):
            try:
                result = callback(*args)
                if asyncio.iscoroutine(result):
                    spawn_tracked(result, self._tasks, f"{self.name} {event} callback")
            except Exception as e:
                logger.error(f"Error in {self.name} {event} callback: {e}")


class PlatformClient(ABC):
    """
    平台客户端抽象基类。

    一个 PlatformClient 提供两条独立的长连接和登录相关能力。
    会话状态是不透明的字符串，框架只负责存取，不解析其内部结构。
    """

    @property
    @abstractmethod
    def realtime(self) -> Transport:
        """实时事件通道（私信、输入状态、在线状态等）。"""

    @property
    @abstractmethod
    def push(self) -> Transport:
        """推送通知通道。"""

    @abstractmethod
    async def import_state(self, state: str) -> None:
        """导入之前保存的会话状态。"""

    @abstractmethod
    async def export_state(self) -> str:
        """导出当前会话状态（包含 cookie、设备信息、推送令牌等）。"""

    @abstractmethod
    async def login(self, username: str, password: str) -> None:
        """用户名 + 密码登录。失败时抛出异常。"""

    @abstractmethod
    async def current_user(self) -> Account:
        """获取当前登录账号。会话失效时抛出异常。"""

    async def fetch_inbox_snapshot(self) -> Any:
        """实时通道连接前拉取收件箱快照，默认不需要。"""
        return None
