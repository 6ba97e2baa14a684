"""
回环传输模块 - 不连接任何远端平台的本地实现。

LoopbackClient 实现了 PlatformClient 的全部接口，所有出站操作只记录在内存里，
入站消息通过 inject() 人为注入。用途：
- `directbot console`：在终端里直接驱动完整的消息流水线
- 测试：作为 Transport / PlatformClient 的替身，可以模拟连接失败和掉线
"""

import json
from itertools import count
from typing import Any

from loguru import logger

from directbot.bus.events import Message
from directbot.config.schema import Config
from directbot.errors import AuthenticationError, TransportError
from directbot.transport.base import (
    EVENT_CLOSE,
    EVENT_ERROR,
    EVENT_MESSAGE,
    Account,
    ConnectOptions,
    PlatformClient,
    Transport,
)

# 出站操作完成后触发的本地事件，console 用它打印回复
EVENT_OUTBOUND = "outbound"


class LoopbackTransport(Transport):
    """
    内存中的长连接。

    属性:
        fail_connects: 接下来还要失败的连接次数
        connect_calls: connect() 被调用的总次数
        last_options: 最近一次成功连接时收到的 ConnectOptions
        sent: 已发送的文本 [(thread_id, text)]
        photos: 已发送的图片 [(thread_id, bytes, caption)]
        voices: 已发送的语音 [(thread_id, bytes)]
    """

    def __init__(self, name: str = "realtime", fail_connects: int = 0):
        super().__init__()
        self.name = name
        self.fail_connects = fail_connects
        self.connected = False
        self.connect_calls = 0
        self.last_options: ConnectOptions | None = None
        self.sent: list[tuple[str, str]] = []
        self.photos: list[tuple[str, bytes, str]] = []
        self.voices: list[tuple[str, bytes]] = []
        self.typing: list[tuple[str, bool]] = []
        self.seen: list[tuple[str, str]] = []
        self._item_ids = count(1)

    async def connect(self, options: ConnectOptions) -> None:
        self.connect_calls += 1
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise TransportError(f"{self.name}: simulated connection failure")
        self.connected = True
        self.last_options = options

    async def disconnect(self) -> None:
        self.connected = False

    def _require_connection(self) -> None:
        if not self.connected:
            raise TransportError(f"{self.name} not connected")

    def _next_item_id(self) -> str:
        return f"{self.name}-{next(self._item_ids)}"

    async def send_text(self, thread_id: str, text: str) -> dict[str, str]:
        self._require_connection()
        self.sent.append((thread_id, text))
        self._emit(EVENT_OUTBOUND, thread_id, text)
        return {"thread_id": thread_id, "item_id": self._next_item_id()}

    async def send_typing(self, thread_id: str, active: bool = True) -> None:
        self._require_connection()
        self.typing.append((thread_id, active))

    async def mark_seen(self, thread_id: str, item_id: str) -> None:
        self._require_connection()
        self.seen.append((thread_id, item_id))

    async def broadcast_photo(self, thread_id: str, photo: bytes, caption: str = "") -> dict[str, str]:
        self._require_connection()
        self.photos.append((thread_id, photo, caption))
        self._emit(EVENT_OUTBOUND, thread_id, f"[photo {len(photo)} bytes] {caption}".rstrip())
        return {"thread_id": thread_id, "item_id": self._next_item_id()}

    async def broadcast_voice(self, thread_id: str, voice: bytes) -> dict[str, str]:
        self._require_connection()
        self.voices.append((thread_id, voice))
        self._emit(EVENT_OUTBOUND, thread_id, f"[voice {len(voice)} bytes]")
        return {"thread_id": thread_id, "item_id": self._next_item_id()}

    def inject(self, message: Message) -> None:
        """模拟收到一条入站消息。"""
        self._emit(EVENT_MESSAGE, message)

    def inject_event(self, event: str, *args: Any) -> None:
        """模拟收到任意传输层事件。"""
        self._emit(event, *args)

    def drop(self, error: Exception | None = None) -> None:
        """模拟掉线：有 error 时触发 error 事件，否则触发 close。"""
        self.connected = False
        if error is not None:
            self._emit(EVENT_ERROR, error)
        else:
            self._emit(EVENT_CLOSE)


class LoopbackClient(PlatformClient):
    """
    回环平台客户端。

    会话状态是一个 JSON 字符串 {"user_id", "username"}。
    password 为 None 时接受任意密码。
    """

    def __init__(
        self,
        username: str = "loopback",
        password: str | None = None,
        realtime_failures: int = 0,
        push_failures: int = 0,
    ):
        self.username = username
        self.password = password
        self._account: Account | None = None
        self._realtime = LoopbackTransport("realtime", fail_connects=realtime_failures)
        self._push = LoopbackTransport("push", fail_connects=push_failures)
        self.snapshot_requests = 0

    @property
    def realtime(self) -> LoopbackTransport:
        return self._realtime

    @property
    def push(self) -> LoopbackTransport:
        return self._push

    async def import_state(self, state: str) -> None:
        try:
            data = json.loads(state)
            self._account = Account(str(data["user_id"]), data["username"], data.get("full_name", ""))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise AuthenticationError(f"Invalid session state: {e}") from e

    async def export_state(self) -> str:
        if self._account is None:
            return "{}"
        return json.dumps({
            "user_id": self._account.user_id,
            "username": self._account.username,
            "full_name": self._account.full_name,
        })

    async def login(self, username: str, password: str) -> None:
        if self.password is not None and password != self.password:
            raise AuthenticationError(f"Bad password for {username}")
        self._account = Account(user_id=f"loopback-{username}", username=username, full_name=username)
        logger.debug(f"Loopback login as {username}")

    async def current_user(self) -> Account:
        if self._account is None:
            raise AuthenticationError("Not logged in")
        return self._account

    async def fetch_inbox_snapshot(self) -> dict[str, Any]:
        self.snapshot_requests += 1
        return {"threads": [], "seq_id": self.snapshot_requests}


def create_client(config: Config) -> LoopbackClient:
    """platform.client 工厂：directbot.transport.loopback:create_client。"""
    options = config.platform.options
    return LoopbackClient(
        username=config.account.username or options.get("username", "loopback"),
        password=options.get("password"),
    )
