"""
事件类型定义模块 - 定义总线中传输的数据结构。

本模块定义了以下数据类：
- Message：入站消息（由 Transport 创建，调度流水线只读消费）
- TransportEvent：传输层原始事件（带来源通道标记），进入 MessageBus
- EventRecord：EventBus 历史环形缓冲中的一条记录
- EventStats：EventBus 按事件名聚合的统计

【设计要点】
- Message 使用 frozen=True，构造后不可修改，流水线中的任何环节都不能篡改消息
- text 可以为 None（图片、语音等非文本内容），命令解析前必须判空
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ContentKind(str, Enum):
    """消息内容类型。"""
    TEXT = "text"
    MEDIA = "media"
    OTHER = "other"


@dataclass(frozen=True)
class Message:
    """
    入站消息 - 从平台收到的一条私信。

    属性:
        sender_id: 发送者唯一标识（平台用户 ID）
        sender_name: 发送者显示名（用户名）
        thread_id: 会话/对话线程 ID，回复时作为目标
        text: 消息文本，非文本消息为 None
        kind: 内容类型（text/media/other）
        timestamp: 接收时间
        item_id: 平台侧的消息条目 ID（用于标记已读）
        raw: 平台原始数据，核心代码不解析
    """

    sender_id: str
    sender_name: str
    thread_id: str
    text: str | None = None
    kind: ContentKind = ContentKind.TEXT
    timestamp: datetime = field(default_factory=datetime.now)
    item_id: str | None = None
    raw: Any = field(default=None, compare=False, repr=False)

    @property
    def has_text(self) -> bool:
        """是否包含可解析的文本。"""
        return bool(self.text)


@dataclass(frozen=True)
class TransportEvent:
    """
    传输层事件 - Supervisor 转发到 MessageBus 的原始事件。

    属性:
        source: 来源通道名（"realtime" 或 "push"）
        name: 事件名（message、threadUpdate、typingIndicator、presenceUpdate、push、auth 等）
        payload: 事件数据；name 为 message 时是 Message 对象
    """

    source: str
    name: str
    payload: Any = None


@dataclass(frozen=True)
class EventRecord:
    """EventBus 历史记录项：事件名、时间、参数个数。"""

    event: str
    timestamp: datetime
    args: int


@dataclass
class EventStats:
    """单个事件名的统计：累计次数与最后一次触发时间。"""

    count: int = 0
    last_emitted: datetime | None = None
