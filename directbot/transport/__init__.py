"""
传输层模块 - 平台长连接的抽象与监管。

本模块定义了与外部平台客户端之间的契约，并提供统一的断线重连监管：
- Transport：一条长连接（实时通道或推送通道）的抽象基类
- PlatformClient：平台客户端抽象（登录、会话状态导入导出、两条 Transport）
- ConnectionSupervisor：通用重连状态机，两条通道共用同一套重试语义
- ConnectionManager：同时持有实时/推送两个 Supervisor，统一启停
- LoopbackClient：本地回环实现，用于 console 命令和测试

平台的线协议、认证流程和编码细节都在外部客户端中实现，不属于本框架。
"""

from directbot.transport.base import Account, ConnectOptions, PlatformClient, Transport
from directbot.transport.manager import ConnectionManager
from directbot.transport.supervisor import ConnectionState, ConnectionSupervisor

__all__ = [
    "Transport",
    "PlatformClient",
    "ConnectOptions",
    "Account",
    "ConnectionSupervisor",
    "ConnectionState",
    "ConnectionManager",
]
