"""
异常类型定义模块 - directbot 的错误分类体系。

错误分类与恢复策略：
- TransportError：连接/发送失败，由 ConnectionSupervisor 通过退避重试恢复，
  超过最大重试次数后通道进入 FAILED 状态并上报
- ModuleLoadError：模块加载失败，记录日志后跳过该模块，不影响其他模块
- AuthenticationError：启动时登录失败，属于致命错误，直接抛给调用方

权限不足、冷却中、未知命令都不是异常，而是 CommandRouter 返回的确定性结果
（见 dispatch/commands.py 中的 CommandOutcome）。
"""


class DirectBotError(Exception):
    """directbot 所有自定义异常的基类。"""


class TransportError(DirectBotError):
    """传输层错误（连接、断开或发送失败）。"""


class ModuleLoadError(DirectBotError):
    """模块无法被解析、实例化或初始化。"""

    def __init__(self, identifier: str, reason: str):
        super().__init__(f"Failed to load module {identifier}: {reason}")
        self.identifier = identifier
        self.reason = reason


class AuthenticationError(DirectBotError):
    """启动阶段登录失败（会话失效且无法重新登录）。"""
