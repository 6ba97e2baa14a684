"""
会话状态模块 - 平台登录状态的持久化。

会话状态（cookie、设备信息、推送令牌等）由平台客户端导出为一个不透明字符串，
本模块只负责原样存取，从不解析其内部结构。
"""

from directbot.session.manager import SessionStore

__all__ = ["SessionStore"]
