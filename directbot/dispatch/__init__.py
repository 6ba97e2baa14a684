"""
调度模块 - 决定每条入站消息由哪段代码处理。

调度流水线（每条消息一次，遇到短路即终止）：
  1. MiddlewareChain：按注册顺序依次执行中间件，任一返回 False 或抛异常即停止
  2. 文本以命令前缀开头 → CommandRouter（权限 → 冷却 → 处理器）
     否则 → 自由消息处理器 → 各模块 on_message（按加载顺序）
  3. 在 EventBus 上广播 message 事件，供统计、审计等旁路观察者使用

单个处理器 / 模块的异常都被就地隔离，不会让整个机器人失效。
"""

from directbot.dispatch.commands import Command, CommandOutcome, CommandRouter
from directbot.dispatch.middleware import MiddlewareChain
from directbot.dispatch.pipeline import DispatchPipeline

__all__ = [
    "Command",
    "CommandOutcome",
    "CommandRouter",
    "MiddlewareChain",
    "DispatchPipeline",
]
