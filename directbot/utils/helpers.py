"""
工具函数集合 - directbot 项目全局通用的辅助函数。

函数分类：
- 路径管理：ensure_dir, get_data_path
- 字符串工具：truncate_string
- 时间工具：now_ms
- 回调工具：maybe_await, spawn_tracked
"""

import asyncio
import inspect
import time
from pathlib import Path
from typing import Any, Coroutine

from loguru import logger


def ensure_dir(path: Path) -> Path:
    """
    确保目录存在，不存在则递归创建。

    参数:
        path: 目标目录路径

    返回:
        创建后的目录路径（原样返回）
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """获取 directbot 数据目录（~/.directbot）。自动创建不存在的目录。"""
    return ensure_dir(Path.home() / ".directbot")


def now_ms() -> float:
    """单调时钟的当前毫秒数，用于冷却时间计算（不受系统时间调整影响）。"""
    return time.monotonic() * 1000


def truncate_string(s: str, max_len: int = 100, suffix: str = "...") -> str:
    """
    截断字符串到指定最大长度，超出时添加后缀。

    参数:
        s: 原始字符串
        max_len: 最大长度（包含后缀），默认 100
        suffix: 截断后缀，默认 "..."

    返回:
        截断后的字符串
    """
    if len(s) <= max_len:
        return s
    return s[: max_len - len(suffix)] + suffix


async def maybe_await(result: Any) -> Any:
    """
    如果回调返回的是可等待对象则 await 它，否则原样返回。

    事件监听器、中间件、命令处理器既可以是普通函数也可以是协程函数，
    调用方统一写成 `await maybe_await(fn(...))`。
    """
    if inspect.isawaitable(result):
        return await result
    return result


def spawn_tracked(coro: Coroutine[Any, Any, Any], tasks: set[asyncio.Task], label: str) -> asyncio.Task:
    """
    把协程调度为后台任务，并在 tasks 集合中持有引用直到任务结束。

    任务结束时自动从集合中移除；任务抛出的异常会被取出并记录日志。

    参数:
        coro: 要调度的协程
        tasks: 持有任务引用的集合（通常是调用方对象的属性）
        label: 日志中使用的任务描述

    返回:
        新建的 asyncio.Task
    """
    task = asyncio.get_running_loop().create_task(coro)
    tasks.add(task)

    def _done(finished: asyncio.Task) -> None:
        tasks.discard(finished)
        if finished.cancelled():
            return
        error = finished.exception()
        if error is not None:
            logger.error(f"Background task {label} failed: {error}")

    task.add_done_callback(_done)
    return task
