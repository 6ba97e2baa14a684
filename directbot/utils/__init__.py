"""
工具函数模块 - 提供 directbot 项目全局通用的辅助函数。

本模块包含：
- ensure_dir：确保目录存在
- get_data_path：获取数据存储路径
- maybe_await：统一调用同步/异步回调
"""

from directbot.utils.helpers import ensure_dir, get_data_path, maybe_await

__all__ = ["ensure_dir", "get_data_path", "maybe_await"]
