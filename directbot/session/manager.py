"""
会话状态存储模块 - 不透明会话状态的读写与清理。

存储布局（session_path 目录下）：
- state.json：平台客户端 export_state() 导出的完整状态字符串，原样写入
- cookies.json：旧版本遗留的 cookie 文件，只在 clear_session() 时一并清理

所有方法都不抛异常：读写失败时记录日志，并通过返回值（None / False）告知调用方。
"""

from pathlib import Path

from loguru import logger

from directbot.utils.helpers import ensure_dir


class SessionStore:
    """
    会话状态存储。

    属性:
        session_path: 会话目录
        state_path: 完整状态文件路径
        cookies_path: 遗留 cookie 文件路径
    """

    def __init__(self, session_path: Path | str = ".session"):
        self.session_path = ensure_dir(Path(session_path).expanduser())
        self.state_path = self.session_path / "state.json"
        self.cookies_path = self.session_path / "cookies.json"

    def load_state(self) -> str | None:
        """读取保存的会话状态。文件不存在或读取失败时返回 None。"""
        if not self.state_path.exists():
            return None
        try:
            return self.state_path.read_text(encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to load session state: {e}")
            return None

    def save_state(self, state: str) -> bool:
        """原样写入会话状态。成功返回 True。"""
        try:
            self.state_path.write_text(state, encoding="utf-8")
            return True
        except OSError as e:
            logger.error(f"Failed to save session state: {e}")
            return False

    def clear_session(self) -> bool:
        """删除状态文件和遗留 cookie 文件。成功返回 True。"""
        try:
            for path in (self.cookies_path, self.state_path):
                if path.exists():
                    path.unlink()
            return True
        except OSError as e:
            logger.error(f"Failed to clear session: {e}")
            return False

    @property
    def has_state(self) -> bool:
        """是否存在已保存的会话状态。"""
        return self.state_path.exists()
