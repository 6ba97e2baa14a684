"""
配置数据模型定义 (config/schema.py)
=================================
本模块使用 Pydantic 定义 directbot 的完整配置结构。
所有配置项都有默认值，用户只需在 config.json 中覆盖需要修改的部分。

整体配置结构（树形）：
Config (根配置)
├── bot        - 机器人行为（命令前缀、管理员、心跳间隔、日志）
├── account    - 平台账号与会话状态存放位置
├── modules    - 模块目录、启用白名单、各模块的配置
├── realtime   - 实时通道的重连参数与订阅主题
├── push       - 推送通道的重连参数
└── platform   - 平台客户端工厂（"包.模块:工厂函数"）

时间类配置统一使用毫秒，与 JSON 配置文件中的数值保持一致。
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings


class BotConfig(BaseModel):
    """机器人行为配置。"""
    prefix: str = "."  # 命令前缀，".ping" 中的 "."
    admin_users: list[str] = Field(default_factory=list)  # 管理员用户 ID 白名单
    heartbeat_interval: int = 30000  # 心跳间隔（毫秒）
    log_level: str = "INFO"  # 日志级别：TRACE/DEBUG/INFO/WARNING/ERROR
    enable_logging: bool = False  # 是否额外写入日志文件
    log_file: str = ".logs/bot.log"  # 日志文件路径


class AccountConfig(BaseModel):
    """平台账号配置。"""
    username: str = ""
    password: str = ""  # 仅在会话状态失效、需要重新登录时使用
    session_path: str = ".session"  # 会话状态目录（state.json 存放在这里）
    allow_fresh_login: bool = True  # 会话失效时是否允许用密码重新登录


class ModulesConfig(BaseModel):
    """模块系统配置。"""
    modules_path: str = "./modules"  # 外部模块目录（*.py，文件名以 _ 开头的会被忽略）
    enabled_modules: list[str] = Field(default_factory=list)  # 启用白名单，空列表表示全部启用
    settings: dict[str, dict[str, Any]] = Field(default_factory=dict)  # 各模块的配置 {模块名: {...}}


class TransportConfig(BaseModel):
    """单条传输通道的重连配置。"""
    reconnect_delay: int = 5000  # 退避基数（毫秒），第 n 次重试前等待 n 倍
    max_reconnect_attempts: int = 5  # 连续重试上限，超过后通道进入 FAILED
    trace_enabled: bool = False  # 是否开启协议跟踪


class RealtimeConfig(TransportConfig):
    """实时通道配置，额外包含订阅主题和收件箱快照开关。"""
    subscriptions: list[str] = Field(default_factory=lambda: [
        "appPresence",
        "directStatus",
        "directTyping",
        "clientConfigUpdate",
        "direct",
    ])
    fetch_inbox_snapshot: bool = True  # 连接前拉取收件箱快照，用于续接消息序列


class PlatformConfig(BaseModel):
    """平台客户端配置。"""
    client: str = ""  # 工厂函数的导入路径，如 "mypkg.client:create_client"，接收 Config 返回 PlatformClient
    options: dict[str, Any] = Field(default_factory=dict)  # 透传给工厂函数的额外参数


class Config(BaseSettings):
    """
    directbot 根配置类。

    继承自 Pydantic 的 BaseSettings，除了支持从 JSON 文件加载外，
    还支持从环境变量读取配置：
    - 环境变量前缀: DIRECTBOT_
    - 嵌套分隔符: __ (双下划线)
    - 示例: DIRECTBOT_BOT__PREFIX=! 可覆盖 bot.prefix

    优先级（高 → 低）：环境变量 > config.json（初始化参数）> .env > 默认值。
    """
    bot: BotConfig = Field(default_factory=BotConfig)
    account: AccountConfig = Field(default_factory=AccountConfig)
    modules: ModulesConfig = Field(default_factory=ModulesConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    push: TransportConfig = Field(default_factory=TransportConfig)
    platform: PlatformConfig = Field(default_factory=PlatformConfig)

    def is_admin(self, user_id: str) -> bool:
        """判断用户是否在管理员白名单中。"""
        return str(user_id) in self.bot.admin_users

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """让环境变量覆盖 config.json 中的同名配置项。"""
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    model_config = ConfigDict(
        env_prefix="DIRECTBOT_",
        env_nested_delimiter="__",
    )
