"""
directbot - 私信聊天自动化机器人框架

模块概述：
    本文件是 directbot 包的入口文件（__init__.py），定义了包的元信息。
    directbot 登录远程消息平台，维持两条独立的长连接（实时事件流 + 推送通道），
    并将收到的消息送入可插拔的「中间件 → 命令路由 → 模块」流水线来生成回复。

    整个框架的核心功能包括：
    - 事件总线（EventBus）：带历史记录和统计的发布/订阅中心
    - 连接监管（ConnectionSupervisor）：断线自动重连（线性退避）
    - 模块系统（ModuleRegistry）：运行时加载、重载、卸载行为单元
    - 命令路由（CommandRouter）：前缀命令解析、管理员权限与冷却时间控制
"""

# 版本号，遵循语义化版本规范（主版本.次版本.修订号）
__version__ = "0.1.0"

# 项目 logo 表情符号，用于 CLI 输出等场景的品牌标识
__logo__ = "📨"
