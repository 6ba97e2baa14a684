"""心跳服务：定期广播运行统计。"""

from directbot.heartbeat.service import HeartbeatService

__all__ = ["HeartbeatService"]
