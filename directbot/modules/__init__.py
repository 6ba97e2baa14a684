"""可插拔模块：基类、注册表与内置模块。"""

from directbot.modules.base import BotModule
from directbot.modules.registry import MODULE_API_VERSION, ModuleRegistry, ModuleState

__all__ = ["BotModule", "ModuleRegistry", "ModuleState", "MODULE_API_VERSION"]
