"""
模块注册表 (modules/registry.py)

模块职责：
    发现、实例化、初始化并卸载可插拔模块（BotModule）。
    每个模块的加载彼此隔离：一个模块加载失败只记录日志并跳过，不影响其他模块。

模块来源：
    1. 内置清单：directbot.modules 包内随附的模块（core_commands 等）
    2. 外部文件：modules.modulesPath 目录下不以 "_" 开头的 *.py 文件，
       文件内必须声明 MODULE_API_VERSION = 1 和 module_class

模块配置：
    modules.settings[标识符] 与同目录下的 <标识符>.config.json 合并，后者优先。

生命周期：
    load_one:  实例化 → LOADED → initialize() → ACTIVE
    unload:    UNLOADING → cleanup()（恰好一次）→ 清理命令 → 移除
    只有 ACTIVE 的模块会收到 on_message 分发。

设计模式对比（Java 视角）：
    类似于 OSGi 的 BundleContext：install / start / stop / update。
    外部文件加载相当于一个简化版的 ServiceLoader，版本号校验相当于 Bundle-ManifestVersion。
"""

import importlib.util
import json
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING, Any

from loguru import logger

from directbot.config.schema import ModulesConfig
from directbot.dispatch.commands import CommandRouter
from directbot.errors import ModuleLoadError
from directbot.modules.base import BotModule

if TYPE_CHECKING:
    from directbot.context import BotContext

# 外部模块文件必须声明的接口版本
MODULE_API_VERSION = 1

# 外部模块在 sys.modules 中的命名空间
EXTERNAL_NAMESPACE = "directbot_modules"


class ModuleState(str, Enum):
    """模块生命周期状态。"""
    LOADED = "loaded"
    ACTIVE = "active"
    UNLOADING = "unloading"


@dataclass
class ModuleEntry:
    """
    注册表中的一条记录。

    属性:
        identifier: 加载时使用的标识符（也是注册表键）
        instance: 模块实例
        config: 合并后的模块配置
        source: "bundled" 或外部文件路径
        state: 生命周期状态
    """

    identifier: str
    instance: BotModule
    config: dict[str, Any]
    source: str
    state: ModuleState = ModuleState.LOADED


def bundled_modules() -> dict[str, type[BotModule]]:
    """内置模块清单 {标识符: 模块类}。延迟导入，避免循环依赖。"""
    from directbot.modules.auto_responder import AutoResponderModule
    from directbot.modules.core_commands import CoreCommandsModule
    from directbot.modules.media_handler import MediaHandlerModule

    return {
        "core_commands": CoreCommandsModule,
        "auto_responder": AutoResponderModule,
        "media_handler": MediaHandlerModule,
    }


class ModuleRegistry:
    """
    模块注册表。

    内部使用插入有序的 dict[str, ModuleEntry]，键为模块标识符，
    因此 get_loaded_modules() 和 on_message 分发都按加载顺序进行。
    """

    def __init__(
        self,
        config: ModulesConfig,
        router: CommandRouter,
        manifest: dict[str, type[BotModule]] | None = None,
    ):
        """
        参数:
            config: 模块配置（目录、启用列表、每模块设置）
            router: 命令路由器，卸载时从这里清理模块命令
            manifest: 内置模块清单，None 表示使用 bundled_modules()
        """
        self.config = config
        self.router = router
        self.modules_path = Path(config.modules_path).expanduser()
        self._manifest = bundled_modules() if manifest is None else dict(manifest)
        self._entries: dict[str, ModuleEntry] = {}
        self._context: "BotContext | None" = None

    @property
    def manifest(self) -> dict[str, type[BotModule]]:
        """内置模块清单（只读副本）。"""
        return dict(self._manifest)

    def attach(self, context: "BotContext") -> None:
        """绑定机器人上下文。模块实例化时会收到它。"""
        self._context = context

    def discover(self) -> list[str]:
        """
        列出所有可加载的模块标识符（内置清单在前，外部文件按文件名排序在后）。
        模块目录不存在时会创建它。
        """
        identifiers = list(self._manifest)

        if not self.modules_path.exists():
            self.modules_path.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created modules directory: {self.modules_path}")
            return identifiers

        for path in sorted(self.modules_path.glob("*.py")):
            if path.name.startswith("_") or path.stem in identifiers:
                continue
            identifiers.append(path.stem)
        return identifiers

    def is_enabled(self, identifier: str) -> bool:
        """enabledModules 为空表示全部启用。"""
        enabled = self.config.enabled_modules
        return not enabled or identifier in enabled

    async def load_all(self) -> int:
        """
        加载全部已启用的模块。

        返回:
            本次成功加载的模块数
        """
        loaded = 0
        for identifier in self.discover():
            if not self.is_enabled(identifier):
                logger.debug(f"Skipping disabled module: {identifier}")
                continue
            if identifier in self._entries:
                continue
            try:
                await self.load_one(identifier)
                loaded += 1
            except ModuleLoadError as e:
                logger.error(str(e))

        logger.info(f"Loaded {loaded} modules")
        return loaded

    async def load_one(self, identifier: str) -> BotModule:
        """
        加载单个模块。

        参数:
            identifier: 内置模块名或外部文件名（不含 .py）

        返回:
            已激活的模块实例

        异常:
            ModuleLoadError: 任何一步失败；失败时不会留下任何命令
        """
        if identifier in self._entries:
            raise ModuleLoadError(identifier, "already loaded")
        if self._context is None:
            raise ModuleLoadError(identifier, "no bot context attached")

        module_cls, source = self._resolve(identifier)
        module_config = self._load_module_config(identifier)

        try:
            instance = module_cls(self._context, module_config)
        except Exception as e:
            self._purge_orphans(module_cls)
            raise ModuleLoadError(identifier, f"constructor failed: {e}") from e

        if not instance.name:
            instance.name = identifier

        entry = ModuleEntry(identifier, instance, module_config, source)
        self._entries[identifier] = entry

        try:
            await instance.initialize()
        except Exception as e:
            self._entries.pop(identifier, None)
            self.router.unregister_owner(instance)
            raise ModuleLoadError(identifier, f"initialize failed: {e}") from e

        entry.state = ModuleState.ACTIVE
        logger.info(f"Loaded module: {instance.name} ({identifier})")
        return instance

    async def unload(self, name: str) -> bool:
        """
        卸载模块：先 cleanup()，再清理它的命令并移除。
        cleanup() 抛异常只记录日志，模块仍然会被移除。

        返回:
            False 表示模块未加载（或正在卸载中）
        """
        entry = self._entries.get(name)
        if entry is None:
            logger.warning(f"Module not loaded: {name}")
            return False
        if entry.state is ModuleState.UNLOADING:
            return False

        entry.state = ModuleState.UNLOADING
        try:
            await entry.instance.cleanup()
        except Exception as e:
            logger.error(f"Cleanup failed for module {name}: {e}")

        removed = self.router.unregister_owner(entry.instance)
        self._entries.pop(name, None)
        logger.info(f"Unloaded module: {name} ({len(removed)} commands removed)")
        return True

    async def reload(self, name: str) -> bool:
        """
        重新加载模块（unload + load_one，使用同一个标识符）。
        外部文件模块会重新执行文件，因此能拿到磁盘上的最新代码。

        返回:
            True 表示重新加载成功
        """
        await self.unload(name)
        try:
            await self.load_one(name)
        except ModuleLoadError as e:
            logger.error(str(e))
            return False
        logger.info(f"Reloaded module: {name}")
        return True

    async def unload_all(self) -> None:
        """按加载顺序卸载全部模块。"""
        for name in list(self._entries):
            await self.unload(name)

    def get(self, name: str) -> BotModule | None:
        entry = self._entries.get(name)
        return entry.instance if entry else None

    def get_entry(self, name: str) -> ModuleEntry | None:
        return self._entries.get(name)

    def get_module_config(self, name: str) -> dict[str, Any] | None:
        entry = self._entries.get(name)
        return entry.config if entry else None

    def is_loaded(self, name: str) -> bool:
        return name in self._entries

    def get_loaded_modules(self) -> list[str]:
        """已加载模块的标识符（加载顺序）。"""
        return list(self._entries)

    @property
    def modules(self) -> list[BotModule]:
        """处于 ACTIVE 状态的模块实例（加载顺序）。"""
        return [e.instance for e in self._entries.values() if e.state is ModuleState.ACTIVE]

    def _resolve(self, identifier: str) -> tuple[type[BotModule], str]:
        """找到标识符对应的模块类：先查内置清单，再查外部文件。"""
        if identifier in self._manifest:
            return self._manifest[identifier], "bundled"

        path = self.modules_path / f"{identifier}.py"
        if not path.is_file():
            raise ModuleLoadError(identifier, "module not found")
        return self._load_file_module(identifier, path), str(path)

    def _load_file_module(self, identifier: str, path: Path) -> type[BotModule]:
        """执行外部模块文件，校验接口版本并取出 module_class。"""
        qualified = f"{EXTERNAL_NAMESPACE}.{identifier}"
        spec = importlib.util.spec_from_file_location(qualified, path)
        if spec is None or spec.loader is None:
            raise ModuleLoadError(identifier, f"cannot import {path}")

        module: ModuleType = importlib.util.module_from_spec(spec)
        sys.modules[qualified] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(qualified, None)
            raise ModuleLoadError(identifier, f"import failed: {e}") from e

        version = getattr(module, "MODULE_API_VERSION", None)
        if version != MODULE_API_VERSION:
            sys.modules.pop(qualified, None)
            raise ModuleLoadError(
                identifier,
                f"unsupported MODULE_API_VERSION {version!r} (expected {MODULE_API_VERSION})",
            )

        module_cls = getattr(module, "module_class", None)
        if not (isinstance(module_cls, type) and issubclass(module_cls, BotModule)):
            sys.modules.pop(qualified, None)
            raise ModuleLoadError(identifier, "module_class must be a BotModule subclass")
        return module_cls

    def _load_module_config(self, identifier: str) -> dict[str, Any]:
        """合并 modules.settings 与 <标识符>.config.json。"""
        merged = dict(self.config.settings.get(identifier, {}))

        config_file = self.modules_path / f"{identifier}.config.json"
        if config_file.is_file():
            try:
                with open(config_file) as f:
                    data = json.load(f)
            except (json.JSONDecodeError, OSError) as e:
                raise ModuleLoadError(identifier, f"invalid config file {config_file}: {e}") from e
            if not isinstance(data, dict):
                raise ModuleLoadError(identifier, f"config file {config_file} must hold an object")
            merged.update(data)
        return merged

    def _purge_orphans(self, module_cls: type[BotModule]) -> None:
        """构造失败时，清理半成品实例已经注册的命令。"""
        live = {id(e.instance) for e in self._entries.values()}
        for command in self.router.commands:
            owner = command.owner
            if isinstance(owner, module_cls) and id(owner) not in live:
                self.router.unregister(command.name, owner=owner)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: str) -> bool:
        return name in self._entries
