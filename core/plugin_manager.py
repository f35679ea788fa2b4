"""
Plugin 系統 — 可插拔擴充不改核心

讓使用者自訂功能（報表附件、通知管道、耗時統計...），
只要實作 Plugin 介面，放進 plugins/ 目錄或手動註冊即可生效。

範例：
    class MyPlugin(Plugin):
        name = "my_plugin"

        def on_test_fail(self, test_id, error, artifact):
            ...

    plugin_manager.register(MyPlugin())

也可以用自動掃描：
    plugin_manager.discover("plugins/")

注意：hook 會在各 lane 的執行緒上被呼叫，Plugin 內的共用狀態需自行加鎖。
"""

from __future__ import annotations

import importlib.util
import inspect
import sys
from abc import ABC
from pathlib import Path

from core.event_bus import EventBus, event_bus as default_event_bus
from core.exceptions import PluginError
from utils.logger import logger


class Plugin(ABC):
    """
    Plugin 基底類別

    所有 hook method 都是可選的，覆寫你需要的即可。
    """

    name: str = "unnamed_plugin"
    version: str = "1.0.0"
    description: str = ""
    enabled: bool = True

    # ── Lifecycle hooks ──

    def on_register(self) -> None:
        """Plugin 被註冊時呼叫（初始化）"""

    def on_unregister(self) -> None:
        """Plugin 被移除時呼叫（清理）"""

    # ── Lane hooks ──

    def on_lane_provisioned(self, lane_index: int, target) -> None:
        """Lane 備妥"""

    def on_lane_released(self, lane_index: int) -> None:
        """Lane 回到 Idle"""

    # ── Page hooks ──

    def on_before_action(self, page, action: str, locator, **kwargs) -> None:
        """Page 操作前 (tap, type_text, ...)"""

    def on_after_action(self, page, action: str, locator, **kwargs) -> None:
        """Page 操作後"""

    def on_action_error(self, page, action: str, locator,
                        error: Exception) -> None:
        """Page 操作出錯"""

    # ── Test hooks ──

    def on_test_start(self, test_id: str, lane_index: int) -> None:
        """測試開始"""

    def on_test_pass(self, test_id: str, duration: float) -> None:
        """測試通過"""

    def on_test_fail(self, test_id: str, error: str, artifact) -> None:
        """測試失敗（App 行為不符）"""

    def on_test_error(self, test_id: str, error: str, artifact) -> None:
        """測試錯誤（基礎設施問題）"""

    # ── Artifact hooks ──

    def on_artifact(self, artifact) -> None:
        """失敗現場保全完成"""


_HOOK_MAP = {
    "on_lane_provisioned": "lane.provisioned",
    "on_lane_released": "lane.released",
    "on_before_action": "page.action.before",
    "on_after_action": "page.action.after",
    "on_action_error": "page.action.error",
    "on_test_start": "test.start",
    "on_test_pass": "test.pass",
    "on_test_fail": "test.fail",
    "on_test_error": "test.error",
    "on_artifact": "artifact.captured",
}


class PluginManager:
    """Plugin 管理器"""

    def __init__(self, bus: EventBus | None = None):
        self._bus = bus or default_event_bus
        self._plugins: dict[str, Plugin] = {}
        self._bindings: dict[str, list[tuple[str, object]]] = {}

    @property
    def bus(self) -> EventBus:
        return self._bus

    def register(self, plugin: Plugin) -> None:
        """註冊 Plugin"""
        if not isinstance(plugin, Plugin):
            raise PluginError(
                plugin_name=getattr(plugin, "name", str(type(plugin))),
                message="必須繼承 Plugin 基底類別",
            )

        name = plugin.name
        if name in self._plugins:
            logger.warning(f"Plugin '{name}' 已存在，將被替換")
            self.unregister(name)

        self._plugins[name] = plugin
        self._bind_events(plugin)
        plugin.on_register()
        logger.info(f"Plugin 已註冊: {name} v{plugin.version}")

    def unregister(self, name: str) -> None:
        """移除 Plugin（同時解除事件綁定）"""
        plugin = self._plugins.pop(name, None)
        for event_name, handler in self._bindings.pop(name, []):
            self._bus.off(event_name, handler)
        if plugin:
            plugin.on_unregister()
            logger.info(f"Plugin 已移除: {name}")

    def get(self, name: str) -> Plugin | None:
        """取得 Plugin 實例"""
        return self._plugins.get(name)

    def list_plugins(self) -> list[dict]:
        """列出所有已註冊的 Plugin"""
        return [
            {
                "name": p.name,
                "version": p.version,
                "description": p.description,
                "enabled": p.enabled,
            }
            for p in self._plugins.values()
        ]

    def discover(self, directory: str | Path) -> int:
        """
        自動掃描目錄下的 Plugin 檔案並註冊。

        檔案命名規則：*_plugin.py，檔案中需有繼承 Plugin 的 class。

        Returns:
            成功載入的 Plugin 數量
        """
        directory = Path(directory)
        if not directory.exists():
            logger.warning(f"Plugin 目錄不存在: {directory}")
            return 0

        loaded = 0
        for py_file in sorted(directory.glob("*_plugin.py")):
            try:
                module_name = f"plugins.{py_file.stem}"
                module = sys.modules.get(module_name)
                if module is None:
                    spec = importlib.util.spec_from_file_location(module_name, py_file)
                    module = importlib.util.module_from_spec(spec)
                    sys.modules[module_name] = module
                    spec.loader.exec_module(module)

                for _, cls in inspect.getmembers(module, inspect.isclass):
                    if (issubclass(cls, Plugin) and cls is not Plugin
                            and cls.__module__ == module.__name__):
                        self.register(cls())
                        loaded += 1
            except Exception as e:
                logger.error(f"載入 Plugin 失敗 [{py_file.name}]: {e}")

        logger.info(f"Plugin 自動掃描完成: {loaded} 個已載入")
        return loaded

    def _bind_events(self, plugin: Plugin) -> None:
        """將 Plugin 覆寫的 hook method 綁定到 event bus"""
        bindings = []
        for method_name, event_name in _HOOK_MAP.items():
            if not _is_overridden(plugin, method_name):
                continue
            method = getattr(plugin, method_name)

            def _make_handler(m):
                def handler(event):
                    if plugin.enabled:
                        m(**event.data)
                return handler

            handler = _make_handler(method)
            self._bus.on(event_name, handler)
            bindings.append((event_name, handler))
        self._bindings[plugin.name] = bindings

    # ── 便捷的 emit 方法 ──

    def emit_lane_provisioned(self, lane_index: int, target) -> None:
        self._bus.emit("lane.provisioned", {
            "lane_index": lane_index, "target": target,
        }, source="scheduler")

    def emit_lane_released(self, lane_index: int) -> None:
        self._bus.emit("lane.released", {"lane_index": lane_index},
                       source="scheduler")

    def emit_before_action(self, page, action: str, locator, **kwargs) -> None:
        self._bus.emit("page.action.before", {
            "page": page, "action": action, "locator": locator, **kwargs,
        }, source="base_page")

    def emit_after_action(self, page, action: str, locator, **kwargs) -> None:
        self._bus.emit("page.action.after", {
            "page": page, "action": action, "locator": locator, **kwargs,
        }, source="base_page")

    def emit_action_error(self, page, action: str, locator,
                          error: Exception) -> None:
        self._bus.emit("page.action.error", {
            "page": page, "action": action, "locator": locator, "error": error,
        }, source="base_page")

    def emit_test_start(self, test_id: str, lane_index: int) -> None:
        self._bus.emit("test.start", {
            "test_id": test_id, "lane_index": lane_index,
        }, source="scheduler")

    def emit_test_pass(self, test_id: str, duration: float) -> None:
        self._bus.emit("test.pass", {
            "test_id": test_id, "duration": duration,
        }, source="scheduler")

    def emit_test_fail(self, test_id: str, error: str, artifact) -> None:
        self._bus.emit("test.fail", {
            "test_id": test_id, "error": error, "artifact": artifact,
        }, source="scheduler")

    def emit_test_error(self, test_id: str, error: str, artifact) -> None:
        self._bus.emit("test.error", {
            "test_id": test_id, "error": error, "artifact": artifact,
        }, source="scheduler")

    def emit_artifact(self, artifact) -> None:
        self._bus.emit("artifact.captured", {"artifact": artifact},
                       source="capture")


def _is_overridden(instance: Plugin, method_name: str) -> bool:
    """判斷 Plugin 子類別是否覆寫了某方法"""
    base_method = getattr(Plugin, method_name, None)
    instance_method = getattr(type(instance), method_name, None)
    return instance_method is not base_method


# 全域 singleton
plugin_manager = PluginManager()
