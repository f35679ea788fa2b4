"""
ElementProvider — 底層 UI 驅動的窄介面

框架核心只依賴這個介面，不綁定任何特定自動化後端。
Appium 實作見 core/appium_provider.py；單元測試使用記憶體假實作。

必要方法：
    find(locator, scope)      → 0 到多個 ElementRef（每次查詢都是新的）
    is_actionable(ref)        → 元素目前可見、可用、位置穩定
    act(ref, kind, payload)   → 執行操作，被拒絕時拋 ActionRejectedError

診斷方法（現場保全用，可選）：
    screenshot()      → PNG bytes
    element_tree()    → 元素樹 dump（XML / 文字）
    log_tail(lines)   → 裝置端最近 log
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol, Sequence, runtime_checkable

from core.locator import Locator

# ElementRef 由 provider 自行定義，框架只當作不透明的 handle，
# 且只在單一輪詢內有效，絕不跨輪詢保存。
ElementRef = Any


class ActionKind(str, Enum):
    """Provider 支援的操作種類"""

    TAP = "tap"
    TYPE = "type"
    CLEAR = "clear"
    READ_TEXT = "read_text"


@runtime_checkable
class ElementProvider(Protocol):
    """UI 驅動窄介面"""

    def find(self, locator: Locator, scope: ElementRef | None = None
             ) -> Sequence[ElementRef]:
        ...

    def is_actionable(self, ref: ElementRef) -> bool:
        ...

    def act(self, ref: ElementRef, kind: ActionKind, payload: Any = None) -> Any:
        ...


def resolve(provider: ElementProvider, locator: Locator) -> list[ElementRef]:
    """
    依 locator（含 scope 鏈）向 provider 重新查找元素。

    scope 會先被解析，取第一個符合者作為父範圍；
    父範圍找不到時回傳空列表。
    """
    if locator.scope is None:
        return list(provider.find(locator, None))
    parents = resolve(provider, locator.scope)
    if not parents:
        return []
    return list(provider.find(locator, parents[0]))
