"""
Locator — 元素定位描述

不可變、以結構比較相等，可當 dict key。
只描述「怎麼找」，不持有任何元素參照。

用法：
    LOGIN_BUTTON = Locator.id("com.example.app:id/btn_login")
    MENU_ITEM = Locator.xpath("//item[@text='登出']").within(Locator.id("menu"))
"""

from __future__ import annotations

from dataclasses import dataclass

# 與 AppiumBy / selenium By 字串值一致
ID = "id"
ACCESSIBILITY_ID = "accessibility id"
XPATH = "xpath"
CLASS_NAME = "class name"


@dataclass(frozen=True)
class Locator:
    """元素定位器：定位策略 + 值 + 可選的父範圍"""

    by: str
    value: str
    scope: Locator | None = None

    @classmethod
    def id(cls, value: str) -> "Locator":
        return cls(ID, value)

    @classmethod
    def accessibility_id(cls, value: str) -> "Locator":
        return cls(ACCESSIBILITY_ID, value)

    @classmethod
    def xpath(cls, value: str) -> "Locator":
        return cls(XPATH, value)

    @classmethod
    def class_name(cls, value: str) -> "Locator":
        return cls(CLASS_NAME, value)

    def within(self, scope: "Locator") -> "Locator":
        """回傳限定在 scope 內查找的新 Locator"""
        return Locator(self.by, self.value, scope)

    def as_tuple(self) -> tuple[str, str]:
        """(by, value)，直接餵給 driver.find_elements(*locator.as_tuple())"""
        return (self.by, self.value)

    def __str__(self) -> str:
        text = f"{self.by}={self.value}"
        if self.scope is not None:
            text = f"{self.scope} >> {text}"
        return text
