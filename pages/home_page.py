"""
首頁 Page Object（範例）

登入成功後的畫面。
請依照你的 App 實際 UI 修改 locator。
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.base_page import BasePage
from core.locator import Locator

if TYPE_CHECKING:
    from pages.welcome_page import WelcomePage


class HomePage(BasePage):
    """首頁"""

    # ── Locators ──
    _TRAIT = Locator.id("com.example.app:id/welcome_text")
    _WELCOME_TEXT = Locator.id("com.example.app:id/welcome_text")
    _MENU_BUTTON = Locator.accessibility_id("menu")
    _LOGOUT_BUTTON = Locator.id("com.example.app:id/btn_logout").within(
        Locator.id("com.example.app:id/side_menu")
    )

    # ── 頁面操作 ──

    def welcome_text(self) -> str:
        return self.read_text(self._WELCOME_TEXT)

    def open_menu(self) -> "HomePage":
        self.tap(self._MENU_BUTTON)
        return self

    def logout(self) -> "WelcomePage":
        from pages.welcome_page import WelcomePage

        self.open_menu()
        self.tap(self._LOGOUT_BUTTON)
        return self.navigate(WelcomePage)

    # ── 頁面驗證 ──

    def greets(self, name: str) -> bool:
        return name in self.welcome_text()
