"""
歡迎頁 Page Object（範例）

App 啟動後的第一個畫面，測試旅程的起點。
請依照你的 App 實際 UI 修改 locator。
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.base_page import BasePage
from core.locator import Locator

if TYPE_CHECKING:
    from pages.login_page import LoginPage


class WelcomePage(BasePage):
    """歡迎頁"""

    # ── Locators ──
    _TRAIT = Locator.id("com.example.app:id/welcome_logo")
    _LOGIN_ENTRY = Locator.id("com.example.app:id/btn_go_login")
    _SIGN_UP_ENTRY = Locator.id("com.example.app:id/btn_go_sign_up")

    # ── 頁面操作 ──

    def navigate_to_login(self) -> "LoginPage":
        from pages.login_page import LoginPage

        self.tap(self._LOGIN_ENTRY)
        return self.navigate(LoginPage)

    # ── 頁面驗證 ──

    def can_sign_up(self) -> bool:
        return self.is_present(self._SIGN_UP_ENTRY)
