"""
登入頁面 Page Object（範例）

示範如何使用 BasePage 建立一個 Page Object：
locator 只在類別內部使用，操作方法回傳下一個畫面的 PageObject。
請依照你的 App 實際 UI 修改 locator。
"""

from __future__ import annotations

from core.base_page import BasePage
from core.locator import Locator
from pages.home_page import HomePage
from utils.allure_helper import allure_step


class LoginPage(BasePage):
    """登入頁面"""

    # ── Locators ──
    # 請依照實際 App 的元素 ID 修改
    _TRAIT = Locator.id("com.example.app:id/login_form")
    _EMAIL_INPUT = Locator.id("com.example.app:id/email")
    _PASSWORD_INPUT = Locator.id("com.example.app:id/password")
    _SIGN_IN_BUTTON = Locator.id("com.example.app:id/btn_sign_in")
    _ERROR_MESSAGE = Locator.id("com.example.app:id/error_message")

    # ── 頁面操作 ──

    def enter_email(self, email: str) -> "LoginPage":
        self.type_text(self._EMAIL_INPUT, email)
        return self

    def enter_password(self, password: str) -> "LoginPage":
        self.type_text(self._PASSWORD_INPUT, password)
        return self

    @allure_step("以 {email} 登入")
    def login(self, email: str, password: str) -> HomePage:
        """完整的登入流程，成功後回到首頁"""
        self.enter_email(email)
        self.enter_password(password)
        self.tap(self._SIGN_IN_BUTTON)
        return self.navigate(HomePage)

    def login_expecting_error(self, email: str, password: str) -> "LoginPage":
        """帳密錯誤時停留在登入頁"""
        self.enter_email(email)
        self.enter_password(password)
        self.tap(self._SIGN_IN_BUTTON)
        return self

    # ── 頁面驗證 ──

    def error_message(self) -> str:
        return self.read_text(self._ERROR_MESSAGE)

    def has_error(self) -> bool:
        return self.is_present(self._ERROR_MESSAGE)
