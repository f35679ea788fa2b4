"""
登入相關旅程（範例）

用法：
    from flows.login_flows import LOGIN_JOURNEY, login_suite

    result = run_suite(login_suite(), parallelism=2,
                       provisioner=AppiumLaneProvisioner())
"""

from core.flow import Flow, action, expect
from core.scheduler import TestCase
from pages.welcome_page import WelcomePage


def login_journey(email: str, password: str, name: str = "login_journey") -> Flow:
    """歡迎頁 → 登入頁 → 登入 → 首頁已載入"""
    return Flow.of(
        name,
        action("navigate_to_login"),
        action("login", email, password),
        expect("is_loaded", "登入後首頁未載入"),
    )


LOGIN_JOURNEY = login_journey("a@x.com", "pw")

LOGOUT_JOURNEY = Flow("logout_journey").extend(LOGIN_JOURNEY).then(
    action("logout")
).then(expect("is_loaded", "登出後未回到歡迎頁"))

WRONG_PASSWORD_JOURNEY = Flow.of(
    "wrong_password_journey",
    action("navigate_to_login"),
    action("login_expecting_error", "a@x.com", "wrong"),
    expect("has_error", "帳密錯誤時應顯示錯誤訊息"),
)


def login_suite() -> list[TestCase]:
    """登入功能的測試套件，CLI 以 --suite flows.login_flows:login_suite 執行"""
    return [
        TestCase("login_ok", LOGIN_JOURNEY, entry=WelcomePage, tags=("smoke",)),
        TestCase("logout", LOGOUT_JOURNEY, entry=WelcomePage),
        TestCase("login_wrong_password", WRONG_PASSWORD_JOURNEY, entry=WelcomePage),
    ]
