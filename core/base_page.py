"""
Page Object 基底類別

所有 Page Object 都繼承此類，把「在哪裡」(Locator) 封裝在「做什麼」後面。
每個操作都是：
1. 透過等待引擎等前置元素可操作
2. 呼叫 provider 的操作原語（外層包 Retry Policy 與 Middleware）
3. 由子類別回傳代表下一個畫面的 PageObject

已整合：
- 等待引擎（每次重新查找，不快取元素）
- Retry Policy（只重試白名單錯誤）
- Middleware 攔截
- Event Bus / Plugin 通知
- Lane 隔離檢查

子類別慣例：
    class LoginPage(BasePage):
        _TRAIT = Locator.id("btn_login")        # 判斷頁面已載入的元素
        _LOGIN_BUTTON = Locator.id("btn_login")

        def login(self, email, password) -> "HomePage":
            self.type_text(self._EMAIL, email)
            self.type_text(self._PASSWORD, password)
            self.tap(self._LOGIN_BUTTON)
            return self.navigate(HomePage)
"""

from __future__ import annotations

from typing import Any, TypeVar

from core.exceptions import (
    ActionRejectedError,
    ElementNotReadyError,
    PageNotLoadedError,
    WaitTimeoutError,
)
from core.locator import Locator
from core.middleware import MiddlewareContext, middleware_chain
from core.plugin_manager import plugin_manager
from core.provider import ActionKind
from core.retry import with_retry
from core.session import LaneSession
from utils.logger import logger
from core.wait import (
    WaitSpec,
    element_absent,
    element_actionable,
    element_present,
    wait_until,
)

P = TypeVar("P", bound="BasePage")


class BasePage:
    """
    Page Object 基底類別

    PageObject 本身不持有任何元素狀態，只有 session 綁定與 locator 常數，
    建立後即不可變。
    """

    # 判斷頁面已載入的特徵元素，子類別覆寫
    _TRAIT: Locator | None = None

    def __init__(self, session: LaneSession, timeout: float | None = None):
        self._session = session
        self._timeout = (session.settings.default_timeout
                         if timeout is None else timeout)

    def __setattr__(self, name, value):
        # 每個屬性只能在建構時設定一次
        if name in self.__dict__:
            raise AttributeError(f"{type(self).__name__} 是不可變的，不能修改 {name}")
        object.__setattr__(self, name, value)

    @property
    def session(self) -> LaneSession:
        return self._session

    @property
    def page_name(self) -> str:
        return type(self).__name__

    def __repr__(self) -> str:
        return f"<{self.page_name} lane={self._session.lane_index}>"

    # ── 導航 ──

    def navigate(self, page_cls: type[P], **kwargs) -> P:
        """以同一個 session 建立下一個畫面的 PageObject"""
        return page_cls(self._session, **kwargs)

    # ── 等待 ──

    def _wait(self, condition, timeout: float | None = None,
              description: str = "") -> Any:
        spec = WaitSpec.with_defaults(
            condition,
            self._session.settings,
            timeout=self._timeout if timeout is None else timeout,
            description=description,
        )
        return wait_until(spec, self._session.cancel)

    def wait_for_actionable(self, locator: Locator,
                            timeout: float | None = None):
        """等待元素可操作，逾時拋 ElementNotReadyError"""
        try:
            return self._wait(
                element_actionable(self._session.provider, locator), timeout
            )
        except WaitTimeoutError as e:
            raise ElementNotReadyError(
                locator, e.timeout, e.last_state, page=self.page_name
            ) from e

    def wait_for_present(self, locator: Locator, timeout: float | None = None):
        """等待元素出現（不要求可操作）"""
        try:
            return self._wait(
                element_present(self._session.provider, locator), timeout
            )
        except WaitTimeoutError as e:
            raise ElementNotReadyError(
                locator, e.timeout, e.last_state, page=self.page_name
            ) from e

    def wait_for_absent(self, locator: Locator, timeout: float | None = None) -> None:
        """等待元素消失（例如 loading spinner）"""
        self._wait(element_absent(self._session.provider, locator), timeout)

    def is_present(self, locator: Locator, timeout: float = 3) -> bool:
        """判斷元素是否存在（不拋出逾時例外）"""
        try:
            self._wait(element_present(self._session.provider, locator), timeout)
            return True
        except WaitTimeoutError:
            return False

    # ── 元素操作（經過 Middleware + Retry）──

    def tap(self, locator: Locator) -> None:
        """點擊元素"""
        self._run_action("tap", locator, ActionKind.TAP)

    def type_text(self, locator: Locator, text: str, clear: bool = True) -> None:
        """（預設先清除後）輸入文字"""
        if clear:
            self._run_action("clear", locator, ActionKind.CLEAR)
        self._run_action("type_text", locator, ActionKind.TYPE, text=text)

    def read_text(self, locator: Locator) -> str:
        """取得元素文字"""
        return self._run_action("read_text", locator, ActionKind.READ_TEXT)

    def _run_action(self, action: str, locator: Locator, kind: ActionKind,
                    **kwargs) -> Any:
        self._session.check_owner()
        payload = kwargs.get("text")

        def _attempt():
            ref = self.wait_for_actionable(locator)
            try:
                return self._session.provider.act(ref, kind, payload)
            except ActionRejectedError as e:
                if e.locator is not None:
                    raise
                raise ActionRejectedError(
                    locator, action, e.reason, e.signature
                ) from e

        def _core():
            logger.debug(f"[{self.page_name}] {action} -> {locator}")
            return with_retry(
                self._session.policy, _attempt, self._session.cancel,
                label=f"{self.page_name}.{action}({locator})",
            )

        context = MiddlewareContext(
            page=self, action=action, locator=locator, kwargs=kwargs,
        )
        plugin_manager.emit_before_action(self, action, locator, **kwargs)
        try:
            result = middleware_chain.execute(context, _core)
        except Exception as e:
            plugin_manager.emit_action_error(self, action, locator, e)
            raise
        plugin_manager.emit_after_action(self, action, locator, **kwargs)
        return result

    # ── 頁面狀態 ──

    def is_loaded(self, timeout: float | None = None) -> bool:
        """特徵元素在 timeout 內出現即視為已載入"""
        if self._TRAIT is None:
            return True
        return self.is_present(
            self._TRAIT, self._timeout if timeout is None else timeout
        )

    def assert_loaded(self: P, timeout: float | None = None) -> P:
        """未載入時拋 PageNotLoadedError，否則回傳自己方便串接"""
        if not self.is_loaded(timeout):
            raise PageNotLoadedError(self.page_name)
        return self
