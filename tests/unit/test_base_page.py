"""
core.base_page 單元測試

驗證 BasePage 的行為，包含：
- 等待元素可操作後才呼叫 provider 操作
- 逾時 → ElementNotReadyError；provider 拒絕 → ActionRejectedError（分開回報）
- 白名單內的拒絕會依 Retry Policy 重試
- Middleware / Event Bus 通知
- Lane 隔離檢查
- PageObject 建立後不可變
"""

from dataclasses import replace

import pytest

from core.base_page import BasePage
from core.event_bus import event_bus
from core.exceptions import (
    ActionRejectedError,
    ElementNotReadyError,
    LaneIsolationError,
    PageNotLoadedError,
    RetryExhaustedError,
)
from core.locator import Locator
from core.middleware import middleware_chain
from core.provider import ActionKind
from utils.logger import bind_lane
from fakes import FakeElement

TITLE = Locator.id("title")
SUBMIT = Locator.id("submit")
NAME = Locator.id("name")


class FormPage(BasePage):
    _TRAIT = TITLE

    def submit(self) -> "DonePage":
        self.tap(SUBMIT)
        return self.navigate(DonePage)


class DonePage(BasePage):
    _TRAIT = Locator.id("done")


@pytest.mark.unit
class TestBasePageInit:
    """BasePage 初始化"""

    @pytest.mark.unit
    def test_default_timeout_from_settings(self, session):
        page = FormPage(session)
        assert page._timeout == session.settings.default_timeout
        assert page.session is session

    @pytest.mark.unit
    def test_custom_timeout(self, session):
        assert FormPage(session, timeout=3)._timeout == 3

    @pytest.mark.unit
    def test_attributes_are_write_once(self, session):
        page = FormPage(session)
        with pytest.raises(AttributeError):
            page._session = None

    @pytest.mark.unit
    def test_navigate_shares_session(self, session):
        page = FormPage(session)
        done = page.navigate(DonePage)
        assert isinstance(done, DonePage)
        assert done.session is session
        assert done is not page

    @pytest.mark.unit
    def test_repr(self, session):
        assert repr(FormPage(session)) == "<FormPage lane=0>"


@pytest.mark.unit
class TestBasePageActions:
    """元素操作"""

    @pytest.mark.unit
    def test_tap_waits_until_actionable(self, session, provider):
        """元素前幾輪不可操作，等到可操作才點擊一次"""
        provider.add(SUBMIT, FakeElement(ready_after=3))
        FormPage(session).tap(SUBMIT)
        assert provider.count(ActionKind.TAP, SUBMIT) == 1
        assert provider.screens["main"][SUBMIT].checks == 4

    @pytest.mark.unit
    def test_action_returns_next_page(self, session, provider):
        provider.add(SUBMIT)
        assert isinstance(FormPage(session).submit(), DonePage)

    @pytest.mark.unit
    def test_type_text_clears_first(self, session, provider):
        provider.add(NAME, FakeElement(text="old"))
        page = FormPage(session)
        page.type_text(NAME, "new")
        assert page.read_text(NAME) == "new"
        kinds = [kind for loc, kind, _ in provider.actions if loc == NAME]
        assert kinds == [ActionKind.CLEAR, ActionKind.TYPE, ActionKind.READ_TEXT]

    @pytest.mark.unit
    def test_type_text_without_clear(self, session, provider):
        provider.add(NAME, FakeElement(text="a"))
        page = FormPage(session)
        page.type_text(NAME, "b", clear=False)
        assert page.read_text(NAME) == "ab"

    @pytest.mark.unit
    def test_not_ready_raises_element_not_ready(self, session, provider):
        """等待逾時 → ElementNotReadyError，帶 locator 與最後狀態"""
        provider.add(SUBMIT, FakeElement(enabled=False))
        page = FormPage(session, timeout=0.05)
        with pytest.raises(ElementNotReadyError) as exc_info:
            page.tap(SUBMIT)
        error = exc_info.value
        assert error.locator == SUBMIT
        assert "皆不可操作" in error.last_state
        assert provider.count(ActionKind.TAP) == 0

    @pytest.mark.unit
    def test_missing_element_raises_element_not_ready(self, session):
        page = FormPage(session, timeout=0.05)
        with pytest.raises(ElementNotReadyError, match="找不到元素"):
            page.tap(SUBMIT)

    @pytest.mark.unit
    def test_rejection_reported_distinctly(self, session, provider):
        """等待成功後 provider 拒絕 → ActionRejectedError，補上 locator"""
        provider.add(SUBMIT)
        provider.reject_next(SUBMIT, signature="ElementDisabled", reason="disabled")
        with pytest.raises(ActionRejectedError) as exc_info:
            FormPage(session).tap(SUBMIT)
        assert exc_info.value.locator == SUBMIT
        assert exc_info.value.action == "tap"
        assert provider.count(ActionKind.TAP) == 1

    @pytest.mark.unit
    def test_whitelisted_rejection_retried(self, session, provider):
        """StaleElementReference 在預設白名單內，重試後成功"""
        provider.add(SUBMIT)
        provider.reject_next(SUBMIT, times=2)
        FormPage(session).tap(SUBMIT)
        assert provider.count(ActionKind.TAP, SUBMIT) == 3

    @pytest.mark.unit
    def test_whitelisted_rejection_exhausted(self, session, provider):
        provider.add(SUBMIT)
        provider.reject_next(SUBMIT, times=5)
        with pytest.raises(RetryExhaustedError) as exc_info:
            FormPage(session).tap(SUBMIT)
        assert exc_info.value.attempts == session.settings.retry_max_attempts
        assert isinstance(exc_info.value.last_error, ActionRejectedError)

    @pytest.mark.unit
    def test_custom_retry_policy_on_session(self, session, provider):
        """session 指定的 RetryPolicy 優先於 Settings"""
        from core.retry import RetryPolicy

        provider.add(SUBMIT)
        provider.reject_next(SUBMIT)
        strict = replace(session, retry_policy=RetryPolicy.never())
        with pytest.raises(ActionRejectedError):
            FormPage(strict).tap(SUBMIT)


@pytest.mark.unit
class TestBasePageHooks:
    """Middleware 與事件"""

    @pytest.mark.unit
    def test_middleware_wraps_action(self, session, provider):
        provider.add(SUBMIT)
        seen = []

        @middleware_chain.use
        def record(context, next_fn):
            seen.append((context.action, context.locator, context.lane_index))
            return next_fn()

        FormPage(session).tap(SUBMIT)
        assert seen == [("tap", SUBMIT, 0)]

    @pytest.mark.unit
    def test_events_emitted(self, session, provider):
        provider.add(SUBMIT)
        FormPage(session).tap(SUBMIT)
        assert len(event_bus.get_history("page.action.before")) == 1
        assert len(event_bus.get_history("page.action.after")) == 1

    @pytest.mark.unit
    def test_error_event_on_failure(self, session):
        with pytest.raises(ElementNotReadyError):
            FormPage(session, timeout=0).tap(SUBMIT)
        errors = event_bus.get_history("page.action.error")
        assert len(errors) == 1
        assert isinstance(errors[0].data["error"], ElementNotReadyError)


@pytest.mark.unit
class TestBasePageIsolation:
    """Lane 隔離"""

    @pytest.mark.unit
    def test_same_lane_allowed(self, session, provider):
        provider.add(SUBMIT)
        with bind_lane(0):
            FormPage(session).tap(SUBMIT)

    @pytest.mark.unit
    def test_other_lane_rejected(self, session, provider):
        provider.add(SUBMIT)
        with bind_lane(1):
            with pytest.raises(LaneIsolationError):
                FormPage(session).tap(SUBMIT)
        assert provider.count(ActionKind.TAP) == 0


@pytest.mark.unit
class TestBasePageState:
    """頁面狀態"""

    @pytest.mark.unit
    def test_is_loaded(self, session, provider):
        page = FormPage(session)
        assert page.is_loaded(timeout=0) is False
        provider.add(TITLE)
        assert page.is_loaded(timeout=0) is True

    @pytest.mark.unit
    def test_assert_loaded(self, session, provider):
        with pytest.raises(PageNotLoadedError):
            FormPage(session).assert_loaded(timeout=0)
        provider.add(TITLE)
        page = FormPage(session)
        assert page.assert_loaded(timeout=0) is page

    @pytest.mark.unit
    def test_without_trait_always_loaded(self, session):
        assert BasePage(session).is_loaded() is True

    @pytest.mark.unit
    def test_wait_for_absent(self, session, provider):
        provider.add(TITLE)
        page = FormPage(session, timeout=0.05)
        from core.exceptions import WaitTimeoutError
        with pytest.raises(WaitTimeoutError):
            page.wait_for_absent(TITLE)
        provider.remove(TITLE)
        page.wait_for_absent(TITLE)
