"""
core.wait 單元測試
驗證 wait_until、wait_for、FluentWait 與元素條件的行為。
"""

import time

import pytest

from core.cancellation import CancelToken
from core.exceptions import (
    CancelledError,
    SessionLostError,
    TestTimeoutError,
    WaitTimeoutError,
)
from core.locator import Locator
from core.wait import (
    FluentWait,
    WaitSpec,
    element_absent,
    element_actionable,
    element_present,
    text_equals,
    wait_for,
    wait_until,
)
from fakes import FakeElement, FakeProvider

BUTTON = Locator.id("btn")


@pytest.mark.unit
class TestWaitUntil:
    """wait_until 輪詢迴圈"""

    @pytest.mark.unit
    def test_immediate_success_returns_without_sleep(self):
        """條件立即成立時不等待"""
        start = time.monotonic()
        result = wait_until(WaitSpec(lambda: "ok", timeout=5, poll_interval=1))
        assert result == "ok"
        assert time.monotonic() - start < 0.5

    @pytest.mark.unit
    def test_returns_predicate_value(self):
        """回傳 predicate 第一次 truthy 的值"""
        counter = {"n": 0}

        def condition():
            counter["n"] += 1
            return "done" if counter["n"] >= 3 else None

        assert wait_until(WaitSpec(condition, timeout=2, poll_interval=0.01)) == "done"
        assert counter["n"] == 3

    @pytest.mark.unit
    def test_returns_within_one_interval_after_flip(self):
        """條件成立後最多再一個輪詢間隔就回傳"""
        interval = 0.1
        flip_at = time.monotonic() + 0.25
        def condition():
            return time.monotonic() >= flip_at

        wait_until(WaitSpec(condition, timeout=3, poll_interval=interval))
        returned = time.monotonic()
        assert returned - flip_at <= interval + 0.1

    @pytest.mark.unit
    def test_zero_timeout_evaluates_exactly_once(self):
        """timeout <= 0 時只評估一次"""
        calls = []

        def condition():
            calls.append(1)
            return False

        with pytest.raises(WaitTimeoutError) as exc_info:
            wait_until(WaitSpec(condition, timeout=0, poll_interval=0.01))
        assert len(calls) == 1
        assert exc_info.value.polls == 1

    @pytest.mark.unit
    def test_negative_timeout_success(self):
        """timeout < 0 且條件成立時同步回傳"""
        assert wait_until(WaitSpec(lambda: 42, timeout=-1)) == 42

    @pytest.mark.unit
    def test_timeout_carries_last_state(self):
        """逾時錯誤帶有最後觀察到的狀態"""
        provider = FakeProvider()
        provider.add(BUTTON, FakeElement(enabled=False))
        condition = element_actionable(provider, BUTTON)

        with pytest.raises(WaitTimeoutError) as exc_info:
            wait_until(WaitSpec(condition, timeout=0.1, poll_interval=0.02))

        error = exc_info.value
        assert "皆不可操作" in error.last_state
        assert error.polls >= 2
        assert isinstance(error, TimeoutError)

    @pytest.mark.unit
    def test_ignored_exception_recorded_as_state(self):
        """條件拋出的一般例外視為尚未成立，並記錄在狀態中"""
        def bad():
            raise ValueError("boom")

        with pytest.raises(WaitTimeoutError, match="boom"):
            wait_until(WaitSpec(bad, timeout=0.1, poll_interval=0.02))

    @pytest.mark.unit
    def test_infrastructure_error_propagates(self):
        """session 中斷不會被當成「尚未成立」"""
        def lost():
            raise SessionLostError("gone")

        with pytest.raises(SessionLostError):
            wait_until(WaitSpec(lost, timeout=1, poll_interval=0.01))

    @pytest.mark.unit
    def test_invalid_poll_interval(self):
        with pytest.raises(ValueError):
            WaitSpec(lambda: True, poll_interval=0)


@pytest.mark.unit
class TestWaitCancellation:
    """取消信號在每一輪都會被檢查"""

    @pytest.mark.unit
    def test_cancelled_before_start(self):
        token = CancelToken()
        token.cancel("stop")
        with pytest.raises(CancelledError):
            wait_until(WaitSpec(lambda: True, timeout=1), token)

    @pytest.mark.unit
    def test_deadline_aborts_long_wait(self):
        """測試總時限比等待 timeout 短時，提前中止"""
        token = CancelToken.with_timeout(0.15)
        start = time.monotonic()
        with pytest.raises(TestTimeoutError):
            wait_until(WaitSpec(lambda: False, timeout=10, poll_interval=0.05), token)
        assert time.monotonic() - start < 2

    @pytest.mark.unit
    def test_cancel_from_another_thread(self):
        """其他執行緒取消時，睡眠中的等待立即醒來"""
        import threading

        token = CancelToken()
        threading.Timer(0.1, token.cancel, args=("外部取消",)).start()
        start = time.monotonic()
        with pytest.raises(CancelledError):
            wait_until(WaitSpec(lambda: False, timeout=10, poll_interval=5), token)
        assert time.monotonic() - start < 2


@pytest.mark.unit
class TestWaitFor:
    """wait_for 簡易版本"""

    @pytest.mark.unit
    def test_custom_message(self):
        with pytest.raises(TimeoutError, match="自訂訊息"):
            wait_for(lambda: False, timeout=0.1, interval=0.02, message="自訂訊息")


@pytest.mark.unit
class TestFluentWait:
    """FluentWait 鏈式設定"""

    @pytest.mark.unit
    def test_chain_builds_spec(self):
        spec = (
            FluentWait()
            .timeout(3)
            .polling(0.2)
            .message("登入按鈕")
            .until(lambda: True)
            .spec()
        )
        assert spec.timeout == 3
        assert spec.poll_interval == 0.2
        assert spec.description == "登入按鈕"

    @pytest.mark.unit
    def test_wait_returns_value(self):
        assert FluentWait().timeout(1).polling(0.01).until(lambda: "v").wait() == "v"

    @pytest.mark.unit
    def test_missing_condition(self):
        with pytest.raises(ValueError, match="until"):
            FluentWait().wait()

    @pytest.mark.unit
    def test_ignoring_only_listed_exceptions(self):
        """未列在 ignoring 的例外直接拋出"""
        def bad():
            raise KeyError("x")

        with pytest.raises(KeyError):
            FluentWait().timeout(1).polling(0.01).ignoring(ValueError).until(bad).wait()


@pytest.mark.unit
class TestElementConditions:
    """元素條件每一輪都重新查找"""

    @pytest.mark.unit
    def test_actionable_after_polls(self):
        """元素前幾次不可操作，之後成立"""
        provider = FakeProvider()
        provider.add(BUTTON, FakeElement(ready_after=3))
        ref = wait_until(WaitSpec(element_actionable(provider, BUTTON),
                                  timeout=2, poll_interval=0.01))
        assert ref.locator == BUTTON

    @pytest.mark.unit
    def test_every_poll_resolves_fresh(self):
        """每次輪詢都向 provider 重新查找，不沿用舊的 ref"""
        provider = FakeProvider()
        provider.add(BUTTON, FakeElement(ready_after=4))
        wait_until(WaitSpec(element_actionable(provider, BUTTON),
                            timeout=2, poll_interval=0.01))
        assert provider.find_calls == 5
        assert len({ref.id for ref in provider.refs}) == 5

    @pytest.mark.unit
    def test_present_missing_state(self):
        provider = FakeProvider()
        condition = element_present(provider, BUTTON)
        assert condition() is None
        assert condition.last_state == "找到 0 個元素"

    @pytest.mark.unit
    def test_absent(self):
        provider = FakeProvider()
        assert element_absent(provider, BUTTON)() is True
        provider.add(BUTTON)
        assert element_absent(provider, BUTTON)() is False

    @pytest.mark.unit
    def test_scoped_locator_needs_parent(self):
        """scope 找不到時，子元素也視為不存在"""
        provider = FakeProvider()
        menu = Locator.id("menu")
        item = Locator.id("item").within(menu)
        provider.add(item)
        assert element_present(provider, item)() is None
        provider.add(menu)
        assert element_present(provider, item)() is not None

    @pytest.mark.unit
    def test_text_equals(self):
        provider = FakeProvider()
        provider.add(BUTTON, FakeElement(text="Hi"))
        condition = text_equals(provider, BUTTON, "Hello")
        assert condition() is False
        assert "'Hi'" in condition.last_state
        assert text_equals(provider, BUTTON, "Hi")() is True
