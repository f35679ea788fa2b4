"""
core.cancellation 單元測試
驗證 CancelToken 的取消旗標、期限與可中斷 sleep。
"""

import threading
import time

import pytest

from core.cancellation import CancelToken
from core.exceptions import CancelledError, TestTimeoutError


@pytest.mark.unit
class TestCancelToken:
    """CancelToken"""

    @pytest.mark.unit
    def test_fresh_token(self):
        token = CancelToken()
        assert not token.cancelled
        assert token.remaining() is None
        token.raise_if_cancelled()

    @pytest.mark.unit
    def test_cancel(self):
        token = CancelToken()
        token.cancel("使用者中斷")
        assert token.cancelled
        with pytest.raises(CancelledError, match="使用者中斷") as exc_info:
            token.raise_if_cancelled()
        assert not isinstance(exc_info.value, TestTimeoutError)

    @pytest.mark.unit
    @pytest.mark.parametrize("seconds", [None, 0, -1])
    def test_no_deadline(self, seconds):
        assert CancelToken.with_timeout(seconds).deadline is None

    @pytest.mark.unit
    def test_deadline_expires(self):
        token = CancelToken.with_timeout(0.05)
        time.sleep(0.06)
        assert token.expired
        assert token.remaining() == 0.0
        with pytest.raises(TestTimeoutError):
            token.raise_if_cancelled()

    @pytest.mark.unit
    def test_explicit_cancel_wins_over_deadline(self):
        token = CancelToken.with_timeout(0.01)
        time.sleep(0.02)
        token.cancel("stop")
        with pytest.raises(CancelledError) as exc_info:
            token.raise_if_cancelled()
        assert not isinstance(exc_info.value, TestTimeoutError)


@pytest.mark.unit
class TestInterruptibleSleep:
    """CancelToken.sleep"""

    @pytest.mark.unit
    def test_sleeps(self):
        start = time.monotonic()
        CancelToken().sleep(0.05)
        assert time.monotonic() - start >= 0.04

    @pytest.mark.unit
    def test_woken_by_cancel(self):
        token = CancelToken()
        threading.Timer(0.05, token.cancel, args=("stop",)).start()
        start = time.monotonic()
        with pytest.raises(CancelledError):
            token.sleep(5)
        assert time.monotonic() - start < 2

    @pytest.mark.unit
    def test_never_sleeps_past_deadline(self):
        token = CancelToken.with_timeout(0.05)
        start = time.monotonic()
        with pytest.raises(TestTimeoutError):
            token.sleep(5)
        assert time.monotonic() - start < 2

    @pytest.mark.unit
    def test_zero_sleep_still_checks(self):
        token = CancelToken()
        token.cancel()
        with pytest.raises(CancelledError):
            token.sleep(0)
