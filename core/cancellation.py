"""
取消信號與期限

每個測試一個 CancelToken，由排程器建立並一路傳到等待引擎與重試引擎。
兩個迴圈每一輪都會檢查，確保卡住的測試不會無限期佔住 lane。
"""

from __future__ import annotations

import threading
import time

from core.exceptions import CancelledError, TestTimeoutError


class CancelToken:
    """
    取消旗標 + 單調時鐘期限

    Args:
        deadline: time.monotonic() 的絕對期限，None 表示不限
        budget: 原始時間上限（只用於錯誤訊息）
    """

    def __init__(self, deadline: float | None = None, budget: float = 0):
        self.deadline = deadline
        self.budget = budget
        self._event = threading.Event()
        self._reason = ""

    @classmethod
    def with_timeout(cls, seconds: float | None) -> "CancelToken":
        """seconds 為 None 或 <= 0 時不設期限"""
        if not seconds or seconds <= 0:
            return cls()
        return cls(deadline=time.monotonic() + seconds, budget=seconds)

    def cancel(self, reason: str = "") -> None:
        self._reason = reason or "已取消"
        self._event.set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.expired

    def remaining(self) -> float | None:
        """距離期限剩餘秒數，None 表示不限"""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        """已取消或超過期限時拋出"""
        if self._event.is_set():
            raise CancelledError(self._reason)
        if self.expired:
            raise TestTimeoutError(self.budget)

    def sleep(self, seconds: float) -> None:
        """
        可被中斷的 sleep：取消時立刻醒來，且不會睡過期限。

        醒來後若已取消則拋出。
        """
        if seconds > 0:
            remaining = self.remaining()
            if remaining is not None:
                seconds = min(seconds, remaining)
            self._event.wait(seconds)
        self.raise_if_cancelled()

