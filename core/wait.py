"""
等待引擎
以期限控制的輪詢迴圈取代固定 sleep：條件一成立立刻回傳，逾時則拋出
帶有最後觀察狀態的 WaitTimeoutError，絕不把失敗狀態當成功回傳。

規則：
- 每次輪詢都重新向 provider 查詢，不沿用上一輪的 ElementRef
- timeout <= 0 時只同步評估一次
- 每一輪都檢查 CancelToken（取消或超過測試總時限立即中止）
- 純讀取，除了 provider 查詢外沒有任何副作用

用法：
    from core.wait import WaitSpec, wait_until, FluentWait, element_actionable

    ref = wait_until(WaitSpec(element_actionable(provider, LOGIN), timeout=10))

    ref = (
        FluentWait()
        .timeout(15)
        .polling(0.3)
        .message("登入按鈕未出現")
        .until(element_actionable(provider, LOGIN))
        .wait()
    )
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from core.cancellation import CancelToken
from core.exceptions import CancelledError, InfrastructureError, WaitTimeoutError
from core.locator import Locator
from core.provider import ActionKind, ElementProvider, resolve
from utils.logger import logger

T = TypeVar("T")

# 這兩類錯誤代表「再等也沒用」，一律直接往上拋
_NEVER_IGNORED = (CancelledError, InfrastructureError)


@dataclass(frozen=True)
class WaitSpec:
    """
    一次等待的完整描述（每次呼叫各自建立，不跨執行緒共用）

    Attributes:
        predicate: 回傳 truthy 即成立的 callable
        timeout: 最長等待秒數，<= 0 表示只評估一次
        poll_interval: 輪詢間隔秒數
        description: 逾時訊息中的條件描述
        ignored: 評估時視為「尚未成立」的例外類型
    """

    predicate: Callable[[], Any]
    timeout: float = 10.0
    poll_interval: float = 0.5
    description: str = ""
    ignored: tuple[type[BaseException], ...] = (Exception,)

    def __post_init__(self):
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval 必須大於 0: {self.poll_interval}")

    @classmethod
    def with_defaults(cls, predicate: Callable[[], Any], settings,
                      timeout: float | None = None,
                      poll_interval: float | None = None,
                      description: str = "") -> "WaitSpec":
        """未指定的欄位從 Settings 取預設值"""
        return cls(
            predicate=predicate,
            timeout=settings.default_timeout if timeout is None else timeout,
            poll_interval=(settings.default_poll_interval
                           if poll_interval is None else poll_interval),
            description=description,
        )

    @property
    def label(self) -> str:
        return self.description or getattr(self.predicate, "description", "") \
            or getattr(self.predicate, "__name__", "condition")


def _evaluate(spec: WaitSpec) -> tuple[Any, str]:
    """評估一次條件，回傳 (結果, 觀察到的狀態描述)"""
    try:
        result = spec.predicate()
    except _NEVER_IGNORED:
        raise
    except spec.ignored as e:
        return None, f"{type(e).__name__}: {e}"
    state = getattr(spec.predicate, "last_state", "") or repr(result)
    return result, state


def wait_until(spec: WaitSpec, cancel: CancelToken | None = None) -> Any:
    """
    輪詢 spec.predicate 直到成立。

    Returns:
        predicate 第一次 truthy 的回傳值

    Raises:
        WaitTimeoutError: 逾時仍未成立（附最後觀察狀態）
        CancelledError: 等待中被取消或超過測試總時限
    """
    token = cancel or CancelToken()
    token.raise_if_cancelled()

    if spec.timeout <= 0:
        result, state = _evaluate(spec)
        if result:
            return result
        raise WaitTimeoutError(spec.label, spec.timeout, state, polls=1)

    deadline = time.monotonic() + spec.timeout
    polls = 0
    last_state = ""

    while True:
        polls += 1
        result, last_state = _evaluate(spec)
        if result:
            if polls > 1:
                logger.debug(f"[Wait] {spec.label} 成立 (第 {polls} 次輪詢)")
            return result
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        token.sleep(min(spec.poll_interval, remaining))

    logger.debug(f"[Wait] {spec.label} 逾時 ({spec.timeout}s, {polls} 次輪詢)")
    raise WaitTimeoutError(spec.label, spec.timeout, last_state, polls=polls)


def wait_for(
    condition: Callable[[], T],
    timeout: float = 10,
    interval: float = 0.5,
    message: str = "",
    cancel: CancelToken | None = None,
) -> T:
    """wait_until 的簡易版本"""
    return wait_until(
        WaitSpec(condition, timeout=timeout, poll_interval=interval,
                 description=message),
        cancel,
    )


class FluentWait:
    """
    Fluent Wait — 可鏈式設定的等待器

    設定完成後 .wait() 會產生一個 WaitSpec 交給 wait_until 執行。
    """

    def __init__(self, cancel: CancelToken | None = None):
        self._timeout: float = 10.0
        self._interval: float = 0.5
        self._condition: Callable | None = None
        self._message: str = ""
        self._ignored: tuple = (Exception,)
        self._cancel = cancel

    def timeout(self, seconds: float) -> "FluentWait":
        """設定最大等待秒數"""
        self._timeout = seconds
        return self

    def polling(self, interval: float) -> "FluentWait":
        """設定輪詢間隔秒數"""
        self._interval = interval
        return self

    def ignoring(self, *exception_types: type) -> "FluentWait":
        """只把這些例外視為「尚未成立」，其他例外直接拋出"""
        self._ignored = exception_types
        return self

    def message(self, msg: str) -> "FluentWait":
        """設定逾時錯誤訊息中的條件描述"""
        self._message = msg
        return self

    def until(self, condition: Callable[[], T]) -> "FluentWait":
        """設定等待條件"""
        self._condition = condition
        return self

    def spec(self) -> WaitSpec:
        if self._condition is None:
            raise ValueError("必須先呼叫 .until(condition) 設定等待條件")
        return WaitSpec(
            predicate=self._condition,
            timeout=self._timeout,
            poll_interval=self._interval,
            description=self._message,
            ignored=self._ignored,
        )

    def wait(self) -> Any:
        """執行等待，回傳條件的回傳值"""
        return wait_until(self.spec(), self._cancel)


# ── 常用條件 ──
#
# 條件物件每次被呼叫都重新 resolve locator，並把觀察結果記在 last_state，
# 逾時時 wait_until 會把它放進錯誤訊息。

class ElementCondition:
    """元素條件基底"""

    verb = "condition"

    def __init__(self, provider: ElementProvider, locator: Locator):
        self.provider = provider
        self.locator = locator
        self.last_state = ""

    @property
    def description(self) -> str:
        return f"{self.verb}: {self.locator}"

    def __call__(self) -> Any:
        raise NotImplementedError


class element_present(ElementCondition):
    """元素存在（不論是否可操作），成立時回傳第一個 ElementRef"""

    verb = "元素存在"

    def __call__(self) -> Any:
        refs = resolve(self.provider, self.locator)
        self.last_state = f"找到 {len(refs)} 個元素"
        return refs[0] if refs else None


class element_actionable(ElementCondition):
    """元素可操作（可見、可用、位置穩定），成立時回傳該 ElementRef"""

    verb = "元素可操作"

    def __call__(self) -> Any:
        refs = resolve(self.provider, self.locator)
        if not refs:
            self.last_state = "找不到元素"
            return None
        for ref in refs:
            if self.provider.is_actionable(ref):
                self.last_state = "可操作"
                return ref
        self.last_state = f"找到 {len(refs)} 個元素，皆不可操作"
        return None


class element_absent(ElementCondition):
    """元素消失"""

    verb = "元素消失"

    def __call__(self) -> bool:
        refs = resolve(self.provider, self.locator)
        self.last_state = f"仍有 {len(refs)} 個元素" if refs else "已消失"
        return not refs


class text_equals(ElementCondition):
    """元素文字等於預期值"""

    verb = "文字相符"

    def __init__(self, provider: ElementProvider, locator: Locator, expected: str):
        super().__init__(provider, locator)
        self.expected = expected

    def __call__(self) -> bool:
        refs = resolve(self.provider, self.locator)
        if not refs:
            self.last_state = "找不到元素"
            return False
        actual = self.provider.act(refs[0], ActionKind.READ_TEXT)
        self.last_state = f"目前文字: {actual!r}，預期: {self.expected!r}"
        return actual == self.expected
