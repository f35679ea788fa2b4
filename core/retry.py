"""
Retry Policy — 暫時性錯誤的有限重試

與等待引擎的分工：
- 等待：操作「之前」讀取條件，直到成立
- 重試：操作的「副作用」可能沒生效（例如點擊沒註冊到），需要重新執行

規則：
- 只重試白名單內的錯誤特徵，其他錯誤第一次發生就往上拋
- 第 k 次失敗後等待 backoff[k-1]（超出表長度時沿用最後一個值）
- 超過 max_attempts 時拋 RetryExhaustedError（附嘗試次數與耗時）
- 每一輪都檢查 CancelToken

決策邏輯不靠 try/except 流程控制：每次執行先被分類成
Success / RetryableFailure / FatalFailure，再交給 decide() 決定下一步，
因此可以不實際執行 action 就單獨測試決策。

用法：
    from core.retry import RetryPolicy, with_retry, whitelist

    policy = RetryPolicy(
        max_attempts=3,
        backoff=(0.5, 1.0),
        matcher=whitelist("StaleElementReferenceException"),
    )
    with_retry(policy, lambda: page.tap(BUTTON))
"""

from __future__ import annotations

import functools
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Iterable, TypeVar, Union

from core.cancellation import CancelToken
from core.exceptions import CancelledError, RetryExhaustedError
from utils.logger import logger

T = TypeVar("T")

ErrorMatcher = Callable[[BaseException], bool]


# ── 錯誤特徵比對 ──

def error_signature(error: BaseException) -> set[str]:
    """
    一個錯誤的所有特徵：例外類別名稱（含父類別）+ signature 屬性。

    ActionRejectedError 會把底層原因（如 StaleElementReferenceException）
    放在 signature，白名單可以只放行特定原因的拒絕。
    """
    names = {cls.__name__ for cls in type(error).__mro__
             if cls not in (object, BaseException, Exception)}
    signature = getattr(error, "signature", "")
    if signature:
        names.add(signature)
    return names


def whitelist(*signatures: Union[str, type]) -> ErrorMatcher:
    """
    建立白名單比對器。

    Args:
        signatures: 例外類別，或類別名稱 / signature 字串

    Returns:
        error -> bool，只有白名單內的錯誤回傳 True
    """
    classes = tuple(s for s in signatures if isinstance(s, type))
    names = frozenset(s for s in signatures if isinstance(s, str))

    def _matcher(error: BaseException) -> bool:
        if classes and isinstance(error, classes):
            return True
        return bool(names & error_signature(error))

    _matcher.signatures = tuple(signatures)
    return _matcher


def _match_nothing(error: BaseException) -> bool:
    return False


def exponential_backoff(base: float = 1.0, factor: float = 2.0,
                        count: int = 3) -> tuple[float, ...]:
    """base, base*factor, base*factor^2, ..."""
    return tuple(base * factor ** i for i in range(count))


@dataclass(frozen=True)
class RetryPolicy:
    """
    重試策略（執行期唯讀）

    Attributes:
        max_attempts: 最多嘗試次數（含第一次）
        backoff: 每次失敗後的等待秒數表
        matcher: error -> 是否可重試
    """

    max_attempts: int = 3
    backoff: tuple[float, ...] = (0.5,)
    matcher: ErrorMatcher = _match_nothing

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts 至少為 1: {self.max_attempts}")

    @classmethod
    def never(cls) -> "RetryPolicy":
        """不重試"""
        return cls(max_attempts=1, backoff=(), matcher=_match_nothing)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            backoff=tuple(settings.retry_backoff),
            matcher=whitelist(*sorted(settings.retry_whitelist)),
        )

    def delay_for(self, attempt: int) -> float:
        """第 attempt 次（1-based）失敗後的等待秒數"""
        if not self.backoff:
            return 0.0
        return self.backoff[min(attempt - 1, len(self.backoff) - 1)]


# ── 執行結果變體 ──

@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class RetryableFailure:
    error: BaseException


@dataclass(frozen=True)
class FatalFailure:
    error: BaseException


Outcome = Union[Success, RetryableFailure, FatalFailure]


class Verdict(Enum):
    RETURN = "return"          # 成功，回傳結果
    RETRY = "retry"            # 等 delay 後再試
    RAISE = "raise"            # 非白名單錯誤，原樣拋出
    EXHAUSTED = "exhausted"    # 白名單錯誤但次數用盡


@dataclass(frozen=True)
class RetryDecision:
    verdict: Verdict
    delay: float = 0.0


def classify(policy: RetryPolicy, action: Callable[[], T]) -> Outcome:
    """執行一次 action 並分類結果；取消信號永遠視為致命"""
    try:
        return Success(action())
    except CancelledError as e:
        return FatalFailure(e)
    except Exception as e:
        if policy.matcher(e):
            return RetryableFailure(e)
        return FatalFailure(e)


def decide(policy: RetryPolicy, attempt: int, outcome: Outcome) -> RetryDecision:
    """
    根據第 attempt 次（1-based）的結果決定下一步。純函式。
    """
    if isinstance(outcome, Success):
        return RetryDecision(Verdict.RETURN)
    if isinstance(outcome, FatalFailure):
        return RetryDecision(Verdict.RAISE)
    if attempt >= policy.max_attempts:
        return RetryDecision(Verdict.EXHAUSTED)
    return RetryDecision(Verdict.RETRY, policy.delay_for(attempt))


def with_retry(policy: RetryPolicy, action: Callable[[], T],
               cancel: CancelToken | None = None, label: str = "") -> T:
    """
    依策略執行 action。

    Returns:
        action 成功時的回傳值

    Raises:
        非白名單錯誤: 第一次發生就原樣拋出
        RetryExhaustedError: 白名單錯誤重複發生超過上限
        CancelledError: 重試等待中被取消
    """
    token = cancel or CancelToken()
    label = label or getattr(action, "__name__", "action")
    start = time.monotonic()
    attempt = 0

    while True:
        token.raise_if_cancelled()
        attempt += 1
        outcome = classify(policy, action)
        decision = decide(policy, attempt, outcome)

        if decision.verdict is Verdict.RETURN:
            if attempt > 1:
                logger.info(f"[Retry] {label} 第 {attempt} 次嘗試成功")
            return outcome.value
        if decision.verdict is Verdict.RAISE:
            raise outcome.error
        if decision.verdict is Verdict.EXHAUSTED:
            elapsed = time.monotonic() - start
            logger.error(
                f"[Retry] {label} 重試 {attempt} 次後仍失敗: {outcome.error}"
            )
            raise RetryExhaustedError(outcome.error, attempt, elapsed) \
                from outcome.error

        logger.warning(
            f"[Retry] {label} 第 {attempt}/{policy.max_attempts} 次失敗，"
            f"{decision.delay}s 後重試: {outcome.error}"
        )
        token.sleep(decision.delay)


def retryable(policy: RetryPolicy):
    """
    裝飾器版本。

    用法：
        @retryable(RetryPolicy(max_attempts=3, matcher=whitelist(IOError)))
        def upload(): ...
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return with_retry(policy, lambda: func(*args, **kwargs),
                              label=func.__name__)
        return wrapper
    return decorator


def run_attempts(policy: RetryPolicy, outcomes: Iterable[Outcome]) -> list[RetryDecision]:
    """對一串預先給定的結果逐一做決策（除錯與策略檢視用）"""
    decisions = []
    for attempt, outcome in enumerate(outcomes, start=1):
        decision = decide(policy, attempt, outcome)
        decisions.append(decision)
        if decision.verdict is not Verdict.RETRY:
            break
    return decisions
