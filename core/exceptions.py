"""
自訂 Exception 體系

統一的錯誤處理階層，讓每種失敗都有明確的分類與訊息。
上層可以 catch 大類別 (如 HarnessError)，
也可以精準 catch 子類別 (如 ElementNotReadyError)。

Exception 樹：
    HarnessError
    ├── WaitError
    │   └── WaitTimeoutError          (同時是內建 TimeoutError)
    ├── PageError
    │   ├── ElementNotReadyError      等待元素逾時
    │   ├── ActionRejectedError       等待成功後操作仍被拒絕
    │   ├── PageNotLoadedError
    │   └── PageAssertionError
    ├── RetryExhaustedError
    ├── FlowError
    ├── CancelledError
    │   └── TestTimeoutError
    ├── InfrastructureError           → 測試結果記為 error
    │   ├── ProvisioningError
    │   └── SessionLostError
    ├── LaneError
    │   ├── LaneStateError
    │   └── LaneIsolationError
    ├── CaptureError
    ├── SuiteError
    └── PluginError

結果分類：錯誤的 cause 鏈中只要有 InfrastructureError 就是 error，
其餘一律是 fail（App 行為不符預期）。
"""

from __future__ import annotations


class HarnessError(Exception):
    """框架所有例外的基底，catch 這個就能攔截一切框架錯誤"""

    def __init__(self, message: str = "", context: dict | None = None):
        self.context = context or {}
        super().__init__(message)


# ── Wait 相關 ──

class WaitError(HarnessError):
    """等待引擎錯誤"""


class WaitTimeoutError(WaitError, TimeoutError):
    """等待條件在逾時前始終未成立"""

    def __init__(self, description: str = "", timeout: float = 0,
                 last_state: str = "", polls: int = 0):
        self.description = description
        self.timeout = timeout
        self.last_state = last_state
        self.polls = polls
        msg = f"等待逾時 ({timeout}s): {description or '條件未成立'}"
        if last_state:
            msg += f" | 最後狀態: {last_state}"
        super().__init__(msg, context={
            "description": description,
            "timeout": timeout,
            "last_state": last_state,
            "polls": polls,
        })


# ── Page / Element 相關 ──

class PageError(HarnessError):
    """頁面操作相關錯誤"""


class ElementNotReadyError(PageError):
    """前置元素在等待時間內未達可操作狀態"""

    def __init__(self, locator=None, timeout: float = 0, last_state: str = "",
                 page: str = ""):
        self.locator = locator
        self.timeout = timeout
        self.last_state = last_state
        msg = f"元素未就緒: {locator}"
        if page:
            msg = f"[{page}] {msg}"
        if timeout:
            msg += f" (等待 {timeout}s)"
        if last_state:
            msg += f" | 最後狀態: {last_state}"
        super().__init__(msg, context={
            "locator": locator, "timeout": timeout, "page": page,
        })


class ActionRejectedError(PageError):
    """
    Provider 拒絕執行操作（例如等待成功後元素又變成 disabled）。

    與 ElementNotReadyError 分開回報：這代表等待條件有漏洞，
    不只是單純的時間問題。

    Attributes:
        signature: 拒絕原因的特徵字串，重試白名單以此比對
    """

    def __init__(self, locator=None, action: str = "", reason: str = "",
                 signature: str = ""):
        self.locator = locator
        self.action = action
        self.reason = reason
        self.signature = signature
        msg = f"操作被拒絕: {action} -> {locator}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg, context={
            "locator": locator, "action": action, "signature": signature,
        })


class PageNotLoadedError(PageError):
    """頁面未載入完成"""

    def __init__(self, page_name: str = ""):
        super().__init__(
            f"頁面未載入: {page_name}" if page_name else "頁面未載入",
            context={"page_name": page_name},
        )


class PageAssertionError(PageError, AssertionError):
    """頁面斷言不成立"""


# ── Retry 相關 ──

class RetryExhaustedError(HarnessError):
    """白名單內的暫時性錯誤重複發生，超過重試上限"""

    def __init__(self, last_error: BaseException, attempts: int, elapsed: float):
        self.last_error = last_error
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(
            f"重試 {attempts} 次後仍失敗 (耗時 {elapsed:.2f}s): "
            f"{type(last_error).__name__}: {last_error}",
            context={"attempts": attempts, "elapsed": elapsed},
        )


# ── Flow 相關 ──

class FlowError(HarnessError):
    """Flow 在某一步失敗，包住原始錯誤並附上旅程資訊"""

    def __init__(self, flow_name: str, step_index: int, step_name: str,
                 original: BaseException):
        self.flow_name = flow_name
        self.step_index = step_index
        self.step_name = step_name
        self.original = original
        super().__init__(
            f"Flow '{flow_name}' 第 {step_index} 步 '{step_name}' 失敗: "
            f"{type(original).__name__}: {original}",
            context={
                "flow": flow_name,
                "step_index": step_index,
                "step_name": step_name,
            },
        )


# ── Cancellation ──

class CancelledError(HarnessError):
    """執行被取消"""


class TestTimeoutError(CancelledError):
    """單一測試超過總時間上限"""

    __test__ = False  # 避免 pytest 當成測試類別收集

    def __init__(self, budget: float = 0, reason: str = ""):
        msg = reason or f"測試超過時間上限 ({budget}s)"
        super().__init__(msg, context={"budget": budget})


# ── 基礎設施 ──

class InfrastructureError(HarnessError):
    """環境/基礎設施問題，不是受測 App 的錯"""


class ProvisioningError(InfrastructureError):
    """無法備妥 lane（driver session / 裝置）"""

    def __init__(self, lane_index: int, attempts: int,
                 original: BaseException | None = None):
        self.lane_index = lane_index
        self.attempts = attempts
        self.original = original
        msg = f"Lane {lane_index} 建立失敗 (嘗試 {attempts} 次)"
        if original:
            msg += f": {type(original).__name__}: {original}"
        super().__init__(msg, context={"lane": lane_index, "attempts": attempts})


class SessionLostError(InfrastructureError):
    """Driver session 中途斷線"""

    def __init__(self, reason: str = ""):
        super().__init__(f"Driver session 已中斷: {reason}" if reason
                         else "Driver session 已中斷")


# ── Lane 相關 ──

class LaneError(HarnessError):
    """Lane 狀態或隔離錯誤"""


class LaneStateError(LaneError):
    """不合法的 lane 狀態轉換"""

    def __init__(self, lane_index: int, current, target):
        super().__init__(
            f"Lane {lane_index} 不可從 {current} 轉換到 {target}",
            context={"lane": lane_index, "from": str(current), "to": str(target)},
        )


class LaneIsolationError(LaneError):
    """某 lane 的 PageObject 在另一條 lane 上被使用"""

    def __init__(self, owner: int, used_on: int | None):
        super().__init__(
            f"Lane {owner} 的 session 被 lane {used_on} 使用",
            context={"owner": owner, "used_on": used_on},
        )


# ── Capture ──

class CaptureError(HarnessError):
    """失敗現場保全本身失敗（不會蓋掉原始錯誤）"""

    def __init__(self, payload: str, original: BaseException | None = None):
        self.payload = payload
        self.original = original
        msg = f"現場保全失敗 [{payload}]"
        if original:
            msg += f": {type(original).__name__}: {original}"
        super().__init__(msg, context={"payload": payload})


# ── Suite ──

class SuiteError(HarnessError):
    """測試套件定義錯誤（例如 identifier 重複）"""


# ── Plugin 相關 ──

class PluginError(HarnessError):
    """Plugin 載入或執行錯誤"""

    def __init__(self, plugin_name: str = "", message: str = ""):
        msg = f"Plugin 錯誤 [{plugin_name}]: {message}" if plugin_name else message
        super().__init__(msg, context={"plugin_name": plugin_name})


def is_infrastructure_error(error: BaseException | None) -> bool:
    """沿著 cause / context 鏈找 InfrastructureError"""
    seen: set[int] = set()
    while error is not None and id(error) not in seen:
        if isinstance(error, InfrastructureError):
            return True
        seen.add(id(error))
        nested = (
            getattr(error, "original", None)
            or getattr(error, "last_error", None)
            or error.__cause__
        )
        error = nested
    return False
