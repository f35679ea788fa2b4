"""
Flow Composer — 把 Page 操作串成可重用的使用者旅程

Flow 是資料，不是控制結構：一串有序的 step，每個 step 是
「PageObject → 下一個 PageObject」的函式。分支邏輯放在 step 裡，
composer 本身保持線性、可稽核。

run_flow() 依序執行，把第 n 步的回傳值交給第 n+1 步；
任何一步失敗立刻停止，拋出包住原始錯誤的 FlowError（step 編號從 1 起算）。

用法：
    from core.flow import Flow, action, expect

    LOGIN_JOURNEY = Flow.of(
        "login_journey",
        action("open_login"),
        action("login", "a@x.com", "pw"),
        expect("is_loaded", "首頁未載入"),
    )

    home = run_flow(LOGIN_JOURNEY, WelcomePage(session))
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

import allure

from core.cancellation import CancelToken
from core.event_bus import event_bus
from core.exceptions import FlowError, PageAssertionError
from utils.logger import logger

StepFn = Callable[[Any], Any]


@dataclass(frozen=True)
class Step:
    """Flow 中的一步"""
    name: str
    fn: StepFn

    def __call__(self, page: Any) -> Any:
        return self.fn(page)


def _step_name(fn: StepFn) -> str:
    return getattr(fn, "__name__", None) or repr(fn)


@dataclass(frozen=True)
class Flow:
    """不可變的 step 序列；本身不持有任何 session 狀態，可在測試間共用"""

    name: str
    steps: tuple[Step, ...] = ()

    @classmethod
    def of(cls, name: str, *steps: Step | StepFn) -> "Flow":
        return cls(name, tuple(_as_step(s) for s in steps))

    def then(self, step: Step | StepFn, name: str | None = None) -> "Flow":
        """回傳多一步的新 Flow"""
        new_step = _as_step(step)
        if name:
            new_step = Step(name, new_step.fn)
        return Flow(self.name, self.steps + (new_step,))

    def extend(self, other: "Flow") -> "Flow":
        """串接另一個 Flow 的所有 step"""
        return Flow(self.name, self.steps + other.steps)

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self):
        return iter(self.steps)


def _as_step(step: Step | StepFn) -> Step:
    if isinstance(step, Step):
        return step
    if not callable(step):
        raise TypeError(f"Flow step 必須是 callable: {step!r}")
    return Step(_step_name(step), step)


def action(method: str, *args, **kwargs) -> Step:
    """呼叫 PageObject 上的某個 action，並以其回傳值作為下一步的輸入"""
    shown = ", ".join(
        [repr(a) for a in args] + [f"{k}={v!r}" for k, v in kwargs.items()]
    )

    def _call(page):
        return getattr(page, method)(*args, **kwargs)

    return Step(f"{method}({shown})", _call)


def expect(method: str, message: str = "", *args, **kwargs) -> Step:
    """呼叫 PageObject 上回傳 bool 的斷言；為 False 時失敗，成立則原樣傳下去"""

    def _check(page):
        if not getattr(page, method)(*args, **kwargs):
            raise PageAssertionError(
                message or f"{type(page).__name__}.{method}() 不成立"
            )
        return page

    return Step(f"expect {method}", _check)


def run_flow(flow: Flow, initial: Any, cancel: CancelToken | None = None) -> Any:
    """
    執行 Flow。

    Returns:
        最後一步的回傳值（通常是最終畫面的 PageObject）

    Raises:
        FlowError: 第一個失敗的 step（原始錯誤放在 __cause__ 與 .original）
    """
    current = initial
    for index, step in enumerate(flow.steps, start=1):
        event_bus.emit("flow.step", {
            "flow": flow.name, "step_index": index, "step_name": step.name,
        }, source="flow")
        try:
            if cancel is not None:
                cancel.raise_if_cancelled()
            with allure.step(f"{flow.name} #{index}: {step.name}"):
                current = step(current)
        except Exception as e:
            logger.error(f"[Flow] {flow.name} 第 {index} 步 '{step.name}' 失敗: {e}")
            raise FlowError(flow.name, index, step.name, e) from e
        logger.debug(f"[Flow] {flow.name} 第 {index} 步 '{step.name}' 完成")
    return current
