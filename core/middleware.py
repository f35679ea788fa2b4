"""
Middleware 層 — Page 操作前後攔截

每個 Page 操作 (tap, type_text, read_text) 都經過 middleware 鏈，
最內層才是「等待 → 重試包裹的 provider 操作」。

用法：
    from core.middleware import middleware_chain

    @middleware_chain.use
    def log_actions(context, next_fn):
        logger.info(f"開始: {context.action} on {context.locator}")
        return next_fn()

    @middleware_chain.use_if(lambda ctx: ctx.action == "tap")
    def tap_only(context, next_fn):
        ...

中介層順序：按 use() 註冊順序執行，最後才到真正的操作。
middleware 會在多條 lane 上同時執行，不可在 context 以外保存每次操作的狀態。
"""

from __future__ import annotations

import threading
from typing import Any, Callable

from utils.logger import logger


class MiddlewareContext:
    """傳遞給每個 middleware 的上下文（每次操作各自一份）"""

    def __init__(self, page, action: str, locator,
                 kwargs: dict | None = None):
        self.page = page
        self.action = action          # "tap", "type_text", "read_text" 等
        self.locator = locator
        self.kwargs = kwargs or {}
        self.extra: dict[str, Any] = {}   # middleware 間傳遞自訂資料
        self.skip = False              # 設 True 跳過後續 middleware + 操作

    @property
    def lane_index(self) -> int | None:
        session = getattr(self.page, "session", None)
        return getattr(session, "lane_index", None)

    def __getitem__(self, key):
        return getattr(self, key, self.extra.get(key))

    def __setitem__(self, key, value):
        self.extra[key] = value


# Middleware 函式簽名: (context: MiddlewareContext, next_fn: Callable) -> Any
MiddlewareFn = Callable[[MiddlewareContext, Callable], Any]


class MiddlewareChain:
    """Middleware 鏈管理器"""

    def __init__(self):
        self._middlewares: list[tuple[MiddlewareFn, Callable | None]] = []
        self._lock = threading.Lock()

    def use(self, fn: MiddlewareFn | None = None) -> MiddlewareFn | Callable:
        """加入 middleware。可當 decorator 或直接呼叫。"""
        def _register(middleware: MiddlewareFn) -> MiddlewareFn:
            with self._lock:
                self._middlewares = self._middlewares + [(middleware, None)]
            logger.debug(f"Middleware 已註冊: {middleware.__name__}")
            return middleware

        if fn is not None:
            return _register(fn)
        return _register

    def use_if(self, condition: Callable[[MiddlewareContext], bool]):
        """有條件的 middleware，只在 condition 為 True 時執行。"""
        def _decorator(middleware: MiddlewareFn) -> MiddlewareFn:
            with self._lock:
                self._middlewares = self._middlewares + [(middleware, condition)]
            return middleware
        return _decorator

    def remove(self, fn: MiddlewareFn) -> None:
        """移除 middleware"""
        with self._lock:
            self._middlewares = [
                (m, c) for m, c in self._middlewares if m is not fn
            ]

    def clear(self) -> None:
        """清除所有 middleware"""
        with self._lock:
            self._middlewares = []

    def execute(self, context: MiddlewareContext,
                core_fn: Callable) -> Any:
        """依序經過每個 middleware，最後執行 core_fn（實際操作）。"""
        if context.skip:
            return None

        # 取快照：註冊/移除用 copy-on-write，執行中不受影響
        snapshot = self._middlewares
        applicable = [
            mw for mw, condition in snapshot
            if condition is None or condition(context)
        ]

        def _final():
            if context.skip:
                return None
            return core_fn()

        chain = _final
        for mw in reversed(applicable):
            chain = _make_next(mw, context, chain)

        return chain()

    @property
    def count(self) -> int:
        return len(self._middlewares)


def _make_next(middleware: MiddlewareFn, context: MiddlewareContext,
               next_fn: Callable) -> Callable:
    """建構 chain 節點（避免閉包變數問題）"""
    def _wrapper():
        return middleware(context, next_fn)
    return _wrapper


# 全域 singleton
middleware_chain = MiddlewareChain()
