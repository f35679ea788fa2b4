"""
Timing Plugin — 操作耗時追蹤

記錄每個 Page 操作（含等待與重試）的執行時間，方便找出效能瓶頸。
超過閾值自動警告。各 lane 同時寫入，紀錄以鎖保護。
"""

import threading
import time

from core.middleware import middleware_chain
from core.plugin_manager import Plugin
from utils.logger import logger


class TimingPlugin(Plugin):
    """追蹤 Page 操作耗時"""

    name = "timing"
    version = "1.1.0"
    description = "記錄每個操作的耗時，超過閾值自動警告"

    def __init__(self, warn_threshold: float = 5.0, chain=None):
        """
        Args:
            warn_threshold: 超過此秒數發出警告
            chain: 掛載的 middleware 鏈，預設全域 middleware_chain
        """
        self.warn_threshold = warn_threshold
        self.records: list[dict] = []
        self._lock = threading.Lock()
        self._chain = chain or middleware_chain
        # remove() 以 identity 比對，需保留同一個 bound method
        self._middleware = self._timing_middleware

    def on_register(self) -> None:
        self._chain.use(self._middleware)

    def on_unregister(self) -> None:
        self._chain.remove(self._middleware)

    def _timing_middleware(self, context, next_fn):
        start = time.monotonic()
        try:
            return next_fn()
        finally:
            elapsed = time.monotonic() - start
            record = {
                "lane": context.lane_index,
                "page": getattr(context.page, "page_name", ""),
                "action": context.action,
                "locator": str(context.locator),
                "elapsed": elapsed,
            }
            with self._lock:
                self.records.append(record)

            if elapsed > self.warn_threshold:
                logger.warning(
                    f"[Timing] {context.action} 耗時 {elapsed:.2f}s "
                    f"(超過 {self.warn_threshold}s): {context.locator}"
                )

    def get_report(self) -> dict:
        """取得耗時報告"""
        with self._lock:
            records = list(self.records)
        if not records:
            return {"total": 0, "avg": 0, "max": 0, "slowest": [], "by_lane": {}}

        times = [r["elapsed"] for r in records]
        slowest = sorted(records, key=lambda r: r["elapsed"], reverse=True)[:5]
        by_lane: dict = {}
        for r in records:
            by_lane[r["lane"]] = by_lane.get(r["lane"], 0.0) + r["elapsed"]

        return {
            "total": len(records),
            "avg": sum(times) / len(times),
            "max": max(times),
            "slowest": slowest,
            "by_lane": by_lane,
        }
