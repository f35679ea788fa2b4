"""
LaneSession — 一個測試在一條 lane 上的執行綁定

排程器在測試開始時建立，PageObject 以它為唯一的依賴來源：
provider、設定、重試策略、取消信號都從這裡取。
測試結束即丟棄，絕不跨 lane、跨測試共用。
"""

from __future__ import annotations

from dataclasses import dataclass

from config.config import Settings
from core.cancellation import CancelToken
from core.exceptions import LaneIsolationError
from core.provider import ElementProvider
from core.retry import RetryPolicy
from utils.logger import current_lane


@dataclass(frozen=True)
class LaneSession:
    lane_index: int
    provider: ElementProvider
    settings: Settings
    cancel: CancelToken
    test_id: str = ""
    retry_policy: RetryPolicy | None = None

    @property
    def policy(self) -> RetryPolicy:
        if self.retry_policy is not None:
            return self.retry_policy
        return RetryPolicy.from_settings(self.settings)

    def check_owner(self) -> None:
        """
        確認目前執行緒就是這條 lane。

        未綁定 lane 的執行緒（例如單獨在 REPL 使用 PageObject）不檢查。
        """
        running_on = current_lane()
        if running_on is not None and running_on != self.lane_index:
            raise LaneIsolationError(self.lane_index, running_on)
