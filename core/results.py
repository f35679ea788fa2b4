"""
測試結果模型

TestResult / FailureArtifact 建立後不可變；每個測試恰好產生一筆 TestResult，
失敗（fail / error）的測試另外恰好產生一個 FailureArtifact。

彙整一律以 identifier 為 key，不依完成順序，各 lane 的完成順序不固定。
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Protocol, runtime_checkable

from core.exceptions import SuiteError


class Outcome(str, Enum):
    PASS = "pass"
    FAIL = "fail"      # 受測 App 行為不符預期
    ERROR = "error"    # 基礎設施問題（lane 建立失敗、session 斷線）


@dataclass(frozen=True)
class FailureArtifact:
    """
    失敗現場

    Attributes:
        test_id: 測試 identifier
        timestamp: 擷取時間（YYYYmmdd_HHMMSS_ffffff）
        directory: 現場檔案目錄（名稱由 test_id + timestamp 決定）
        payloads: 名稱 → 檔案路徑（screenshot / element_tree / device_log / harness_log / info）
        degraded: 是否有任何一項擷取失敗
        capture_errors: 擷取失敗的說明
    """

    test_id: str
    timestamp: str
    directory: Path | None
    payloads: dict[str, Path] = field(default_factory=dict)
    degraded: bool = False
    capture_errors: tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.directory.name if self.directory is not None else ""


@dataclass(frozen=True)
class TestResult:
    """單一測試的最終結果"""

    __test__ = False

    test_id: str
    outcome: Outcome
    duration: float
    lane_index: int | None = None
    error_type: str = ""
    error_message: str = ""
    step_index: int | None = None
    artifact: FailureArtifact | None = None

    @property
    def passed(self) -> bool:
        return self.outcome is Outcome.PASS


@runtime_checkable
class ResultSink(Protocol):
    """結果輸出端（報表、資料庫、上傳...由使用者實作）"""

    def record_result(self, result: TestResult) -> None:
        ...

    def record_artifact(self, artifact: FailureArtifact) -> None:
        ...


class ListSink:
    """把結果存在記憶體列表，測試與 CLI 摘要用"""

    def __init__(self):
        self.results: list[TestResult] = []
        self.artifacts: list[FailureArtifact] = []
        self._lock = threading.Lock()

    def record_result(self, result: TestResult) -> None:
        with self._lock:
            self.results.append(result)

    def record_artifact(self, artifact: FailureArtifact) -> None:
        with self._lock:
            self.artifacts.append(artifact)


class ResultCollector:
    """
    以 identifier 彙整結果，同一個 identifier 只能記錄一次。

    Args:
        order: 測試宣告順序，ordered() 依此排序
    """

    def __init__(self, order: Iterable[str]):
        self._order = list(order)
        self._results: dict[str, TestResult] = {}
        self._lock = threading.Lock()

    def record(self, result: TestResult) -> None:
        with self._lock:
            if result.test_id in self._results:
                raise SuiteError(f"測試結果重複記錄: {result.test_id}")
            self._results[result.test_id] = result

    def snapshot(self) -> "SuiteResult":
        with self._lock:
            return SuiteResult(dict(self._results), tuple(self._order))


@dataclass(frozen=True)
class SuiteResult:
    """整個套件的彙整結果"""

    results: dict[str, TestResult]
    order: tuple[str, ...] = ()

    def __getitem__(self, test_id: str) -> TestResult:
        return self.results[test_id]

    def __len__(self) -> int:
        return len(self.results)

    def ordered(self) -> list[TestResult]:
        """依宣告順序列出（與完成順序無關）"""
        return [self.results[t] for t in self.order if t in self.results]

    def count(self, outcome: Outcome) -> int:
        return sum(1 for r in self.results.values() if r.outcome is outcome)

    @property
    def passed(self) -> int:
        return self.count(Outcome.PASS)

    @property
    def failed(self) -> int:
        return self.count(Outcome.FAIL)

    @property
    def errored(self) -> int:
        return self.count(Outcome.ERROR)

    @property
    def artifacts(self) -> list[FailureArtifact]:
        return [r.artifact for r in self.ordered() if r.artifact is not None]

    @property
    def exit_code(self) -> int:
        """0 全部通過、1 有失敗、2 只有基礎設施錯誤"""
        if self.failed:
            return 1
        if self.errored:
            return 2
        return 0

    def summary(self) -> str:
        return (f"{len(self)} 個測試: {self.passed} passed, "
                f"{self.failed} failed, {self.errored} error")
