"""
Scheduler — 測試隔離與平行排程

把一組 TestCase 分配到 N 條 lane 上，最多同時執行 N 個測試：
- 工作佇列依宣告順序，任何 lane 回到 Idle 就立刻領下一個測試
- lane 建立完成 (InUse) 前絕不開始執行測試
- lane 建立失敗時有限次重試，仍失敗則該測試記為 error（基礎設施問題）
- 測試失敗時 InUse → Capturing 恰好一次，保全現場後才 teardown 並回到 Idle
- 每個測試都拿到全新的 LaneSession 與 PageObject，不同 lane 之間不共用可變狀態
- 每個測試有總時間上限，等待/重試迴圈每一輪都會檢查

結果以 identifier 彙整，與完成順序無關。

用法：
    from core.scheduler import Scheduler, TestCase, run_suite

    suite = [
        TestCase("login_ok", LOGIN_JOURNEY, entry=WelcomePage),
        TestCase("logout", LOGOUT_JOURNEY, entry=WelcomePage),
    ]
    result = run_suite(suite, parallelism=2, provisioner=AppiumLaneProvisioner())
    print(result.summary())
"""

from __future__ import annotations

import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Protocol, Sequence

from config.config import Config, Settings
from core.cancellation import CancelToken
from core.capture import FailureCapture
from core.exceptions import (
    CancelledError,
    FlowError,
    ProvisioningError,
    SuiteError,
    TestTimeoutError,
    is_infrastructure_error,
)
from core.flow import Flow, run_flow
from core.lane import Lane, LanePool, LaneState
from core.plugin_manager import PluginManager, plugin_manager as default_plugins
from core.provider import ElementProvider
from core.results import (
    Outcome,
    ResultCollector,
    ResultSink,
    SuiteResult,
    TestResult,
)
from core.session import LaneSession
from utils.logger import bind_lane, logger, reset_lane_log


@dataclass(frozen=True)
class TestCase:
    """
    一個測試案例

    Attributes:
        identifier: 套件內唯一的名稱
        flow: 要執行的旅程
        entry: 由全新 LaneSession 建立第一個 PageObject（通常直接傳 PageObject 類別）
        timeout: 總時間上限（秒），None 時使用 Settings.test_timeout
        tags: 篩選用標籤
    """

    __test__ = False

    identifier: str
    flow: Flow
    entry: Callable[[LaneSession], Any]
    timeout: float | None = None
    tags: tuple[str, ...] = ()


class LaneProvisioner(Protocol):
    """替 lane 建立 / 拆除 driver session"""

    def provision(self, lane: Lane) -> ElementProvider:
        ...

    def teardown(self, lane: Lane, provider: ElementProvider) -> None:
        ...


def classify_error(error: BaseException) -> Outcome:
    """
    基礎設施問題、外部取消 → error；
    其他（含超過測試時限）→ fail
    """
    if is_infrastructure_error(error):
        return Outcome.ERROR
    root = error.original if isinstance(error, FlowError) else error
    if isinstance(root, CancelledError) and not isinstance(root, TestTimeoutError):
        return Outcome.ERROR
    return Outcome.FAIL


class Scheduler:
    """
    平行排程器

    Args:
        pool: lane 池（可與其他 Scheduler 共用）
        provisioner: lane session 建立者
        settings: 執行期設定，預設 Config.settings()
        capture: 現場保全 pipeline，預設依 settings.artifact_dir 建立
        sinks: 結果輸出端
        plugins: Plugin 管理器（事件通知）
    """

    def __init__(self, pool: LanePool, provisioner: LaneProvisioner,
                 settings: Settings | None = None,
                 capture: FailureCapture | None = None,
                 sinks: Iterable[ResultSink] = (),
                 plugins: PluginManager | None = None):
        self.pool = pool
        self.provisioner = provisioner
        self.settings = settings or Config.settings()
        self.capture = capture or FailureCapture(
            self.settings.artifact_dir, self.settings.log_tail_lines
        )
        self.sinks = list(sinks)
        self.plugins = plugins or default_plugins
        self._run_token = CancelToken()
        self._active: dict[str, CancelToken] = {}
        self._active_lock = threading.Lock()

    # ── 公開介面 ──

    def run(self, suite: Sequence[TestCase]) -> SuiteResult:
        """執行整個套件，回傳以 identifier 彙整的結果"""
        _validate_suite(suite)
        collector = ResultCollector(case.identifier for case in suite)
        if not suite:
            return collector.snapshot()

        work: queue.Queue[TestCase] = queue.Queue()
        for case in suite:
            work.put(case)

        workers = min(len(self.pool), len(suite))
        logger.info(
            f"[Scheduler] 開始執行 {len(suite)} 個測試，{workers} 條 lane 平行"
        )
        started = time.monotonic()

        with ThreadPoolExecutor(max_workers=workers,
                                thread_name_prefix="lane-worker") as executor:
            futures = [executor.submit(self._worker, work, collector)
                       for _ in range(workers)]
            try:
                for future in futures:
                    future.result()
            except KeyboardInterrupt:
                self.cancel("使用者中斷")
                for future in futures:
                    future.result()
                raise

        result = collector.snapshot()
        logger.info(
            f"[Scheduler] 完成 ({time.monotonic() - started:.1f}s): {result.summary()}"
        )
        return result

    def cancel(self, reason: str = "已取消") -> None:
        """取消整個執行：進行中的測試立即中止，尚未開始的測試記為 error"""
        self._run_token.cancel(reason)
        with self._active_lock:
            tokens = list(self._active.values())
        for token in tokens:
            token.cancel(reason)
        logger.warning(f"[Scheduler] {reason}，取消 {len(tokens)} 個執行中的測試")

    # ── Worker ──

    def _worker(self, work: queue.Queue, collector: ResultCollector) -> None:
        while True:
            try:
                case = work.get_nowait()
            except queue.Empty:
                return

            if self._run_token.cancelled:
                result = self._abandon(case)
            else:
                try:
                    lane = self.pool.claim(case.identifier, cancel=self._run_token)
                except CancelledError:
                    result = self._abandon(case)
                else:
                    with bind_lane(lane.index):
                        result = self._execute(case, lane)

            collector.record(result)
            self._publish(result)

    def _execute(self, case: TestCase, lane: Lane) -> TestResult:
        """在已認領（Provisioning 狀態）的 lane 上執行一個測試"""
        start = time.monotonic()
        reset_lane_log(lane.index)
        try:
            provider = self._provision(lane)
        except ProvisioningError as e:
            logger.error(f"[Scheduler] {case.identifier}: {e}")
            return self._finish_failure(case, lane, e, start)

        # 測試時限從 lane 備妥後起算
        budget = self.settings.test_timeout if case.timeout is None else case.timeout
        token = CancelToken.with_timeout(budget)

        self.plugins.emit_lane_provisioned(lane.index, lane.target)
        self.plugins.emit_test_start(case.identifier, lane.index)
        logger.info(f"[Scheduler] ▶ {case.identifier}")

        with self._active_lock:
            self._active[case.identifier] = token
        if self._run_token.cancelled:
            token.cancel("已取消")

        try:
            session = LaneSession(
                lane_index=lane.index,
                provider=provider,
                settings=self.settings,
                cancel=token,
                test_id=case.identifier,
            )
            run_flow(case.flow, case.entry(session), token)
        except Exception as e:
            return self._finish_failure(case, lane, e, start)
        finally:
            with self._active_lock:
                self._active.pop(case.identifier, None)

        duration = time.monotonic() - start
        self._teardown(lane)
        self._release(lane)
        logger.info(f"[Scheduler] ✔ {case.identifier} ({duration:.2f}s)")
        return TestResult(
            test_id=case.identifier,
            outcome=Outcome.PASS,
            duration=duration,
            lane_index=lane.index,
        )

    def _provision(self, lane: Lane) -> ElementProvider:
        """
        建立 lane session，失敗時重試 settings.lane_provision_retries 次。

        成功後 lane 轉為 InUse；全部失敗時 lane 停在 Provisioning。
        """
        attempts = 1 + self.settings.lane_provision_retries
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                provider = self.provisioner.provision(lane)
            except Exception as e:
                last_error = e
                logger.warning(
                    f"[Scheduler] Lane {lane.index} 建立失敗 "
                    f"(第 {attempt}/{attempts} 次): {e}"
                )
                if attempt < attempts:
                    delay = self.settings.provision_retry_delay * (2 ** (attempt - 1))
                    try:
                        self._run_token.sleep(delay)
                    except CancelledError:
                        break
                continue
            lane.session = provider
            lane.transition(LaneState.IN_USE)
            logger.info(f"[Scheduler] Lane {lane.index} 已備妥")
            return provider

        raise ProvisioningError(lane.index, attempt, last_error) from last_error

    def _finish_failure(self, case: TestCase, lane: Lane, error: BaseException,
                        start: float) -> TestResult:
        """InUse/Provisioning → Capturing → 保全現場 → teardown → Idle"""
        outcome = classify_error(error)
        duration = time.monotonic() - start
        step_index = error.step_index if isinstance(error, FlowError) else None
        root = error.original if isinstance(error, FlowError) else error

        lane.transition(LaneState.CAPTURING)
        artifact = self.capture.capture(lane, case.identifier, error, step_index)

        self._teardown(lane)
        self._release(lane)

        mark = "✘" if outcome is Outcome.FAIL else "⚠"
        logger.error(f"[Scheduler] {mark} {case.identifier} [{outcome.value}]: {error}")
        return TestResult(
            test_id=case.identifier,
            outcome=outcome,
            duration=duration,
            lane_index=lane.index,
            error_type=type(root).__name__,
            error_message=str(error),
            step_index=step_index,
            artifact=artifact,
        )

    def _abandon(self, case: TestCase) -> TestResult:
        """執行被取消時，尚未拿到 lane 的測試記為 error"""
        error = CancelledError("執行已取消，測試未開始")
        artifact = self.capture.capture(None, case.identifier, error)
        return TestResult(
            test_id=case.identifier,
            outcome=Outcome.ERROR,
            duration=0.0,
            error_type=type(error).__name__,
            error_message=str(error),
            artifact=artifact,
        )

    def _teardown(self, lane: Lane) -> None:
        if lane.session is None:
            return
        try:
            self.provisioner.teardown(lane, lane.session)
        except Exception as e:
            logger.warning(f"[Scheduler] Lane {lane.index} teardown 失敗: {e}")

    def _release(self, lane: Lane) -> None:
        index = lane.index
        self.pool.release(lane)
        self.plugins.emit_lane_released(index)

    def _publish(self, result: TestResult) -> None:
        if result.artifact is not None:
            self.plugins.emit_artifact(result.artifact)
        if result.outcome is Outcome.PASS:
            self.plugins.emit_test_pass(result.test_id, result.duration)
        elif result.outcome is Outcome.FAIL:
            self.plugins.emit_test_fail(result.test_id, result.error_message,
                                        result.artifact)
        else:
            self.plugins.emit_test_error(result.test_id, result.error_message,
                                         result.artifact)

        for sink in self.sinks:
            try:
                if result.artifact is not None:
                    sink.record_artifact(result.artifact)
                sink.record_result(result)
            except Exception as e:
                logger.error(f"[Scheduler] 結果輸出失敗 ({type(sink).__name__}): {e}")


def _validate_suite(suite: Sequence[TestCase]) -> None:
    seen: set[str] = set()
    for case in suite:
        if case.identifier in seen:
            raise SuiteError(f"測試 identifier 重複: {case.identifier}")
        seen.add(case.identifier)


def run_suite(suite: Sequence[TestCase], parallelism: int | None = None, *,
              provisioner: LaneProvisioner,
              targets: Sequence[Any] | None = None,
              settings: Settings | None = None,
              sinks: Iterable[ResultSink] = (),
              capture: FailureCapture | None = None) -> SuiteResult:
    """
    run(suite, parallelism) 入口。

    Args:
        suite: 測試案例
        parallelism: lane 數量，None 時使用設定值
        provisioner: lane session 建立者
        targets: 每條 lane 的裝置目標；數量少於 parallelism 時以 targets 為準
        settings: 執行期設定
        sinks: 結果輸出端
        capture: 現場保全 pipeline
    """
    settings = (settings or Config.settings()).override(parallelism=parallelism)
    if targets is None:
        lane_targets = [None] * settings.parallelism
    else:
        lane_targets = list(targets)[:settings.parallelism]
        if len(lane_targets) < settings.parallelism:
            logger.warning(
                f"[Scheduler] 只有 {len(lane_targets)} 個裝置目標，"
                f"平行度降為 {len(lane_targets)}"
            )
    pool = LanePool(lane_targets)
    scheduler = Scheduler(pool, provisioner, settings, capture=capture, sinks=sinks)
    return scheduler.run(suite)
