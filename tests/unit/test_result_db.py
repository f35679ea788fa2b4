"""
core/result_db.py 單元測試

使用暫存 SQLite 檔測試 ResultDB 的寫入、查詢、比較、flaky 偵測，
以及多執行緒同時寫入。
"""

import threading
from pathlib import Path

import pytest

from core.result_db import ResultDB
from core.results import FailureArtifact, Outcome, TestResult


@pytest.fixture
def db(tmp_path):
    """每個測試取得獨立的 SQLite DB"""
    database = ResultDB(db_path=tmp_path / "test.db")
    yield database
    database.close()


def result(name, outcome=Outcome.PASS, duration=1.0, artifact=None, **kwargs):
    return TestResult(test_id=name, outcome=outcome, duration=duration,
                      artifact=artifact, **kwargs)


def record_run(db, outcomes: dict) -> str:
    run_id = db.start_run()
    for name, outcome in outcomes.items():
        db.record_result(result(name, outcome))
    db.end_run(run_id)
    return run_id


@pytest.mark.unit
class TestResultDBRun:
    """Run 管理"""

    @pytest.mark.unit
    def test_start_run(self, db):
        run_id = db.start_run(platform="android", parallelism=2)
        assert run_id
        assert db.run_id == run_id
        summary = db.get_run_summary(run_id)
        assert summary["platform"] == "android"
        assert summary["parallelism"] == 2

    @pytest.mark.unit
    def test_end_run_updates_stats(self, db):
        run_id = db.start_run()
        db.record_result(result("test_a"))
        db.record_result(result("test_b", Outcome.FAIL, 2.0,
                                error_type="ElementNotReadyError"))
        db.record_result(result("test_c", Outcome.ERROR, 0.5))

        summary = db.end_run(run_id)

        assert summary["total"] == 3
        assert summary["passed"] == 1
        assert summary["failed"] == 1
        assert summary["errored"] == 1
        assert summary["duration"] == pytest.approx(3.5)
        assert summary["end_time"]

    @pytest.mark.unit
    def test_record_without_start_run(self, db):
        """沒有 start_run 也能寫入，會自動開新 run"""
        db.record_result(result("a"))
        assert db.run_id is not None
        assert db.end_run()["total"] == 1

    @pytest.mark.unit
    def test_get_run_summary_nonexistent(self, db):
        assert db.get_run_summary("nonexistent") is None

    @pytest.mark.unit
    def test_recent_runs(self, db):
        first = db.start_run()
        second = db.start_run()
        run_ids = [r["run_id"] for r in db.get_recent_runs(10)]
        assert set(run_ids) == {first, second}


@pytest.mark.unit
class TestResultDBRecord:
    """ResultSink 介面"""

    @pytest.mark.unit
    def test_history_newest_first(self, db):
        db.start_run()
        db.record_result(result("login", Outcome.FAIL, step_index=2,
                                error_message="元素未就緒", lane_index=1))
        db.record_result(result("login", Outcome.PASS))

        history = db.get_history("login")

        assert [h["outcome"] for h in history] == ["pass", "fail"]
        assert history[1]["step_index"] == 2
        assert history[1]["lane_index"] == 1
        assert history[1]["error_message"] == "元素未就緒"

    @pytest.mark.unit
    def test_history_limit(self, db):
        db.start_run()
        for _ in range(5):
            db.record_result(result("a"))
        assert len(db.get_history("a", limit=3)) == 3

    @pytest.mark.unit
    def test_artifacts(self, db, tmp_path):
        run_id = db.start_run()
        artifact = FailureArtifact(
            test_id="login", timestamp="20240501_123045_000000",
            directory=tmp_path / "login_abc_20240501_123045_000000",
            degraded=True, capture_errors=("screenshot failed", "tree failed"),
        )
        db.record_artifact(artifact)
        db.record_result(result("login", Outcome.FAIL, artifact=artifact))

        rows = db.get_artifacts(run_id)
        assert len(rows) == 1
        assert rows[0]["degraded"] == 1
        assert rows[0]["capture_errors"] == "screenshot failed\ntree failed"
        assert Path(rows[0]["directory"]).name == artifact.name
        assert db.get_history("login")[0]["artifact"] == artifact.name

    @pytest.mark.unit
    def test_concurrent_writes(self, db):
        """多條 lane 同時寫入不遺失"""
        run_id = db.start_run()

        def write(lane):
            for i in range(20):
                db.record_result(result(f"t{lane}_{i}", lane_index=lane))
            db.close()

        threads = [threading.Thread(target=write, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert db.end_run(run_id)["total"] == 80


@pytest.mark.unit
class TestResultDBCompare:
    """兩次 run 比較"""

    @pytest.mark.unit
    def test_compare_runs(self, db):
        run_a = record_run(db, {
            "stays_green": Outcome.PASS,
            "breaks": Outcome.PASS,
            "gets_fixed": Outcome.FAIL,
            "still_broken": Outcome.ERROR,
            "removed": Outcome.PASS,
        })
        run_b = record_run(db, {
            "stays_green": Outcome.PASS,
            "breaks": Outcome.FAIL,
            "gets_fixed": Outcome.PASS,
            "still_broken": Outcome.FAIL,
            "brand_new": Outcome.ERROR,
        })

        diff = db.compare_runs(run_a, run_b)

        assert diff["new_failures"] == ["brand_new", "breaks"]
        assert diff["fixed"] == ["gets_fixed"]
        assert diff["still_failing"] == ["still_broken"]
        assert diff["new_tests"] == ["brand_new"]
        assert diff["removed_tests"] == ["removed"]


@pytest.mark.unit
class TestResultDBFlaky:
    """Flaky 偵測"""

    @pytest.mark.unit
    def test_flaky_detected(self, db):
        for outcome in [Outcome.PASS, Outcome.FAIL, Outcome.PASS, Outcome.PASS]:
            record_run(db, {"flaky": outcome, "solid": Outcome.PASS,
                            "broken": Outcome.FAIL})

        flaky = db.get_flaky_tests()

        assert [f["test_name"] for f in flaky] == ["flaky"]
        assert flaky[0]["pass_rate"] == 0.75
        assert flaky[0]["failed"] == 1

    @pytest.mark.unit
    def test_errors_ignored(self, db):
        """基礎設施錯誤不算 flaky"""
        for outcome in [Outcome.PASS, Outcome.ERROR, Outcome.PASS, Outcome.PASS]:
            record_run(db, {"infra": outcome})
        assert db.get_flaky_tests() == []

    @pytest.mark.unit
    def test_needs_three_results(self, db):
        record_run(db, {"a": Outcome.PASS})
        record_run(db, {"a": Outcome.FAIL})
        assert db.get_flaky_tests() == []

    @pytest.mark.unit
    def test_window(self, db):
        """只看最近 window 次"""
        for outcome in [Outcome.FAIL] + [Outcome.PASS] * 5:
            record_run(db, {"a": outcome})
        assert db.get_flaky_tests(window=5) == []
        assert len(db.get_flaky_tests(window=6)) == 1
