"""
Test Result DB — SQLite 測試結果儲存

實作 ResultSink，排程器每完成一個測試就寫入一筆，提供：
- 歷史查詢（某個測試最近 N 次結果）
- 回歸比對（這次 vs 上次）
- Flaky test 偵測（時過時不過的測試）
- 失敗現場索引（artifact 目錄與是否 degraded）

各 lane 的 worker 執行緒會同時寫入，每個執行緒使用自己的 connection。

用法：
    from core.result_db import ResultDB

    db = ResultDB("reports/test_results.db")
    run_id = db.start_run(platform="android")
    run_suite(suite, provisioner=..., sinks=[db])
    db.end_run(run_id)

    db.get_history("login_ok", limit=10)
    db.get_flaky_tests(window=20)
    db.compare_runs(run_id_a, run_id_b)
"""

from __future__ import annotations

import sqlite3
import threading
import uuid
from collections import defaultdict
from datetime import datetime
from pathlib import Path

from config.config import Config
from core.results import FailureArtifact, Outcome, TestResult
from utils.logger import logger

DB_PATH = Config.REPORT_DIR / "test_results.db"


class ResultDB:
    """SQLite 測試結果儲存"""

    def __init__(self, db_path: Path | str | None = None):
        self._db_path = str(db_path or DB_PATH)
        self._local = threading.local()
        self._run_lock = threading.Lock()
        self.run_id: str | None = None
        self._init_db()

    @property
    def _conn(self) -> sqlite3.Connection:
        if getattr(self._local, "conn", None) is None:
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            self._local.conn = sqlite3.connect(self._db_path, timeout=30)
            self._local.conn.row_factory = sqlite3.Row
        return self._local.conn

    def _init_db(self):
        conn = self._conn
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS runs (
                run_id TEXT PRIMARY KEY,
                start_time TEXT,
                end_time TEXT,
                platform TEXT,
                parallelism INTEGER DEFAULT 0,
                total INTEGER DEFAULT 0,
                passed INTEGER DEFAULT 0,
                failed INTEGER DEFAULT 0,
                errored INTEGER DEFAULT 0,
                duration REAL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS results (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id TEXT,
                test_name TEXT,
                outcome TEXT,
                duration REAL,
                lane_index INTEGER,
                step_index INTEGER,
                error_type TEXT DEFAULT '',
                error_message TEXT DEFAULT '',
                artifact TEXT DEFAULT '',
                timestamp TEXT,
                FOREIGN KEY (run_id) REFERENCES runs(run_id)
            );

            CREATE TABLE IF NOT EXISTS artifacts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id TEXT,
                test_name TEXT,
                directory TEXT,
                degraded INTEGER DEFAULT 0,
                capture_errors TEXT DEFAULT '',
                timestamp TEXT,
                FOREIGN KEY (run_id) REFERENCES runs(run_id)
            );

            CREATE INDEX IF NOT EXISTS idx_results_test ON results(test_name);
            CREATE INDEX IF NOT EXISTS idx_results_run ON results(run_id);
        """)
        conn.commit()

    def close(self) -> None:
        """關閉目前執行緒的 connection"""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    # ── Run 管理 ──

    def start_run(self, platform: str = "", parallelism: int = 0) -> str:
        """建立新的 test run，之後寫入的結果都歸到這個 run"""
        run_id = datetime.now().strftime("%Y%m%d_%H%M%S_") + uuid.uuid4().hex[:6]
        self._conn.execute(
            "INSERT INTO runs (run_id, start_time, platform, parallelism) "
            "VALUES (?, ?, ?, ?)",
            (run_id, datetime.now().isoformat(), platform, parallelism),
        )
        self._conn.commit()
        with self._run_lock:
            self.run_id = run_id
        logger.debug(f"[ResultDB] 新 run: {run_id}")
        return run_id

    def end_run(self, run_id: str | None = None) -> dict:
        """結束 run，更新統計並回傳摘要"""
        run_id = run_id or self._current_run()
        rows = self._conn.execute(
            "SELECT outcome, duration FROM results WHERE run_id = ?", (run_id,)
        ).fetchall()
        total = len(rows)
        passed = sum(1 for r in rows if r["outcome"] == Outcome.PASS.value)
        failed = sum(1 for r in rows if r["outcome"] == Outcome.FAIL.value)
        errored = sum(1 for r in rows if r["outcome"] == Outcome.ERROR.value)
        duration = sum(r["duration"] for r in rows)

        self._conn.execute(
            """UPDATE runs SET end_time=?, total=?, passed=?, failed=?,
               errored=?, duration=? WHERE run_id=?""",
            (datetime.now().isoformat(), total, passed, failed, errored,
             duration, run_id),
        )
        self._conn.commit()
        logger.debug(
            f"[ResultDB] run 結束: {run_id} "
            f"({passed}/{total} passed, {duration:.1f}s)"
        )
        return self.get_run_summary(run_id)

    def _current_run(self) -> str:
        """尚未 start_run 時自動開一個 run"""
        with self._run_lock:
            run_id = self.run_id
        return run_id if run_id is not None else self.start_run()

    # ── ResultSink ──

    def record_result(self, result: TestResult) -> None:
        artifact = result.artifact.name if result.artifact is not None else ""
        self._conn.execute(
            """INSERT INTO results (run_id, test_name, outcome, duration,
               lane_index, step_index, error_type, error_message, artifact,
               timestamp) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (self._current_run(), result.test_id, result.outcome.value,
             result.duration, result.lane_index, result.step_index,
             result.error_type, result.error_message, artifact,
             datetime.now().isoformat()),
        )
        self._conn.commit()

    def record_artifact(self, artifact: FailureArtifact) -> None:
        self._conn.execute(
            """INSERT INTO artifacts (run_id, test_name, directory, degraded,
               capture_errors, timestamp) VALUES (?, ?, ?, ?, ?, ?)""",
            (self._current_run(), artifact.test_id,
             str(artifact.directory or ""), int(artifact.degraded),
             "\n".join(artifact.capture_errors), artifact.timestamp),
        )
        self._conn.commit()

    # ── 查詢 ──

    def get_history(self, test_name: str, limit: int = 10) -> list[dict]:
        """查詢某測試的歷史結果（新到舊）"""
        cursor = self._conn.execute(
            """SELECT run_id, outcome, duration, lane_index, step_index,
                      error_type, error_message, artifact, timestamp
               FROM results
               WHERE test_name = ?
               ORDER BY id DESC LIMIT ?""",
            (test_name, limit),
        )
        return [dict(row) for row in cursor.fetchall()]

    def get_run_summary(self, run_id: str) -> dict | None:
        """取得單次 run 的摘要"""
        row = self._conn.execute(
            "SELECT * FROM runs WHERE run_id = ?", (run_id,)
        ).fetchone()
        return dict(row) if row else None

    def get_recent_runs(self, limit: int = 10) -> list[dict]:
        """取得最近 N 次 run"""
        cursor = self._conn.execute(
            "SELECT * FROM runs ORDER BY start_time DESC LIMIT ?", (limit,)
        )
        return [dict(row) for row in cursor.fetchall()]

    def get_artifacts(self, run_id: str) -> list[dict]:
        """列出某次 run 的失敗現場"""
        cursor = self._conn.execute(
            """SELECT test_name, directory, degraded, capture_errors, timestamp
               FROM artifacts WHERE run_id = ? ORDER BY id""",
            (run_id,),
        )
        return [dict(row) for row in cursor.fetchall()]

    def compare_runs(self, run_a: str, run_b: str) -> dict:
        """
        比較兩次 run 的差異。

        Returns:
            {
                "new_failures": [...],     # run_b 新增的失敗
                "fixed": [...],            # run_a 失敗但 run_b 通過
                "still_failing": [...],    # 兩次都失敗
                "new_tests": [...],        # run_b 新增的測試
                "removed_tests": [...],    # run_a 有但 run_b 沒有
            }
        """
        results_a = {r["test_name"]: r["outcome"] for r in self._get_run_results(run_a)}
        results_b = {r["test_name"]: r["outcome"] for r in self._get_run_results(run_b)}

        tests_a = set(results_a)
        tests_b = set(results_b)
        pass_ = Outcome.PASS.value

        def _failing(outcome: str | None) -> bool:
            return outcome is not None and outcome != pass_

        return {
            "new_failures": sorted(
                t for t in tests_b
                if _failing(results_b[t]) and not _failing(results_a.get(t))
            ),
            "fixed": sorted(
                t for t in tests_a & tests_b
                if _failing(results_a[t]) and results_b[t] == pass_
            ),
            "still_failing": sorted(
                t for t in tests_a & tests_b
                if _failing(results_a[t]) and _failing(results_b[t])
            ),
            "new_tests": sorted(tests_b - tests_a),
            "removed_tests": sorted(tests_a - tests_b),
        }

    def get_flaky_tests(self, window: int = 20) -> list[dict]:
        """
        偵測 flaky tests（最近 N 次結果中時過時不過）。

        error（基礎設施問題）不計入，只看 pass / fail。

        Returns:
            [{"test_name": ..., "pass_rate": 0.6, "total": 20, ...}]
        """
        cursor = self._conn.execute(
            "SELECT test_name, outcome FROM results WHERE outcome != ? "
            "ORDER BY id DESC",
            (Outcome.ERROR.value,),
        )
        groups: dict[str, list[str]] = defaultdict(list)
        for row in cursor.fetchall():
            name = row["test_name"]
            if len(groups[name]) < window:
                groups[name].append(row["outcome"])

        flaky = []
        for name, outcomes in groups.items():
            if len(outcomes) < 3:
                continue
            passed = outcomes.count(Outcome.PASS.value)
            total = len(outcomes)
            rate = passed / total
            if 0 < rate < 1:
                flaky.append({
                    "test_name": name,
                    "pass_rate": round(rate, 2),
                    "total": total,
                    "passed": passed,
                    "failed": total - passed,
                })

        flaky.sort(key=lambda x: x["pass_rate"])
        return flaky

    def _get_run_results(self, run_id: str) -> list[dict]:
        cursor = self._conn.execute(
            "SELECT test_name, outcome, duration FROM results WHERE run_id = ?",
            (run_id,),
        )
        return [dict(row) for row in cursor.fetchall()]
