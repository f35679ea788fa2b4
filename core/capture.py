"""
Failure Capture — 測試失敗時的現場保全

每個 fail / error 的測試恰好擷取一次，在 lane 回到 Idle 之前同步完成：
1. 截圖 (screenshot.png)
2. 元素樹 dump (element_tree.xml)
3. 裝置端最近 log (device.log)
4. 該 lane 最近的框架 log (harness.log)
5. JSON 摘要 (info.json)

目錄名稱由 (test identifier, timestamp) 決定：
    <安全化名稱>_<identifier 雜湊前 8 碼>_<YYYYmmdd_HHMMSS_ffffff>
不同 lane 即使在同一秒失敗也不會撞名；同一測試重跑也不會覆蓋舊現場。

擷取本身失敗（例如 driver session 已斷）時記錄為 degraded artifact，
原始的測試失敗絕不會被擷取階段的錯誤蓋掉。
"""

from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime
from pathlib import Path
from typing import Callable

from core.exceptions import CaptureError
from core.lane import Lane
from core.results import FailureArtifact
from utils.allure_helper import attach_artifact
from utils.logger import lane_log_tail, logger

# 檔案系統不接受的字元與空白、控制字元
_UNSAFE = re.compile(r'[\\/:*?"<>|\s\x00-\x1f]+')


def artifact_name(test_id: str, timestamp: str) -> str:
    """由 test identifier 與 timestamp 決定現場目錄名稱"""
    safe = _UNSAFE.sub("_", test_id).strip("_")[:80] or "test"
    digest = hashlib.sha1(test_id.encode("utf-8")).hexdigest()[:8]
    return f"{safe}_{digest}_{timestamp}"


class FailureCapture:
    """
    現場保全 pipeline

    Args:
        artifact_dir: 現場根目錄
        log_tail_lines: 收集的 log 行數
        clock: 取得目前時間（測試可注入固定時間）
    """

    def __init__(self, artifact_dir: str | Path, log_tail_lines: int = 200,
                 clock: Callable[[], datetime] = datetime.now):
        self.artifact_dir = Path(artifact_dir)
        self.log_tail_lines = log_tail_lines
        self._clock = clock

    def capture(self, lane: Lane | None, test_id: str,
                error: BaseException | None = None,
                step_index: int | None = None) -> FailureArtifact:
        """
        擷取失敗現場。永遠回傳 FailureArtifact，不會拋出例外。
        """
        timestamp = self._clock().strftime("%Y%m%d_%H%M%S_%f")
        errors: list[str] = []

        try:
            directory = self._make_directory(artifact_name(test_id, timestamp))
        except OSError as e:
            failure = CaptureError("directory", e)
            logger.error(f"[Capture] {failure}")
            return FailureArtifact(
                test_id=test_id, timestamp=timestamp, directory=None,
                degraded=True, capture_errors=(str(failure),),
            )

        payloads: dict[str, Path] = {}
        provider = lane.session if lane is not None else None

        def _collect(name: str, filename: str, producer: Callable[[], object]):
            try:
                data = producer()
                path = directory / filename
                if isinstance(data, bytes):
                    path.write_bytes(data)
                else:
                    path.write_text(str(data), encoding="utf-8")
                payloads[name] = path
            except Exception as e:
                failure = e if isinstance(e, CaptureError) else CaptureError(name, e)
                errors.append(str(failure))
                logger.warning(f"[Capture] {failure}")

        _collect("screenshot", "screenshot.png",
                 lambda: self._call(provider, "screenshot"))
        _collect("element_tree", "element_tree.xml",
                 lambda: self._call(provider, "element_tree"))
        _collect("device_log", "device.log",
                 lambda: "\n".join(self._call(provider, "log_tail",
                                              self.log_tail_lines)))
        _collect("harness_log", "harness.log", lambda: self._harness_log(lane))

        info = {
            "test_id": test_id,
            "timestamp": timestamp,
            "lane": lane.index if lane is not None else None,
            "target": _describe_target(lane.target) if lane is not None else "",
            "step_index": step_index,
            "error_type": type(error).__name__ if error else "",
            "error": str(error) if error else "",
            "degraded": bool(errors),
            "capture_errors": errors,
            "payloads": {k: p.name for k, p in payloads.items()},
        }
        _collect("info", "info.json",
                 lambda: json.dumps(info, indent=4, ensure_ascii=False))

        artifact = FailureArtifact(
            test_id=test_id,
            timestamp=timestamp,
            directory=directory,
            payloads=payloads,
            degraded=bool(errors),
            capture_errors=tuple(errors),
        )
        attach_artifact(artifact)

        if artifact.degraded:
            logger.error(
                f"[Capture] {test_id} 現場不完整 ({len(errors)} 項失敗): {directory}"
            )
        else:
            logger.error(f"[Capture] {test_id} 現場已保全: {directory}")
        return artifact

    # ── 內部方法 ──

    def _make_directory(self, name: str) -> Path:
        self.artifact_dir.mkdir(parents=True, exist_ok=True)
        candidate = self.artifact_dir / name
        suffix = 1
        while True:
            try:
                candidate.mkdir()
                return candidate
            except FileExistsError:
                suffix += 1
                candidate = self.artifact_dir / f"{name}-{suffix}"

    def _harness_log(self, lane: Lane | None) -> str:
        if lane is None:
            raise CaptureError("harness_log", RuntimeError("測試未分配到 lane"))
        return "\n".join(lane_log_tail(lane.index, self.log_tail_lines))

    @staticmethod
    def _call(provider, method: str, *args):
        if provider is None:
            raise CaptureError(method, RuntimeError("lane 沒有可用的 session"))
        fn = getattr(provider, method, None)
        if fn is None:
            raise CaptureError(method, NotImplementedError(
                f"{type(provider).__name__} 不支援 {method}()"
            ))
        return fn(*args)


def _describe_target(target) -> str:
    if isinstance(target, dict):
        return str(target.get("appium:deviceName", target.get("deviceName", target)))
    return "" if target is None else str(target)
