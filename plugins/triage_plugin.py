"""
Triage Plugin — 失敗分流

把每個失敗的測試依類型寫入 triage.jsonl（一行一筆 JSON）：
- app:   受測 App 行為不符（outcome = fail）
- infra: 基礎設施問題（outcome = error，例如 lane 建立失敗、session 中斷）

flake 分析工具可以直接讀這個檔，不必解析 log。
"""

import json
import threading
from datetime import datetime
from pathlib import Path

from config.config import Config
from core.plugin_manager import Plugin
from utils.logger import logger


class TriagePlugin(Plugin):
    """依 fail / error 分流記錄失敗的測試"""

    name = "triage"
    version = "1.0.0"
    description = "把 App 失敗與基礎設施錯誤分開記錄到 triage.jsonl"

    def __init__(self, output_dir: str | Path | None = None):
        self.output_file = Path(output_dir or Config.ARTIFACT_DIR) / "triage.jsonl"
        self._lock = threading.Lock()

    def on_register(self) -> None:
        self.output_file.parent.mkdir(parents=True, exist_ok=True)

    def on_test_fail(self, test_id: str, error: str, artifact) -> None:
        self._write("app", test_id, error, artifact)

    def on_test_error(self, test_id: str, error: str, artifact) -> None:
        self._write("infra", test_id, error, artifact)

    def _write(self, category: str, test_id: str, error: str, artifact) -> None:
        entry = {
            "category": category,
            "test_id": test_id,
            "error": error,
            "artifact": str(artifact.directory or "") if artifact else "",
            "degraded": bool(artifact and artifact.degraded),
            "timestamp": datetime.now().isoformat(),
        }
        line = json.dumps(entry, ensure_ascii=False)
        with self._lock:
            with open(self.output_file, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        logger.info(f"[Triage] {test_id} -> {category}")

    def read(self) -> list[dict]:
        """讀回所有紀錄"""
        if not self.output_file.exists():
            return []
        with open(self.output_file, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
