"""
CLI 入口

用法:
    # 執行套件（module:attr，attr 可以是 TestCase 列表或回傳列表的函式）
    python -m runner --suite flows.login_flows:login_suite

    # 指定平行度與裝置清單（每條 lane 一台裝置）
    python -m runner --suite flows.login_flows:login_suite \\
        --parallelism 3 --targets config/devices.json

    # 只跑 identifier 含 "login" 或帶 smoke 標籤的測試
    python -m runner --suite flows.login_flows:login_suite --select login --tag smoke

    # 結果寫入 SQLite
    python -m runner --suite flows.login_flows:login_suite --db reports/test_results.db

結束代碼:
    0 全部通過 / 1 有測試失敗 / 2 只有基礎設施錯誤 / 3 套件或設定錯誤
"""

from __future__ import annotations

import argparse
import importlib
import sys
from pathlib import Path
from typing import Sequence

from config.config import Config, ConfigError
from core.appium_provider import AppiumLaneProvisioner
from core.exceptions import SuiteError
from core.plugin_manager import plugin_manager
from core.result_db import ResultDB
from core.scheduler import TestCase, run_suite
from utils.logger import logger
from utils.parallel import load_lane_targets

EXIT_SETUP_ERROR = 3

PLUGINS_DIR = Path(__file__).resolve().parent.parent / "plugins"


def load_suite(selector: str) -> list[TestCase]:
    """
    由 "module:attr" 載入測試套件。

    Raises:
        SuiteError: 格式錯誤、找不到模組/屬性、內容不是 TestCase
    """
    module_name, _, attr = selector.partition(":")
    if not module_name or not attr:
        raise SuiteError(f"--suite 格式應為 module:attr，收到 {selector!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise SuiteError(f"無法載入模組 {module_name}: {e}") from e

    target = getattr(module, attr, None)
    if target is None:
        raise SuiteError(f"{module_name} 沒有 {attr}")
    suite = target() if callable(target) else target

    cases = list(suite)
    bad = [c for c in cases if not isinstance(c, TestCase)]
    if bad:
        raise SuiteError(f"{selector} 含有非 TestCase 項目: {bad[0]!r}")
    return cases


def select_cases(cases: Sequence[TestCase], keywords: Sequence[str] = (),
                 tags: Sequence[str] = ()) -> list[TestCase]:
    """依 identifier 關鍵字與標籤篩選，保持宣告順序"""
    selected = []
    for case in cases:
        if keywords and not any(k in case.identifier for k in keywords):
            continue
        if tags and not set(tags) & set(case.tags):
            continue
        selected.append(case)
    return selected


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m runner",
        description="平行執行 UI 測試旅程",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--suite", required=True,
        help="測試套件 module:attr",
    )
    parser.add_argument(
        "--targets",
        help="裝置清單 JSON（每條 lane 一台裝置），預設 config/devices.json",
    )
    parser.add_argument(
        "--parallelism", "-n", type=int,
        help=f"lane 數量（預設 {Config.PARALLELISM}）",
    )
    parser.add_argument(
        "--platform", "-p",
        default=Config.PLATFORM,
        choices=["android", "ios"],
    )
    parser.add_argument(
        "--select", "-k", action="append", default=[],
        help="只執行 identifier 含此字串的測試（可重複）",
    )
    parser.add_argument(
        "--tag", action="append", default=[],
        help="只執行帶此標籤的測試（可重複）",
    )
    parser.add_argument(
        "--db",
        help="結果寫入的 SQLite 檔案",
    )
    parser.add_argument(
        "--no-plugins", action="store_true",
        help="不自動載入 plugins/ 目錄",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        cases = select_cases(load_suite(args.suite), args.select, args.tag)
        targets = load_lane_targets(
            args.targets, args.platform, required=bool(args.targets)
        )
        settings = Config.settings(parallelism=args.parallelism)
    except (SuiteError, ConfigError) as e:
        logger.error(f"[Runner] {e}")
        return EXIT_SETUP_ERROR

    if not cases:
        logger.warning("[Runner] 沒有符合條件的測試")
        return 0

    if not args.no_plugins:
        plugin_manager.discover(PLUGINS_DIR)

    sinks = []
    db = None
    if args.db:
        db = ResultDB(args.db)
        db.start_run(platform=args.platform, parallelism=settings.parallelism)
        sinks.append(db)

    try:
        result = run_suite(
            cases,
            provisioner=AppiumLaneProvisioner(args.platform),
            targets=targets,
            settings=settings,
            sinks=sinks,
        )
    except KeyboardInterrupt:
        logger.warning("[Runner] 已中斷")
        return 130
    finally:
        if db is not None:
            db.end_run()

    for r in result.ordered():
        line = f"  [{r.outcome.value:5}] {r.test_id} ({r.duration:.2f}s)"
        if r.artifact is not None:
            line += f" -> {r.artifact.directory or '(現場未保全)'}"
        print(line)
    print(result.summary())
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
