"""
日誌模組
統一的 logging 設定，同時輸出到 console 與檔案。

支援：
- Console 人類可讀格式（含 lane 編號）
- 檔案輸出（純文字 + 可選 JSON 結構化格式）
- 每條 lane 保留最近 N 行 log，失敗現場保全時一併存檔
- 環境變數控制:
    LOG_LEVEL: console 日誌等級 (預設 INFO)
    LOG_JSON: 設為 "1" 啟用 JSON 結構化日誌檔
    LOG_DIR: 日誌目錄 (預設 reports/)

用法：
    from utils.logger import logger, bind_lane, lane_log_tail

    with bind_lane(0):
        logger.info("這行會帶上 [lane-0]")

    lane_log_tail(0, 50)   # 取 lane 0 最近 50 行
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import sys
import threading
from collections import defaultdict, deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

LOG_DIR = Path(
    os.getenv("LOG_DIR", Path(__file__).resolve().parent.parent / "reports")
)
LOG_DIR.mkdir(parents=True, exist_ok=True)

# 未綁定 lane 的執行緒（主執行緒、排程器本身）
NO_LANE = "-"

_lane_local = threading.local()


def current_lane() -> int | None:
    """目前執行緒綁定的 lane 編號，未綁定回傳 None"""
    return getattr(_lane_local, "index", None)


@contextlib.contextmanager
def bind_lane(index: int | None) -> Iterator[None]:
    """在 with 區塊內把目前執行緒綁定到指定 lane"""
    previous = current_lane()
    _lane_local.index = index
    try:
        yield
    finally:
        _lane_local.index = previous


class LaneFilter(logging.Filter):
    """替每筆 record 補上 lane 欄位"""

    def filter(self, record: logging.LogRecord) -> bool:
        index = current_lane()
        record.lane = NO_LANE if index is None else str(index)
        return True


class LaneLogBuffer(logging.Handler):
    """
    每條 lane 一個環狀緩衝區，只保留最近 capacity 行。

    失敗現場保全時用來取出「該 lane 最近發生了什麼」，
    不同 lane 的 log 互不混雜。
    """

    def __init__(self, capacity: int = 500):
        super().__init__(level=logging.DEBUG)
        self.capacity = capacity
        self._buffers: dict[str, deque[str]] = defaultdict(
            lambda: deque(maxlen=self.capacity)
        )
        self._buffer_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        lane = getattr(record, "lane", NO_LANE)
        if lane == NO_LANE:
            return
        try:
            line = self.format(record)
        except Exception:
            self.handleError(record)
            return
        with self._buffer_lock:
            self._buffers[lane].append(line)

    def tail(self, index: int, lines: int) -> list[str]:
        with self._buffer_lock:
            buffer = list(self._buffers.get(str(index), ()))
        if lines <= 0:
            return []
        return buffer[-lines:]

    def reset(self, index: int) -> None:
        with self._buffer_lock:
            self._buffers.pop(str(index), None)

    def reset_all(self) -> None:
        with self._buffer_lock:
            self._buffers.clear()


class JsonFormatter(logging.Formatter):
    """JSON 結構化日誌格式器，適合 ELK / Loki 等日誌系統"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "lane": getattr(record, "lane", NO_LANE),
            "thread": record.threadName,
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


lane_buffer = LaneLogBuffer(capacity=int(os.getenv("LOG_BUFFER_LINES", "500")))


def _create_logger() -> logging.Logger:
    _logger = logging.Logger("flowlane")
    _logger.setLevel(logging.DEBUG)
    _logger.addFilter(LaneFilter())

    console_level = getattr(
        logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO
    )

    fmt = logging.Formatter(
        "[%(asctime)s] %(levelname)-7s [lane-%(lane)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Console handler（人類可讀）
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    _logger.addHandler(console)

    # File handler（純文字）
    file_handler = logging.FileHandler(LOG_DIR / "harness.log", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(fmt)
    _logger.addHandler(file_handler)

    # 每條 lane 的最近 log
    lane_buffer.setFormatter(fmt)
    _logger.addHandler(lane_buffer)

    # JSON file handler（可選，設 LOG_JSON=1 啟用）
    if os.getenv("LOG_JSON", "").strip() == "1":
        json_handler = logging.FileHandler(
            LOG_DIR / "harness.json.log", encoding="utf-8"
        )
        json_handler.setLevel(logging.DEBUG)
        json_handler.setFormatter(JsonFormatter())
        _logger.addHandler(json_handler)

    return _logger


logger = _create_logger()


def lane_log_tail(index: int, lines: int = 200) -> list[str]:
    """取出指定 lane 最近 lines 行框架 log"""
    return lane_buffer.tail(index, lines)


def reset_lane_log(index: int) -> None:
    """lane 交給下一個測試前清空緩衝"""
    lane_buffer.reset(index)
