"""
Lane / LanePool — 執行通道與固定大小的通道池

一條 lane = 一個 driver session + 一個裝置/模擬器目標，
同一時間只屬於一個執行中的測試。

狀態機：
    Idle → Provisioning → InUse → Capturing → Idle
                        ↘ Capturing（建立失敗，記錄 degraded 現場）
                 InUse → Idle（測試通過）

LanePool 是固定陣列（以 index 認領，永不別名），
claim / release 都在鎖內以 check-and-set 完成，
多個 Scheduler 共用同一個 pool 也不會把同一條 lane 分給兩個測試。
"""

from __future__ import annotations

import threading
from collections import deque
from enum import Enum
from typing import Any, Sequence

from core.cancellation import CancelToken
from core.exceptions import LaneStateError
from utils.logger import logger


class LaneState(str, Enum):
    IDLE = "idle"
    PROVISIONING = "provisioning"
    IN_USE = "in_use"
    CAPTURING = "capturing"


_TRANSITIONS = {
    LaneState.IDLE: {LaneState.PROVISIONING},
    LaneState.PROVISIONING: {LaneState.IN_USE, LaneState.CAPTURING},
    LaneState.IN_USE: {LaneState.CAPTURING, LaneState.IDLE},
    LaneState.CAPTURING: {LaneState.IDLE},
}


class Lane:
    """
    單一執行通道

    Attributes:
        index: 在 pool 中的固定位置
        target: 裝置目標（例如 capabilities dict），由 provisioner 解讀
        session: 備妥後的 provider（InUse / Capturing 期間有效）
        owner: 目前持有此 lane 的測試 identifier
    """

    def __init__(self, index: int, target: Any = None, history_size: int = 200):
        self.index = index
        self.target = target
        self.session = None
        self.owner: str | None = None
        self._state = LaneState.IDLE
        self._lock = threading.Lock()
        self.history: deque[tuple[LaneState, LaneState, str | None]] = deque(
            maxlen=history_size
        )

    @property
    def state(self) -> LaneState:
        return self._state

    def transition(self, target: LaneState) -> None:
        """狀態轉換，不合法時拋 LaneStateError"""
        with self._lock:
            current = self._state
            if target not in _TRANSITIONS[current]:
                raise LaneStateError(self.index, current.value, target.value)
            self._state = target
            self.history.append((current, target, self.owner))
        logger.debug(f"[Lane {self.index}] {current.value} → {target.value}")

    def try_claim(self, owner: str) -> bool:
        """Idle 時原子性地轉為 Provisioning 並記錄持有者"""
        with self._lock:
            if self._state is not LaneState.IDLE:
                return False
            self._state = LaneState.PROVISIONING
            self.owner = owner
            self.history.append((LaneState.IDLE, LaneState.PROVISIONING, owner))
            return True

    def count_transitions(self, source: LaneState, target: LaneState,
                          owner: str | None = None) -> int:
        return sum(
            1 for s, t, o in list(self.history)
            if s is source and t is target and (owner is None or o == owner)
        )

    def __repr__(self) -> str:
        return f"<Lane {self.index} {self._state.value} owner={self.owner}>"


class LanePool:
    """
    固定大小的 lane 池

    用法：
        pool = LanePool([caps_a, caps_b])
        lane = pool.claim("test_login")
        ...
        pool.release(lane)
    """

    def __init__(self, targets: Sequence[Any]):
        if not targets:
            raise ValueError("LanePool 至少需要一條 lane")
        self._lanes = tuple(Lane(i, t) for i, t in enumerate(targets))
        self._available = threading.Condition()

    @classmethod
    def of_size(cls, size: int) -> "LanePool":
        return cls([None] * size)

    @property
    def lanes(self) -> tuple[Lane, ...]:
        return self._lanes

    def __len__(self) -> int:
        return len(self._lanes)

    def __getitem__(self, index: int) -> Lane:
        return self._lanes[index]

    def idle_count(self) -> int:
        return sum(1 for lane in self._lanes if lane.state is LaneState.IDLE)

    def try_claim(self, owner: str) -> Lane | None:
        """不等待：認領第一條 Idle lane，沒有就回傳 None"""
        for lane in self._lanes:
            if lane.try_claim(owner):
                logger.debug(f"[LanePool] lane {lane.index} 已由 {owner} 認領")
                return lane
        return None

    def claim(self, owner: str, cancel: CancelToken | None = None,
              poll: float = 0.5) -> Lane:
        """
        認領一條 Idle lane，全部忙碌時等待釋放。

        Raises:
            CancelledError: 等待期間被取消
        """
        with self._available:
            while True:
                lane = self.try_claim(owner)
                if lane is not None:
                    return lane
                if cancel is not None:
                    cancel.raise_if_cancelled()
                self._available.wait(poll)

    def release(self, lane: Lane) -> None:
        """lane 回到 Idle 並喚醒等待者"""
        if self._lanes[lane.index] is not lane:
            raise ValueError(f"Lane {lane.index} 不屬於此 pool")
        lane.session = None
        lane.transition(LaneState.IDLE)
        lane.owner = None
        with self._available:
            self._available.notify_all()
