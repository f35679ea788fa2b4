"""
pytest 全域 fixtures

提供：
- settings fixture：短逾時、現場目錄指向 tmp_path 的 Settings
- fake provider / session fixtures：不需裝置即可驅動整個引擎
- 每個測試前後清空全域 middleware 與 event bus，避免測試間互相影響
- lane 綁定與 lane log 緩衝在測試結束後還原
"""

import pytest

from config.config import Settings
from core.cancellation import CancelToken
from core.event_bus import event_bus
from core.middleware import middleware_chain
from core.plugin_manager import plugin_manager
from core.session import LaneSession
from utils.logger import lane_buffer

from fakes import FakeProvider


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: 不需要裝置的單元測試")


# ── 全域狀態隔離 ──

@pytest.fixture(autouse=True)
def _isolate_globals():
    """每個測試結束時清除 middleware、事件訂閱、plugin 與 lane log"""
    yield
    middleware_chain.clear()
    for info in plugin_manager.list_plugins():
        plugin_manager.unregister(info["name"])
    event_bus.clear()
    lane_buffer.reset_all()


# ── 設定 ──

@pytest.fixture
def settings(tmp_path) -> Settings:
    """輪詢很快、逾時很短的 Settings，現場寫到 tmp_path"""
    return Settings(
        parallelism=2,
        default_timeout=0.5,
        default_poll_interval=0.01,
        retry_max_attempts=3,
        retry_backoff=(0.0,),
        lane_provision_retries=2,
        provision_retry_delay=0.0,
        test_timeout=10.0,
        log_tail_lines=50,
        artifact_dir=tmp_path / "failures",
    )


# ── Provider / Session ──

@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def session(provider, settings) -> LaneSession:
    """lane 0 上的 LaneSession（未綁定執行緒，不做 lane 擁有者檢查）"""
    return LaneSession(
        lane_index=0,
        provider=provider,
        settings=settings,
        cancel=CancelToken(),
        test_id="unit",
    )
