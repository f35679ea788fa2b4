"""
設定管理模組
統一管理平行度、等待/重試預設值、現場保全目錄、Appium server 等設定。
支援透過環境變數覆蓋預設值，方便 CI/CD 整合。

執行期間引擎只讀取不可變的 Settings，
由 Config.settings() 產生（可再用參數覆蓋，例如 CLI 的 --parallelism）。
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent
CONFIG_DIR = Path(__file__).resolve().parent

# capabilities 必填欄位定義
_REQUIRED_CAPS = {
    "android": ["appium:deviceName", "platformName"],
    "ios": ["appium:deviceName", "platformName"],
}

# capabilities 建議欄位（缺少時發出警告）
_RECOMMENDED_CAPS = {
    "android": ["appium:automationName", "appium:appPackage", "appium:appActivity"],
    "ios": ["appium:automationName", "appium:bundleId"],
}


class ConfigError(Exception):
    """設定相關錯誤"""

    def __init__(self, message: str = "", context: dict | None = None):
        self.context = context or {}
        super().__init__(message)


class CapsFileNotFoundError(ConfigError):
    """找不到 capabilities 設定檔"""

    def __init__(self, path: str = ""):
        super().__init__(
            f"找不到 capabilities 檔案: {path}",
            context={"path": path},
        )


class InvalidConfigError(ConfigError):
    """設定值無效"""

    def __init__(self, key: str = "", value: str = "", reason: str = ""):
        msg = f"設定值無效: {key}={value}" if key else "設定值無效"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg, context={"key": key, "value": value})


class ConfigValidationError(InvalidConfigError):
    """Capabilities 設定驗證失敗"""

    def __init__(self, errors: list[str]):
        self.errors = errors
        msg = "Capabilities 驗證失敗:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(reason=msg)


def _parse_signatures(raw: str) -> frozenset[str]:
    return frozenset(s.strip() for s in raw.split(",") if s.strip())


def _parse_backoff(raw: str) -> tuple[float, ...]:
    try:
        return tuple(float(s) for s in raw.split(",") if s.strip())
    except ValueError:
        raise InvalidConfigError("RETRY_BACKOFF", raw, "必須是逗號分隔的秒數")


@dataclass(frozen=True)
class Settings:
    """
    執行期設定（不可變）

    Attributes:
        parallelism: lane 數量
        default_timeout: 等待預設最長秒數
        default_poll_interval: 等待預設輪詢間隔秒數
        retry_whitelist: 可重試的錯誤特徵（例外類別名稱或 signature）
        retry_max_attempts: 操作最多嘗試次數（含第一次）
        retry_backoff: 每次失敗後的等待秒數表
        lane_provision_retries: lane 建立失敗時額外重試次數
        provision_retry_delay: lane 建立重試間隔秒數
        test_timeout: 單一測試總時間上限（秒），0 表示不限
        log_tail_lines: 現場保全時收集的 log 行數
        artifact_dir: 失敗現場保全目錄
    """

    parallelism: int = 2
    default_timeout: float = 15.0
    default_poll_interval: float = 0.5
    retry_whitelist: frozenset[str] = field(
        default_factory=lambda: frozenset({"StaleElementReferenceException"})
    )
    retry_max_attempts: int = 3
    retry_backoff: tuple[float, ...] = (0.5, 1.0, 2.0)
    lane_provision_retries: int = 2
    provision_retry_delay: float = 2.0
    test_timeout: float = 300.0
    log_tail_lines: int = 200
    artifact_dir: Path = BASE_DIR / "reports" / "failures"

    def __post_init__(self):
        if self.parallelism < 1:
            raise InvalidConfigError("parallelism", str(self.parallelism), "至少為 1")
        if self.default_timeout < 0:
            raise InvalidConfigError(
                "default_timeout", str(self.default_timeout), "不可為負數"
            )
        if self.default_poll_interval <= 0:
            raise InvalidConfigError(
                "default_poll_interval", str(self.default_poll_interval), "必須大於 0"
            )
        if self.retry_max_attempts < 1:
            raise InvalidConfigError(
                "retry_max_attempts", str(self.retry_max_attempts), "至少為 1"
            )
        if any(d < 0 for d in self.retry_backoff):
            raise InvalidConfigError(
                "retry_backoff", str(self.retry_backoff), "不可含負數"
            )
        if self.lane_provision_retries < 0:
            raise InvalidConfigError(
                "lane_provision_retries", str(self.lane_provision_retries), "不可為負數"
            )
        if self.test_timeout < 0:
            raise InvalidConfigError("test_timeout", str(self.test_timeout), "不可為負數")

    def override(self, **changes) -> "Settings":
        """回傳套用覆蓋值後的新 Settings，None 值會被忽略"""
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes) if changes else self


class Config:
    """框架全域設定"""

    # 平行與排程
    PARALLELISM = int(os.getenv("PARALLELISM", "2"))
    LANE_PROVISION_RETRIES = int(os.getenv("LANE_PROVISION_RETRIES", "2"))
    PROVISION_RETRY_DELAY = float(os.getenv("PROVISION_RETRY_DELAY", "2.0"))
    TEST_TIMEOUT = float(os.getenv("TEST_TIMEOUT", "300"))

    # 等待設定 (秒)
    DEFAULT_TIMEOUT = float(os.getenv("DEFAULT_TIMEOUT", "15"))
    DEFAULT_POLL_INTERVAL = float(os.getenv("DEFAULT_POLL_INTERVAL", "0.5"))

    # 重試設定
    RETRY_WHITELIST = os.getenv("RETRY_WHITELIST", "StaleElementReferenceException")
    RETRY_MAX_ATTEMPTS = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
    RETRY_BACKOFF = os.getenv("RETRY_BACKOFF", "0.5,1.0,2.0")

    # 現場保全與報告
    REPORT_DIR = Path(os.getenv("REPORT_DIR", BASE_DIR / "reports"))
    ARTIFACT_DIR = Path(os.getenv("ARTIFACT_DIR", REPORT_DIR / "failures"))
    LOG_TAIL_LINES = int(os.getenv("LOG_TAIL_LINES", "200"))

    # Appium Server
    APPIUM_HOST = os.getenv("APPIUM_HOST", "127.0.0.1")
    APPIUM_PORT = int(os.getenv("APPIUM_PORT", "4723"))
    LAUNCH_TIMEOUT = int(os.getenv("LAUNCH_TIMEOUT", "30"))

    # 平台
    PLATFORM = os.getenv("PLATFORM", "android").lower()

    @classmethod
    def settings(cls, **overrides) -> Settings:
        """
        由目前的 Config 值建立 Settings。

        Args:
            **overrides: 覆蓋個別欄位（值為 None 時忽略）

        Raises:
            InvalidConfigError: 設定值不合法
        """
        base = Settings(
            parallelism=cls.PARALLELISM,
            default_timeout=cls.DEFAULT_TIMEOUT,
            default_poll_interval=cls.DEFAULT_POLL_INTERVAL,
            retry_whitelist=_parse_signatures(cls.RETRY_WHITELIST),
            retry_max_attempts=cls.RETRY_MAX_ATTEMPTS,
            retry_backoff=_parse_backoff(cls.RETRY_BACKOFF),
            lane_provision_retries=cls.LANE_PROVISION_RETRIES,
            provision_retry_delay=cls.PROVISION_RETRY_DELAY,
            test_timeout=cls.TEST_TIMEOUT,
            log_tail_lines=cls.LOG_TAIL_LINES,
            artifact_dir=cls.ARTIFACT_DIR,
        )
        return base.override(**overrides)

    @classmethod
    def appium_server_url(cls, lane_index: int = 0) -> str:
        """每條 lane 使用獨立 port：4723, 4724, ..."""
        return f"http://{cls.APPIUM_HOST}:{cls.APPIUM_PORT + lane_index}"

    @classmethod
    def load_caps(cls, platform: str | None = None, validate: bool = True) -> dict:
        """
        從 JSON 檔載入 desired capabilities。

        Args:
            platform: 'android' 或 'ios'，預設讀取 Config.PLATFORM
            validate: 是否驗證必填欄位（預設 True）

        Returns:
            capabilities dict

        Raises:
            CapsFileNotFoundError: 設定檔不存在
            ConfigValidationError: 必填欄位缺失
        """
        platform = platform or cls.PLATFORM
        caps_file = CONFIG_DIR / f"{platform}_caps.json"
        if not caps_file.exists():
            raise CapsFileNotFoundError(str(caps_file))
        with open(caps_file, "r", encoding="utf-8") as f:
            caps = json.load(f)

        if validate:
            cls.validate_caps(caps, platform)

        return caps

    @classmethod
    def validate_caps(cls, caps: dict, platform: str) -> list[str]:
        """
        驗證 capabilities 結構。

        Returns:
            警告訊息列表

        Raises:
            ConfigValidationError: 必填欄位缺失時拋出
        """
        errors: list[str] = []
        warnings: list[str] = []

        for key in _REQUIRED_CAPS.get(platform, []):
            if key not in caps:
                errors.append(f"缺少必填欄位: {key}")

        for key in _RECOMMENDED_CAPS.get(platform, []):
            if key not in caps:
                warnings.append(f"建議填寫欄位: {key}")

        if errors:
            raise ConfigValidationError(errors)

        return warnings
