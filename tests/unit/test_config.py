"""
config.config 單元測試
驗證 Settings 的預設值/驗證、Config.settings() 的組裝與 capabilities 驗證。
"""

from pathlib import Path

import pytest

from config.config import (
    CapsFileNotFoundError,
    Config,
    ConfigValidationError,
    InvalidConfigError,
    Settings,
)


class TestSettings:
    """不可變的執行期設定"""

    def test_defaults(self):
        s = Settings()
        assert s.parallelism == 2
        assert s.default_timeout == 15.0
        assert s.default_poll_interval == 0.5
        assert s.retry_whitelist == frozenset({"StaleElementReferenceException"})
        assert s.retry_max_attempts == 3
        assert s.retry_backoff == (0.5, 1.0, 2.0)
        assert s.lane_provision_retries == 2

    def test_frozen(self):
        s = Settings()
        with pytest.raises(AttributeError):
            s.parallelism = 4

    @pytest.mark.parametrize("field,value", [
        ("parallelism", 0),
        ("default_timeout", -1),
        ("default_poll_interval", 0),
        ("retry_max_attempts", 0),
        ("retry_backoff", (1.0, -0.5)),
        ("lane_provision_retries", -1),
        ("test_timeout", -5),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(InvalidConfigError, match=field):
            Settings(**{field: value})

    def test_zero_timeout_allowed(self):
        """timeout 0 表示只檢查一次"""
        assert Settings(default_timeout=0).default_timeout == 0

    def test_override_returns_new(self):
        s = Settings()
        t = s.override(parallelism=4)
        assert t.parallelism == 4
        assert s.parallelism == 2

    def test_override_ignores_none(self):
        s = Settings()
        assert s.override(parallelism=None) is s


class TestConfigSettings:
    """Config.settings() 由環境設定組出 Settings"""

    def test_builds_settings(self, monkeypatch):
        monkeypatch.setattr(Config, "PARALLELISM", 3)
        monkeypatch.setattr(Config, "RETRY_WHITELIST",
                            "StaleElementReferenceException, ClickInterceptedException")
        monkeypatch.setattr(Config, "RETRY_BACKOFF", "0.1,0.2")
        s = Config.settings()
        assert s.parallelism == 3
        assert s.retry_whitelist == frozenset({
            "StaleElementReferenceException", "ClickInterceptedException",
        })
        assert s.retry_backoff == (0.1, 0.2)

    def test_overrides(self):
        assert Config.settings(parallelism=5).parallelism == 5

    def test_bad_backoff(self, monkeypatch):
        monkeypatch.setattr(Config, "RETRY_BACKOFF", "fast,slow")
        with pytest.raises(InvalidConfigError, match="RETRY_BACKOFF"):
            Config.settings()

    def test_empty_whitelist_disables_retry(self, monkeypatch):
        monkeypatch.setattr(Config, "RETRY_WHITELIST", "")
        assert Config.settings().retry_whitelist == frozenset()


class TestConfigValidation:
    """Capabilities 驗證"""

    def test_valid_android_caps(self):
        caps = {
            "platformName": "Android",
            "appium:deviceName": "emulator",
            "appium:automationName": "UiAutomator2",
            "appium:appPackage": "com.example",
            "appium:appActivity": ".MainActivity",
        }
        assert Config.validate_caps(caps, "android") == []

    def test_valid_ios_caps(self):
        caps = {
            "platformName": "iOS",
            "appium:deviceName": "iPhone 15",
            "appium:automationName": "XCUITest",
            "appium:bundleId": "com.example.app",
        }
        assert Config.validate_caps(caps, "ios") == []

    def test_missing_required_raises(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            Config.validate_caps({"platformName": "Android"}, "android")
        assert "appium:deviceName" in str(exc_info.value)

    def test_missing_recommended_returns_warnings(self):
        caps = {"platformName": "Android", "appium:deviceName": "emulator"}
        warnings = Config.validate_caps(caps, "android")
        assert any("appium:automationName" in w for w in warnings)

    def test_validation_error_has_error_list(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            Config.validate_caps({}, "android")
        assert len(exc_info.value.errors) == 2

    def test_validation_error_is_config_error(self):
        with pytest.raises(InvalidConfigError):
            Config.validate_caps({}, "ios")


class TestConfigCaps:
    """capabilities 檔案載入"""

    def test_load_bundled_caps(self):
        caps = Config.load_caps("android")
        assert caps["platformName"] == "Android"

    def test_missing_file(self):
        with pytest.raises(CapsFileNotFoundError, match="windows_caps.json"):
            Config.load_caps("windows")


class TestAppiumServer:
    """Appium server 位址"""

    def test_appium_server_url(self):
        assert Config.appium_server_url().startswith("http://")

    def test_port_per_lane(self, monkeypatch):
        monkeypatch.setattr(Config, "APPIUM_HOST", "127.0.0.1")
        monkeypatch.setattr(Config, "APPIUM_PORT", 4723)
        assert Config.appium_server_url(0) == "http://127.0.0.1:4723"
        assert Config.appium_server_url(2) == "http://127.0.0.1:4725"

    def test_artifact_dir_under_reports(self):
        assert isinstance(Config.ARTIFACT_DIR, Path)
