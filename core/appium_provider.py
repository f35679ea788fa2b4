"""
Appium 後端 — ElementProvider 與 LaneProvisioner 的 Appium 實作

每條 lane 擁有自己的 webdriver.Remote，連到自己的 Appium server port
（Config.appium_server_url(lane_index)），不同 lane 之間不共用 driver。

Selenium 例外在這裡轉成框架例外：
- 元素過期 / 被遮擋 / 不可互動 → ActionRejectedError（signature 為 Selenium 例外名稱，
  可被重試白名單辨識）
- session 失效或其他 WebDriverException → SessionLostError（基礎設施問題）
"""

from __future__ import annotations

import urllib.error
import urllib.request
from typing import Any, Sequence

from appium import webdriver
from appium.options.android import UiAutomator2Options
from appium.options.ios import XCUITestOptions
from selenium.common.exceptions import (
    ElementClickInterceptedException,
    ElementNotInteractableException,
    InvalidSessionIdException,
    NoSuchElementException,
    StaleElementReferenceException,
    WebDriverException,
)

from config.config import Config
from core.exceptions import ActionRejectedError, SessionLostError
from core.lane import Lane
from core.locator import Locator
from core.provider import ActionKind
from utils.logger import logger

_REJECTIONS = (
    StaleElementReferenceException,
    ElementNotInteractableException,
    ElementClickInterceptedException,
    NoSuchElementException,
)

_DEVICE_LOG_TYPES = {"android": "logcat", "ios": "syslog"}


class AppiumElementProvider:
    """
    以 Appium driver 實作 ElementProvider

    Args:
        driver: 已連線的 webdriver.Remote
        platform: 'android' 或 'ios'（決定 device log 類型）
    """

    def __init__(self, driver, platform: str | None = None):
        self.driver = driver
        self.platform = (platform or Config.PLATFORM).lower()

    def find(self, locator: Locator, scope=None) -> Sequence[Any]:
        root = scope if scope is not None else self.driver
        try:
            return root.find_elements(*locator.as_tuple())
        except StaleElementReferenceException:
            # 父範圍已過期，視為這一輪找不到
            return []
        except WebDriverException as e:
            raise _session_lost(e) from e

    def is_actionable(self, ref) -> bool:
        try:
            return bool(ref.is_displayed() and ref.is_enabled())
        except _REJECTIONS:
            return False
        except WebDriverException as e:
            raise _session_lost(e) from e

    def act(self, ref, kind: ActionKind, payload: Any = None) -> Any:
        try:
            if kind is ActionKind.TAP:
                ref.click()
                return None
            if kind is ActionKind.TYPE:
                ref.send_keys(payload)
                return None
            if kind is ActionKind.CLEAR:
                ref.clear()
                return None
            if kind is ActionKind.READ_TEXT:
                return ref.text
        except _REJECTIONS as e:
            raise ActionRejectedError(
                action=kind.value,
                reason=_message(e),
                signature=type(e).__name__,
            ) from e
        except WebDriverException as e:
            raise _session_lost(e) from e
        raise ValueError(f"不支援的操作: {kind}")

    # ── 診斷（現場保全用）──

    def screenshot(self) -> bytes:
        return self.driver.get_screenshot_as_png()

    def element_tree(self) -> str:
        return self.driver.page_source

    def log_tail(self, lines: int = 200) -> list[str]:
        log_type = _DEVICE_LOG_TYPES.get(self.platform, "logcat")
        entries = self.driver.get_log(log_type)
        return [str(e.get("message", e)) for e in entries[-lines:]]


def _message(error: WebDriverException) -> str:
    return (getattr(error, "msg", None) or str(error)).strip()


def _session_lost(error: WebDriverException) -> SessionLostError:
    if isinstance(error, InvalidSessionIdException):
        return SessionLostError(f"session 已失效: {_message(error)}")
    return SessionLostError(f"{type(error).__name__}: {_message(error)}")


class AppiumLaneProvisioner:
    """
    為 lane 建立 / 關閉 Appium session

    lane.target 若是 dict，直接當作該 lane 的 capabilities；
    否則讀取 config/<platform>_caps.json。

    Args:
        platform: 'android' 或 'ios'，預設讀取 Config.PLATFORM
    """

    def __init__(self, platform: str | None = None):
        self.platform = (platform or Config.PLATFORM).lower()

    # ── Appium Server 健康檢查 ──

    @staticmethod
    def health_check(url: str, timeout: float = 5.0) -> bool:
        """
        檢查 Appium server 是否可連線。

        Returns:
            True = server 可用, False = 不可用
        """
        try:
            req = urllib.request.Request(f"{url}/status", method="GET")
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                return resp.status == 200
        except (urllib.error.URLError, OSError, TimeoutError):
            return False

    def options_for(self, lane: Lane):
        if isinstance(lane.target, dict):
            caps = dict(lane.target)
            Config.validate_caps(caps, self.platform)
        else:
            caps = Config.load_caps(self.platform)

        if self.platform == "android":
            return UiAutomator2Options().load_capabilities(caps)
        if self.platform == "ios":
            return XCUITestOptions().load_capabilities(caps)
        raise ValueError(f"不支援的平台: {self.platform}")

    def provision(self, lane: Lane) -> AppiumElementProvider:
        """建立 driver；失敗直接拋出，由排程器決定是否重試"""
        options = self.options_for(lane)
        url = Config.appium_server_url(lane.index)

        if not self.health_check(url):
            logger.warning(f"Appium server 健康檢查失敗: {url}，仍嘗試連線...")

        driver = webdriver.Remote(command_executor=url, options=options)
        logger.info(f"Lane {lane.index} driver 已建立: {self.platform} -> {url}")
        return AppiumElementProvider(driver, self.platform)

    def teardown(self, lane: Lane, provider: AppiumElementProvider) -> None:
        provider.driver.quit()
        logger.info(f"Lane {lane.index} driver 已關閉")
