"""
多裝置平行測試設定

每條 lane 對應 config/devices.json 中的一台裝置（capabilities dict），
並使用自己的 Appium server port（見 Config.appium_server_url）。

devices.json 範例：
    [
        {"platformName": "Android", "appium:deviceName": "emulator-5554"},
        {"platformName": "Android", "appium:deviceName": "emulator-5556"}
    ]
"""

from __future__ import annotations

import json
from pathlib import Path

from config.config import CapsFileNotFoundError, Config, InvalidConfigError
from utils.logger import logger

# 裝置清單設定檔路徑
DEVICES_FILE = Path(__file__).resolve().parent.parent / "config" / "devices.json"


def load_lane_targets(devices_file: str | Path | None = None,
                      platform: str | None = None,
                      required: bool = False) -> list[dict] | None:
    """
    讀取每條 lane 的裝置目標。

    Args:
        devices_file: 裝置清單 JSON，預設 config/devices.json
        platform: 驗證 capabilities 用的平台，預設 Config.PLATFORM
        required: 檔案不存在時是否拋錯（CLI 明確指定 --targets 時為 True）

    Returns:
        capabilities 列表（索引即 lane 編號）；
        檔案不存在且非必要時回傳 None，表示每條 lane 都使用預設 caps

    Raises:
        CapsFileNotFoundError: required=True 且檔案不存在
        InvalidConfigError: 檔案內容不是非空的 JSON 陣列
        ConfigValidationError: 某台裝置缺少必填欄位
    """
    path = Path(devices_file) if devices_file else DEVICES_FILE
    if not path.exists():
        if required:
            raise CapsFileNotFoundError(str(path))
        logger.info(f"找不到 {path}，每條 lane 使用預設 caps")
        return None

    with open(path, "r", encoding="utf-8") as f:
        try:
            devices = json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidConfigError(str(path), "", f"JSON 格式錯誤: {e}") from e

    if not isinstance(devices, list) or not devices:
        raise InvalidConfigError(str(path), type(devices).__name__,
                                 "必須是非空的 capabilities 陣列")

    platform = platform or Config.PLATFORM
    for index, device in enumerate(devices):
        if not isinstance(device, dict):
            raise InvalidConfigError(f"{path.name}[{index}]", repr(device),
                                     "每台裝置必須是 capabilities 物件")
        Config.validate_caps(device, platform)
        logger.info(
            f"[lane-{index}] 使用裝置: {device.get('appium:deviceName', 'unknown')}"
        )
    return devices
