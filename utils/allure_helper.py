"""
Allure 報告整合輔助
封裝 Allure 常用的步驟標記與附件功能。
沒有 allure 報告在收集時（例如直接用 CLI 執行），allure 的呼叫不做任何事。
"""

import functools
from pathlib import Path

import allure

from utils.logger import logger

_ATTACHMENT_TYPES = {
    ".png": allure.attachment_type.PNG,
    ".xml": allure.attachment_type.XML,
    ".json": allure.attachment_type.JSON,
    ".log": allure.attachment_type.TEXT,
}


def allure_step(title: str):
    """
    裝飾器：將 PageObject 方法標記為 Allure step。

    title 可使用方法參數做格式化。

    用法：
        @allure_step("以 {email} 登入")
        def login(self, email, password): ...
    """
    def decorator(func):
        stepped = allure.step(title)(func)
        return functools.wraps(func)(stepped)
    return decorator


def attach_file(filepath, name: str | None = None) -> None:
    """將檔案附加到 Allure 報告，依副檔名決定附件類型"""
    path = Path(filepath)
    allure.attach.file(
        str(path),
        name=name or path.name,
        attachment_type=_ATTACHMENT_TYPES.get(path.suffix.lower()),
    )


def attach_artifact(artifact) -> int:
    """
    把失敗現場的所有檔案附加到 Allure 報告。

    單一附件失敗只記錄 debug log，不影響其他附件。

    Returns:
        成功附加的檔案數
    """
    attached = 0
    for name, path in artifact.payloads.items():
        try:
            attach_file(path, name=f"{artifact.test_id}: {name}")
            attached += 1
        except Exception as e:
            logger.debug(f"[Allure] 附件失敗 {name}: {e}")
    return attached
