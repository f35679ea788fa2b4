"""
Plugins 目錄

放置自訂 Plugin 檔案。命名規則：*_plugin.py
`python -m runner` 啟動時會自動掃描此目錄載入 Plugin（--no-plugins 可停用）。

內建：
    plugins/
    ├── timing_plugin.py    # 操作耗時統計
    └── triage_plugin.py    # 失敗依 App / 基礎設施分流記錄
"""
