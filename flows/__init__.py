"""
Flows 目錄

放置可重用的使用者旅程（Flow），由 PageObject 的 action / expect 組成。
Flow 是不可變資料，可以在多個 TestCase、多條 lane 之間共用。
"""
