"""
核心業務邏輯層

這個 package 包含所有核心業務邏輯，包括：
- 狀態機：Round 的 OPEN -> COMPLETED（CAS）
- Manager：管理 Round 的生命週期與名單
- Score Ledger：每洞一筆的分數帳本
- Completion Barrier：所有裝置完成才關閉回合
- Completion Saga：回合完成後的冪等清理流程
- Locks：並發控制工具
"""
