"""
服務層

這個 package 包含純計算邏輯與外部協作者邊界，不負責回合狀態轉換：
- HoleSequenceService：洞序計算
- RankingService：排名邏輯
- HistoryService：裝置歷史紀錄
- RegistryService / EquipmentService：外部登記紀錄與設備租借
- ClockService：時間戳記
"""
