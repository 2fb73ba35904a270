"""
API 層

每個模組一個 APIRouter，只負責：
- 解析 request / 組 response
- 把業務異常轉成 HTTP 狀態碼
業務邏輯一律在 core 與 services
"""
