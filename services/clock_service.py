"""
時鐘服務：所有時間戳記的唯一來源

測試時可以 monkeypatch utcnow() 凍結時間
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
