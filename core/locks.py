"""
並發控制工具

提供 Database-level 的鎖定機制，防止競態條件（Race Condition）

主要使用 PostgreSQL 的 SELECT ... FOR UPDATE 來實現悲觀鎖（Pessimistic Locking）
SQLite 會忽略 FOR UPDATE，但 SQLite 本身的寫入就是序列化的

注意：
    回合完成的狀態轉換不靠這裡的鎖，而是 state_machine 的條件式 UPDATE（CAS）
    這裡的鎖用來讓「寫分數」和「完成回合」互斥
"""
from sqlalchemy.orm import Session, Query

from models import Round, ScoreEntry


def with_round_lock(round_id: str, db: Session) -> Query:
    """
    鎖定一個 Round（行級鎖）

    使用場景：
    - 寫入分數前確認回合仍是 OPEN
    - 確保在寫入期間回合不會被 CAS 轉成 COMPLETED

    範例：
        round_obj = with_round_lock(round_id, db).first()
        if not round_obj:
            raise RoundNotFound(round_id)
        if round_obj.status != RoundStatus.OPEN:
            raise RoundClosed(round_id)

    參數：
        round_id: Round ID
        db: SQLAlchemy Session

    返回：
        Query object（需要呼叫 .first() 或 .one() 來取得結果）

    注意：
        - nowait=False 表示如果鎖被佔用，會等待（避免 deadlock）
        - 必須在 transaction 內使用（確保有 commit 或 rollback）
    """
    return db.query(Round).filter(
        Round.id == round_id
    ).with_for_update(nowait=False)


def with_score_entry_lock(round_id: str, participant_id: str, unit: int, db: Session) -> Query:
    """
    鎖定一筆分數（同一個 (round, participant, unit) 只有一筆）

    使用場景：
    - 覆寫既有分數時，避免兩台裝置同時改同一洞

    返回：
        Query object（呼叫 .first() 取得結果，沒有則為 None）
    """
    return db.query(ScoreEntry).filter(
        ScoreEntry.round_id == round_id,
        ScoreEntry.participant_id == participant_id,
        ScoreEntry.unit == unit
    ).with_for_update(nowait=False)
