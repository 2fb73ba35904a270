"""
回合狀態機

合法的轉換只有一條：OPEN -> COMPLETED（單向，永不重開）

轉換以單一條件式 UPDATE 實作（compare-and-set）：
    UPDATE rounds SET status = 'completed'
    WHERE id = :id AND status = 'open'
      AND NOT EXISTS (SELECT 1 FROM device_progress
                      WHERE round_id = :id AND finished = false)

同時到達的多個呼叫者之中，只有一個會得到 rowcount == 1
"""
from datetime import datetime
from typing import Dict, Set
import logging

from sqlalchemy import and_, exists, select, update
from sqlalchemy.orm import Session

from models import DeviceProgress, Round, RoundStatus

logger = logging.getLogger(__name__)


class RoundStateMachine:
    """Round 狀態轉換（唯一允許修改 Round.status 的地方）"""

    TRANSITIONS: Dict[RoundStatus, Set[RoundStatus]] = {
        RoundStatus.OPEN: {RoundStatus.COMPLETED},
        RoundStatus.COMPLETED: set(),
    }

    @classmethod
    def can_transition(cls, current: RoundStatus, target: RoundStatus) -> bool:
        return target in cls.TRANSITIONS.get(current, set())

    @staticmethod
    def try_complete(db: Session, round_id: str, now: datetime) -> bool:
        """
        嘗試把回合從 OPEN 轉成 COMPLETED（CAS）

        條件（全部在同一個 UPDATE 內判斷）：
        1. 回合目前是 OPEN
        2. 回合內沒有任何未完成的裝置

        參數：
            db: SQLAlchemy Session
            round_id: Round ID
            now: 完成時間

        返回：
            True 表示這個呼叫者贏得轉換（必須接著執行 Completion Saga）
            False 表示條件不成立或已被其他呼叫者轉換

        注意：
            - 只 flush 不 commit，由呼叫者決定 commit 時機
        """
        unfinished_devices = exists().where(
            and_(
                DeviceProgress.round_id == round_id,
                DeviceProgress.finished == False  # noqa: E712
            )
        )
        stmt = (
            update(Round)
            .where(
                Round.id == round_id,
                Round.status == RoundStatus.OPEN,
                ~unfinished_devices
            )
            .values(status=RoundStatus.COMPLETED, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)
        won = result.rowcount == 1
        if won:
            logger.info(f"Round {round_id} transitioned OPEN -> COMPLETED")
        return won

    @staticmethod
    def current_status(db: Session, round_id: str):
        """直接從資料庫讀取最新狀態（不使用 session 快取）"""
        return db.execute(
            select(Round.status).where(Round.id == round_id)
        ).scalar_one_or_none()
