"""
Score Ledger：每個 (round, participant, unit) 只保留一筆分數

職責：
1. 寫入 / 覆寫分數（Upsert）
2. 查詢回合或參賽者的分數
3. 區間小計（前九 / 後九）

設計：
- 以 (round_id, participant_id, unit) 唯一約束作為儲存鍵，第二次寫入是覆寫，不是新增
- 寫入前鎖定 Round，確保回合完成（CAS）之後不會再有分數寫進來
- 同一組鍵同時首次寫入時，輸掉唯一約束的一方改成覆寫（last write wins）
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import Participant, Round, RoundStatus, ScoreEntry
from core.locks import with_round_lock, with_score_entry_lock
from core.exceptions import (
    InvalidUnit,
    RoundClosed,
    RoundNotFound,
    UnknownParticipant,
)
from services import clock_service
from services.hole_sequence_service import front_back_ranges, is_valid_unit
from database import transactional

logger = logging.getLogger(__name__)

METRIC_FIELDS = (
    "putts",
    "penalties",
    "fairway_hit",
    "green_in_regulation",
    "bunker",
    "out_of_bounds",
)


@dataclass
class RangeTotal:
    total: int
    entries: int
    has_data: bool


@dataclass
class HoleCompletion:
    unit: int
    completed_count: int
    total_participants: int

    @property
    def all_completed(self) -> bool:
        return self.total_participants > 0 and self.completed_count == self.total_participants


def _metric_values(metrics: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    # 覆寫是整筆取代：沒給的指標一律清空，不沿用舊值
    metrics = metrics or {}
    return {name: metrics.get(name) for name in METRIC_FIELDS}


def _apply(entry: ScoreEntry, value: int, recorded_by: str, metrics: Dict[str, Any], now) -> None:
    entry.value = value
    entry.recorded_by = recorded_by
    for name, metric in metrics.items():
        setattr(entry, name, metric)
    entry.updated_at = now


class ScoreLedger:
    """分數帳本"""

    @staticmethod
    def upsert(
        db: Session,
        round_id: str,
        participant_id: str,
        unit: int,
        value: int,
        recorded_by: str,
        metrics: Optional[Dict[str, Any]] = None
    ) -> Tuple[ScoreEntry, bool]:
        """
        寫入或覆寫一筆分數（冪等，可安全重試）

        同一組鍵兩台裝置同時「首次」寫入時，輸掉唯一約束的一方
        transaction 會被 rollback，重跑一次就會走覆寫路徑
        """
        try:
            return ScoreLedger._write(db, round_id, participant_id, unit, value, recorded_by, metrics)
        except IntegrityError:
            logger.info(
                f"Concurrent first write for participant {participant_id} unit {unit} "
                f"in round {round_id}, retrying as overwrite"
            )
            return ScoreLedger._write(db, round_id, participant_id, unit, value, recorded_by, metrics)

    @staticmethod
    @transactional
    def _write(
        db: Session,
        round_id: str,
        participant_id: str,
        unit: int,
        value: int,
        recorded_by: str,
        metrics: Optional[Dict[str, Any]] = None
    ) -> Tuple[ScoreEntry, bool]:
        """
        寫入或覆寫一筆分數

        前置條件：
        1. Round 必須存在且為 OPEN
        2. Participant 必須屬於這個 Round
        3. unit 必須在 Round 的洞序內

        參數：
            db: SQLAlchemy Session
            round_id: Round ID
            participant_id: Participant ID
            unit: 洞號
            value: 桿數
            recorded_by: 記錄者（裝置 / 使用者）
            metrics: 其他指標（putts, penalties, fairway_hit, ...）

        返回：
            (ScoreEntry, created_new) tuple

        異常：
            RoundNotFound: Round 不存在
            RoundClosed: Round 已完成
            UnknownParticipant: 參賽者不屬於這個回合
            InvalidUnit: 洞號不在洞序內
        """
        # 1. 鎖定 Round 並檢查狀態
        round_obj = with_round_lock(round_id, db).first()
        if not round_obj:
            raise RoundNotFound(round_id)
        if round_obj.status != RoundStatus.OPEN:
            raise RoundClosed(round_id)

        # 2. 檢查參賽者
        participant = db.query(Participant).filter(
            Participant.id == participant_id,
            Participant.round_id == round_id
        ).first()
        if not participant:
            raise UnknownParticipant(round_id, participant_id)

        # 3. 檢查洞號
        if not is_valid_unit(round_obj.start_unit, round_obj.total_units, unit):
            raise InvalidUnit(unit, round_obj.total_units)

        now = clock_service.utcnow()
        fields = _metric_values(metrics)

        # 4. 既有分數 -> 覆寫
        entry = with_score_entry_lock(round_id, participant_id, unit, db).first()
        if entry:
            _apply(entry, value, recorded_by, fields, now)
            logger.info(
                f"Overwrote score for participant {participant_id} unit {unit} "
                f"in round {round_id}: {value}"
            )
            return entry, False

        # 5. 沒有 -> 新增（flush 讓唯一約束在這裡就觸發）
        entry = ScoreEntry(
            round_id=round_id,
            participant_id=participant_id,
            unit=unit,
            created_at=now
        )
        _apply(entry, value, recorded_by, fields, now)
        db.add(entry)
        db.flush()

        logger.info(
            f"Recorded score for participant {participant_id} unit {unit} "
            f"in round {round_id}: {value}"
        )
        return entry, True

    @staticmethod
    def entries_for_round(db: Session, round_id: str) -> List[ScoreEntry]:
        """取得回合內所有分數（依參賽者、洞號排序）"""
        if not db.query(Round.id).filter(Round.id == round_id).first():
            raise RoundNotFound(round_id)
        return db.query(ScoreEntry).filter(
            ScoreEntry.round_id == round_id
        ).order_by(ScoreEntry.participant_id, ScoreEntry.unit).all()

    @staticmethod
    def entries_for_participant(db: Session, round_id: str, participant_id: str) -> List[ScoreEntry]:
        """
        取得參賽者的分數（依洞號排序）

        異常：
            UnknownParticipant: 參賽者不屬於這個回合
        """
        _require_participant(db, round_id, participant_id)
        return db.query(ScoreEntry).filter(
            ScoreEntry.round_id == round_id,
            ScoreEntry.participant_id == participant_id
        ).order_by(ScoreEntry.unit).all()

    @staticmethod
    def aggregate_by_range(
        db: Session,
        round_id: str,
        participant_id: str,
        unit_low: int,
        unit_high: int
    ) -> RangeTotal:
        """
        計算洞號區間 [unit_low, unit_high] 的桿數總和

        用途：
            前九 / 後九小計

        返回：
            RangeTotal；區間內沒有任何分數時 total=0, has_data=False
        """
        _require_participant(db, round_id, participant_id)
        total, count = db.query(
            func.coalesce(func.sum(ScoreEntry.value), 0),
            func.count(ScoreEntry.id)
        ).filter(
            ScoreEntry.round_id == round_id,
            ScoreEntry.participant_id == participant_id,
            ScoreEntry.unit >= unit_low,
            ScoreEntry.unit <= unit_high
        ).one()
        return RangeTotal(total=int(total), entries=int(count), has_data=count > 0)

    @staticmethod
    def subtotals(db: Session, round_id: str, participant_id: str) -> Dict[str, RangeTotal]:
        """前半場 / 後半場 / 全場小計"""
        round_obj = db.query(Round).filter(Round.id == round_id).first()
        if not round_obj:
            raise RoundNotFound(round_id)
        (front_low, front_high), (back_low, back_high) = front_back_ranges(round_obj.total_units)
        return {
            "front": ScoreLedger.aggregate_by_range(db, round_id, participant_id, front_low, front_high),
            "back": ScoreLedger.aggregate_by_range(db, round_id, participant_id, back_low, back_high),
            "total": ScoreLedger.aggregate_by_range(db, round_id, participant_id, 1, round_obj.total_units),
        }

    @staticmethod
    def hole_completion(db: Session, round_id: str, unit: int) -> HoleCompletion:
        """
        檢查某一洞是否所有參賽者都已記分

        用途：
            裝置端決定是否自動前進到下一洞
        """
        round_obj = db.query(Round).filter(Round.id == round_id).first()
        if not round_obj:
            raise RoundNotFound(round_id)
        if not is_valid_unit(round_obj.start_unit, round_obj.total_units, unit):
            raise InvalidUnit(unit, round_obj.total_units)

        total_participants = db.query(Participant).filter(
            Participant.round_id == round_id
        ).count()
        completed_count = db.query(ScoreEntry).join(
            Participant, Participant.id == ScoreEntry.participant_id
        ).filter(
            ScoreEntry.round_id == round_id,
            ScoreEntry.unit == unit,
            Participant.round_id == round_id
        ).count()
        return HoleCompletion(
            unit=unit,
            completed_count=completed_count,
            total_participants=total_participants
        )


def _require_participant(db: Session, round_id: str, participant_id: str) -> Participant:
    participant = db.query(Participant).filter(
        Participant.id == participant_id,
        Participant.round_id == round_id
    ).first()
    if not participant:
        if not db.query(Round.id).filter(Round.id == round_id).first():
            raise RoundNotFound(round_id)
        raise UnknownParticipant(round_id, participant_id)
    return participant
