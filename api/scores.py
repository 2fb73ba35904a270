"""
Score API Endpoints

職責：
1. 記分（Upsert，同一洞重送是覆寫）
2. 查詢分數、小計、單洞完成狀況
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List
import logging

from database import get_db
from schemas import (
    HoleCompletionResponse,
    RangeTotalResponse,
    ScoreEntryResponse,
    ScoreSubmit,
    ScoreUpsertResponse,
    SubtotalsResponse,
)
from core.score_ledger import RangeTotal, ScoreLedger
from core.exceptions import (
    InvalidUnit,
    RoundClosed,
    RoundNotFound,
    UnknownParticipant,
)

router = APIRouter(prefix="/api/rounds", tags=["scores"])
logger = logging.getLogger(__name__)


def _range_response(range_total: RangeTotal) -> RangeTotalResponse:
    return RangeTotalResponse(
        total=range_total.total,
        entries=range_total.entries,
        has_data=range_total.has_data
    )


@router.post("/{round_id}/scores", response_model=ScoreUpsertResponse)
def upsert_score(round_id: str, score_data: ScoreSubmit, db: Session = Depends(get_db)):
    """
    記錄一洞的桿數（冪等）

    前置條件：
    - 回合必須是 OPEN（已完成的回合回傳 409）
    - 參賽者必須屬於這個回合
    - 洞號必須在回合的洞序內

    返回：
        - entry_id: 分數 ID（同一洞覆寫時 ID 不變）
        - created: 是否為新增
    """
    try:
        entry, created_new = ScoreLedger.upsert(
            db,
            round_id,
            score_data.participant_id,
            score_data.unit,
            score_data.value,
            score_data.recorded_by,
            score_data.metrics.model_dump() if score_data.metrics else None
        )
        return ScoreUpsertResponse(entry_id=entry.id, created=created_new)

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except UnknownParticipant as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RoundClosed as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidUnit as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to upsert score: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{round_id}/scores", response_model=List[ScoreEntryResponse])
def list_round_scores(round_id: str, db: Session = Depends(get_db)):
    """取得回合內所有分數"""
    try:
        return [
            ScoreEntryResponse.model_validate(entry)
            for entry in ScoreLedger.entries_for_round(db, round_id)
        ]

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except Exception as e:
        logger.error(f"Failed to list scores: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{round_id}/participants/{participant_id}/scores", response_model=List[ScoreEntryResponse])
def list_participant_scores(round_id: str, participant_id: str, db: Session = Depends(get_db)):
    """取得參賽者的分數（依洞號排序）"""
    try:
        return [
            ScoreEntryResponse.model_validate(entry)
            for entry in ScoreLedger.entries_for_participant(db, round_id, participant_id)
        ]

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except UnknownParticipant as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to list participant scores: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{round_id}/participants/{participant_id}/aggregate", response_model=RangeTotalResponse)
def aggregate_participant_range(
    round_id: str,
    participant_id: str,
    low: int = Query(..., ge=1),
    high: int = Query(..., ge=1),
    db: Session = Depends(get_db)
):
    """洞號區間 [low, high] 的桿數小計（沒有資料時 total=0, has_data=false）"""
    try:
        return _range_response(
            ScoreLedger.aggregate_by_range(db, round_id, participant_id, low, high)
        )

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except UnknownParticipant as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to aggregate scores: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{round_id}/participants/{participant_id}/subtotals", response_model=SubtotalsResponse)
def get_participant_subtotals(round_id: str, participant_id: str, db: Session = Depends(get_db)):
    """前半場 / 後半場 / 全場小計"""
    try:
        bands = ScoreLedger.subtotals(db, round_id, participant_id)
        return SubtotalsResponse(
            front=_range_response(bands["front"]),
            back=_range_response(bands["back"]),
            total=_range_response(bands["total"])
        )

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except UnknownParticipant as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to get subtotals: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{round_id}/holes/{unit}/completion", response_model=HoleCompletionResponse)
def get_hole_completion(round_id: str, unit: int, db: Session = Depends(get_db)):
    """檢查某一洞是否所有參賽者都已記分（裝置用來決定是否自動換洞）"""
    try:
        completion = ScoreLedger.hole_completion(db, round_id, unit)
        return HoleCompletionResponse(
            unit=completion.unit,
            all_completed=completion.all_completed,
            completed_count=completion.completed_count,
            total_participants=completion.total_participants
        )

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except InvalidUnit as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to check hole completion: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
