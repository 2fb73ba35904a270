"""
Participant API Endpoints

職責：
1. 登記參賽者（指定負責記分的裝置）
2. 查詢回合內的參賽者
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List
import logging

from database import get_db
from models import Participant
from schemas import ParticipantCreate, ParticipantResponse
from core.round_manager import RoundManager
from core.exceptions import (
    InvalidConfiguration,
    RoundClosed,
    RoundNotFound,
    UnknownDevice,
)

router = APIRouter(prefix="/api/rounds", tags=["participants"])
logger = logging.getLogger(__name__)


@router.post("/{round_id}/participants", response_model=ParticipantResponse)
def register_participant(
    round_id: str,
    participant_data: ParticipantCreate,
    db: Session = Depends(get_db)
):
    """
    登記參賽者

    前置條件：
    - 回合必須存在且為 OPEN
    - device_id 必須已經在回合的裝置名單內

    流程：
    1. 檢查回合與裝置
    2. 建立 Participant（裝置指派之後不可更換）
    3. 返回參賽者資訊
    """
    try:
        participant = RoundManager.register_participant(
            db,
            round_id,
            participant_data.device_id,
            participant_data.display_name,
            handicap_index=participant_data.handicap_index,
            registry_entry_id=participant_data.registry_entry_id,
            payment_status=participant_data.payment_status,
            player_order=participant_data.player_order
        )
        db.refresh(participant)
        return ParticipantResponse.model_validate(participant)

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except UnknownDevice as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RoundClosed as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidConfiguration as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to register participant: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{round_id}/participants", response_model=List[ParticipantResponse])
def list_participants(round_id: str, db: Session = Depends(get_db)):
    """取得回合內的參賽者（依 player_order）"""
    try:
        RoundManager.get_round_by_id(db, round_id)
        participants = db.query(Participant).filter(
            Participant.round_id == round_id
        ).order_by(Participant.player_order).all()
        return [ParticipantResponse.model_validate(p) for p in participants]

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except Exception as e:
        logger.error(f"Failed to list participants: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
