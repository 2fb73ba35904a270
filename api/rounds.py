"""
Round API Endpoints

重點：
1. mark_device_finished 冪等，重複呼叫不會重跑清理
2. 「最後一台完成」不需要特殊判斷，任何裝置都嘗試關閉 Barrier，由 CAS 決定唯一贏家
3. 所有業務邏輯集中在 core（RoundManager / CompletionBarrier / CompletionSaga）
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List

import logging

from database import get_db
from models import Round
from schemas import (
    CompletionRetryResponse,
    CurrentUnitResponse,
    CurrentUnitUpdate,
    DeviceAttach,
    DeviceHistoryEntry,
    DeviceResponse,
    DeviceStatusResponse,
    FinishResponse,
    RoundCreate,
    RoundResponse,
    RoundStatusResponse,
    StandingResponse,
)
from core.round_manager import RoundManager
from core.completion_barrier import CompletionBarrier
from core.exceptions import (
    InvalidConfiguration,
    InvalidStateTransition,
    InvalidUnit,
    RoundClosed,
    RoundNotFound,
    SagaStepFailed,
    UnknownDevice,
)
from services.hole_sequence_service import sequence
from services.history_service import get_device_round_history
from services.ranking_service import get_ranking

router = APIRouter(prefix="/api", tags=["rounds"])
logger = logging.getLogger(__name__)


def round_to_response(round_obj: Round) -> RoundResponse:
    return RoundResponse(
        id=round_obj.id,
        name=round_obj.name,
        start_unit=round_obj.start_unit,
        total_units=round_obj.total_units,
        current_unit=round_obj.current_unit,
        status=round_obj.status,
        sequence=sequence(round_obj.start_unit, round_obj.total_units),
        device_ids=[d.device_id for d in round_obj.devices],
        created_at=round_obj.created_at,
        completed_at=round_obj.completed_at,
        cleanup_completed_at=round_obj.cleanup_completed_at
    )


@router.post("/rounds", response_model=RoundResponse)
def create_round(round_data: RoundCreate, db: Session = Depends(get_db)):
    """
    建立回合（排程一個 flight）

    參數：
        - start_unit: 開球洞（預設 1）
        - total_units: 總洞數（預設 18）
        - devices: 記分裝置名單（順序即名單順序）
    """
    try:
        round_obj = RoundManager.create_round(
            db,
            start_unit=round_data.start_unit,
            total_units=round_data.total_units,
            name=round_data.name,
            devices=[(d.device_id, d.device_name) for d in round_data.devices]
        )
        db.refresh(round_obj)
        return round_to_response(round_obj)

    except InvalidConfiguration as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to create round: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/rounds/{round_id}", response_model=RoundResponse)
def get_round(round_id: str, db: Session = Depends(get_db)):
    """取得回合資訊（含完整洞序）"""
    try:
        return round_to_response(RoundManager.get_round_by_id(db, round_id))

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except Exception as e:
        logger.error(f"Failed to get round: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/rounds/{round_id}/devices", response_model=DeviceResponse)
def attach_device(round_id: str, device_data: DeviceAttach, db: Session = Depends(get_db)):
    """把裝置加入回合（冪等）"""
    try:
        device, created_new = RoundManager.attach_device(
            db, round_id, device_data.device_id, device_data.device_name
        )
        logger.info(
            "Device %s %s for round %s",
            device_data.device_id,
            "attached" if created_new else "reused",
            round_id
        )
        return DeviceResponse.model_validate(device)

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except RoundClosed as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to attach device: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/rounds/{round_id}/devices/{device_id}/finish", response_model=FinishResponse)
def mark_device_finished(round_id: str, device_id: str, db: Session = Depends(get_db)):
    """
    裝置宣告完成記分（核心！）

    **並發安全**：
    - 兩台裝置同時送出完成，CAS 保證清理只執行一次
    - 冪等性確保重複呼叫不會出錯，也不會重跑清理

    返回：
        - round_completed: 回合是否已完成
        - pending_devices: 還有幾台裝置沒完成
        - newly_finished: 這次呼叫是否是第一次完成
        - cleanup_pending: 清理尚未跑完（呼叫 /completion/retry）
    """
    try:
        result = CompletionBarrier.mark_device_finished(db, round_id, device_id)
        return FinishResponse(
            round_completed=result.round_completed,
            pending_devices=result.pending_devices,
            newly_finished=result.newly_finished,
            cleanup_pending=result.cleanup_pending
        )

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except UnknownDevice as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to mark device finished: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/rounds/{round_id}/devices/{device_id}/current-unit", response_model=CurrentUnitResponse)
def update_current_unit(
    round_id: str,
    device_id: str,
    unit_data: CurrentUnitUpdate,
    db: Session = Depends(get_db)
):
    """更新裝置目前所在的洞（返回洞序與目前位置）"""
    try:
        progress = RoundManager.update_current_unit(db, round_id, device_id, unit_data.unit)
        return CurrentUnitResponse(
            current_unit=progress.current_unit,
            current_index=progress.current_index,
            sequence=progress.sequence
        )

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except UnknownDevice as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RoundClosed as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidUnit as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to update current unit: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/rounds/{round_id}/status", response_model=RoundStatusResponse)
def get_round_status(round_id: str, db: Session = Depends(get_db)):
    """
    取得每台裝置的完成狀態

    返回：
        - devices: [{device_id, finished, finished_at, ...}]
        - all_finished: 是否全部完成
        - locked_participant_ids: 裝置已完成的參賽者（前端停用輸入）
    """
    try:
        view = CompletionBarrier.get_round_status(db, round_id)
        return RoundStatusResponse(
            round_id=view.round_id,
            status=view.status,
            devices=[
                DeviceStatusResponse(
                    device_id=d.device_id,
                    device_name=d.device_name,
                    finished=d.finished,
                    finished_at=d.finished_at,
                    current_unit=d.current_unit
                )
                for d in view.devices
            ],
            all_finished=view.all_finished,
            total_devices=view.total_devices,
            finished_devices=view.finished_devices,
            locked_participant_ids=view.locked_participant_ids,
            cleanup_pending=view.cleanup_pending
        )

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except Exception as e:
        logger.error(f"Failed to get round status: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/rounds/{round_id}/completion/retry", response_model=CompletionRetryResponse)
def retry_completion(round_id: str, db: Session = Depends(get_db)):
    """
    重新執行完成清理（冪等）

    用途：
        mark_device_finished 回傳 cleanup_pending = True 時呼叫
    """
    try:
        steps = CompletionBarrier.retry_completion(db, round_id)
        return CompletionRetryResponse(steps=steps)

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except InvalidStateTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SagaStepFailed as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to retry completion: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/rounds/{round_id}/ranking", response_model=List[StandingResponse])
def get_round_ranking(round_id: str, db: Session = Depends(get_db)):
    """
    取得排行榜

    - position 0 表示尚未記分（排在最後）
    - 同桿同名次，下一個名次跳號（1, 1, 3）
    """
    try:
        return [
            StandingResponse(
                participant_id=s.participant_id,
                display_name=s.display_name,
                total=s.total,
                units_completed=s.units_completed,
                position=s.position,
                unit_scores=dict(s.unit_scores)
            )
            for s in get_ranking(db, round_id)
        ]

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except Exception as e:
        logger.error(f"Failed to get ranking: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/devices/{device_id}/completed-rounds", response_model=List[DeviceHistoryEntry])
def get_device_history(
    device_id: str,
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """取得裝置參與過、且已完成的回合（新到舊）"""
    try:
        return [
            DeviceHistoryEntry(**entry)
            for entry in get_device_round_history(device_id, db, limit=limit)
        ]

    except Exception as e:
        logger.error(f"Failed to get device history: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
