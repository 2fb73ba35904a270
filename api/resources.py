"""
External Resource Endpoints

外部協作者（登記紀錄、設備租借、資源綁定）的最小介面：
- 建立登記紀錄
- 租借設備給回合 / 提前釋放
- 建立平板 / 桿弟的資源綁定

回合完成時這些資料由 Completion Saga 統一清理
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from database import get_db
from models import EquipmentLease, EventLog, ResourceAssignment, RoundStatus
from schemas import (
    EquipmentLeaseCreate,
    EquipmentLeaseResponse,
    RegistryEntryCreate,
    RegistryEntryResponse,
    ResourceAssignmentCreate,
    ResourceAssignmentResponse,
)
from core.round_manager import RoundManager
from core.exceptions import LeaseNotFound, RoundClosed, RoundNotFound
from services import clock_service, equipment_service, registry_service

router = APIRouter(prefix="/api", tags=["resources"])
logger = logging.getLogger(__name__)


@router.post("/registry", response_model=RegistryEntryResponse)
def create_registry_entry(entry_data: RegistryEntryCreate, db: Session = Depends(get_db)):
    """建立參賽者登記紀錄（報到）"""
    try:
        entry = registry_service.create_entry(
            db, name=entry_data.name, payment_status=entry_data.payment_status
        )
        db.commit()
        db.refresh(entry)
        return RegistryEntryResponse.model_validate(entry)

    except Exception as e:
        logger.error(f"Failed to create registry entry: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/registry/{entry_id}", response_model=RegistryEntryResponse)
def get_registry_entry(entry_id: str, db: Session = Depends(get_db)):
    """讀取一筆登記紀錄"""
    entry = registry_service.get_entry(entry_id, db)
    if not entry:
        raise HTTPException(status_code=404, detail="Registry entry not found")
    return RegistryEntryResponse.model_validate(entry)


@router.post("/rounds/{round_id}/equipment", response_model=EquipmentLeaseResponse)
def lease_equipment(round_id: str, lease_data: EquipmentLeaseCreate, db: Session = Depends(get_db)):
    """
    租借設備（球車）給回合

    前置條件：
    - 回合必須是 OPEN
    """
    try:
        round_obj = RoundManager.get_round_by_id(db, round_id)
        if round_obj.status != RoundStatus.OPEN:
            raise RoundClosed(round_id)

        lease = equipment_service.lease_to_round(
            db, round_id, lease_data.name, clock_service.utcnow()
        )
        db.commit()
        db.refresh(lease)
        return EquipmentLeaseResponse.model_validate(lease)

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except RoundClosed as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to lease equipment: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/equipment/{lease_id}/release", response_model=EquipmentLeaseResponse)
def release_equipment(lease_id: str, db: Session = Depends(get_db)):
    """
    提前釋放設備（冪等）

    用途：
        回合結束前歸還球車（故障、提早離場）
    """
    try:
        lease = db.query(EquipmentLease).filter(EquipmentLease.id == lease_id).first()
        if not lease:
            raise LeaseNotFound(lease_id)

        round_id = lease.round_id
        if equipment_service.release_lease(lease_id, clock_service.utcnow(), db):
            db.add(EventLog(
                round_id=round_id,
                event_type="LEASE_RELEASED_EARLY",
                data={"lease_id": lease_id}
            ))
            logger.info(f"Lease {lease_id} released early from round {round_id}")
        db.commit()
        db.refresh(lease)
        return EquipmentLeaseResponse.model_validate(lease)

    except LeaseNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to release equipment: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/rounds/{round_id}/assignments", response_model=ResourceAssignmentResponse)
def create_assignment(
    round_id: str,
    assignment_data: ResourceAssignmentCreate,
    db: Session = Depends(get_db)
):
    """建立資源綁定（平板 / 桿弟對回合，顯示用）"""
    try:
        round_obj = RoundManager.get_round_by_id(db, round_id)
        if round_obj.status != RoundStatus.OPEN:
            raise RoundClosed(round_id)

        assignment = ResourceAssignment(
            round_id=round_id,
            resource_type=assignment_data.resource_type,
            resource_id=assignment_data.resource_id,
            resource_name=assignment_data.resource_name,
            assigned_at=clock_service.utcnow()
        )
        db.add(assignment)
        db.commit()
        db.refresh(assignment)
        return ResourceAssignmentResponse.model_validate(assignment)

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except RoundClosed as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to create assignment: {e}", exc_info=True)
        db.rollback()
        raise HTTPException(status_code=500, detail="Internal error")
