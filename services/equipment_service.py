"""
設備租借服務（外部協作者邊界）

球車等設備在回合期間被租借，回合完成時由 Completion Saga 一次釋放
另外保留一條「提前釋放」的路徑（例如球車故障提早歸還）
"""
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from models import EquipmentLease, LeaseStatus


def lease_to_round(db: Session, round_id: str, name: str, now: datetime) -> EquipmentLease:
    """建立一筆租借（只 flush，由呼叫者 commit）"""
    lease = EquipmentLease(
        name=name,
        status=LeaseStatus.IN_USE,
        round_id=round_id,
        assigned_at=now
    )
    db.add(lease)
    db.flush()
    return lease


def release_leases_for_round(round_id: str, now: datetime, db: Session) -> int:
    """
    釋放所有參照這個回合的租借（冪等）

    效果：
    - status -> AVAILABLE
    - round_id -> NULL
    - released_at -> now

    已經釋放的租借不會被碰到（status 已是 AVAILABLE）

    返回：
        這次實際釋放的數量
    """
    result = db.execute(
        update(EquipmentLease)
        .where(
            EquipmentLease.round_id == round_id,
            EquipmentLease.status != LeaseStatus.AVAILABLE
        )
        .values(status=LeaseStatus.AVAILABLE, round_id=None, released_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def release_lease(lease_id: str, now: datetime, db: Session) -> bool:
    """
    提前釋放單一租借（冪等）

    返回：
        True 表示這次有釋放，False 表示原本就已釋放
    """
    result = db.execute(
        update(EquipmentLease)
        .where(
            EquipmentLease.id == lease_id,
            EquipmentLease.status != LeaseStatus.AVAILABLE
        )
        .values(status=LeaseStatus.AVAILABLE, round_id=None, released_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
