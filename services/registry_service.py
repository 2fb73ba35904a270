"""
參賽者登記服務（外部協作者邊界）

只提供讀一筆登記紀錄與修改狀態欄位
- 登記參賽者時由 RoundManager 呼叫 link_entry()，紀錄改屬於新回合
- 回合完成時由 Completion Saga 呼叫 complete_entry()

一筆登記紀錄同一時間只屬於一個回合；complete_entry() 只會動到屬於該回合、
且尚未完成的紀錄，所以重跑舊回合的 Saga 不會搶走新回合的紀錄
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from models import RegistryEntry

COMPLETED_STATUS = "completed"
LINKED_STATUS = "verified"


def get_entry(entry_id: str, db: Session) -> Optional[RegistryEntry]:
    """讀取一筆登記紀錄（不存在回傳 None）"""
    return db.query(RegistryEntry).filter(RegistryEntry.id == entry_id).first()


def create_entry(
    db: Session,
    name: Optional[str] = None,
    payment_status: Optional[str] = None,
    status: str = "verified"
) -> RegistryEntry:
    """建立登記紀錄（只 flush，由呼叫者 commit）"""
    entry = RegistryEntry(name=name, payment_status=payment_status, status=status)
    db.add(entry)
    db.flush()
    return entry


def link_entry(entry_id: str, round_id: str, now: datetime, db: Session) -> bool:
    """
    把登記紀錄掛到回合（參賽者登記時呼叫）

    紀錄回到未完成狀態並改屬於 round_id；上一個回合留下的 completed_at 清空

    返回：
        False 表示紀錄不存在
    """
    result = db.execute(
        update(RegistryEntry)
        .where(RegistryEntry.id == entry_id)
        .values(status=LINKED_STATUS, round_id=round_id, completed_at=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def complete_entry(
    entry_id: str,
    round_id: str,
    payment_status: Optional[str],
    now: datetime,
    db: Session
) -> bool:
    """
    把登記紀錄標記為 completed（冪等）

    規則：
    - status = completed，記錄 round_id 與 completed_at
    - payment_status：參賽者身上有值就沿用，沒有值就保留登記紀錄原本的值
      （絕對不覆寫成預設值）
    - 已經是 completed 的紀錄不再修改（completed_at 維持第一次的時間）
    - 紀錄已改掛到其他回合時不修改

    參數：
        entry_id: 登記紀錄 ID
        round_id: 回合 ID
        payment_status: 參賽者目前的付款狀態（可能為 None）
        now: 時間戳記
        db: SQLAlchemy Session

    返回：
        True 表示這次有修改，False 表示已經完成過、屬於其他回合或紀錄不存在
    """
    values = {
        "status": COMPLETED_STATUS,
        "round_id": round_id,
        "completed_at": now,
        "updated_at": now,
    }
    if payment_status is not None:
        values["payment_status"] = payment_status

    result = db.execute(
        update(RegistryEntry)
        .where(
            RegistryEntry.id == entry_id,
            RegistryEntry.status != COMPLETED_STATUS,
            or_(RegistryEntry.round_id.is_(None), RegistryEntry.round_id == round_id)
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
