"""
Completion Saga：回合完成後的清理流程

觸發：Completion Barrier 的 CAS 贏家（每個回合只有一次）
重試：任何步驟失敗都從頭重跑整個 Saga（forward recovery，不做 rollback）

步驟（依序，每一步都是冪等的，且各自 commit）：
1. ensure_round_completed：確認 Round 已是 COMPLETED（重啟後補跑用）
2. close_registry_entries：外部登記紀錄標記 completed，付款狀態原樣帶過去
3. release_equipment：釋放參照這個回合的球車
4. delete_resource_assignments：刪除平板 / 桿弟的綁定紀錄
5. mark_cleanup_finished：記錄清理完成時間

規則：
- 沒有任何步驟可以假設前一次執行「還沒做過」某件事
- 每一步只 commit 自己的修改，失敗時只 rollback 自己
"""
from datetime import datetime
from typing import Callable, Dict, List, Tuple
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from models import EventLog, Participant, ResourceAssignment, Round, RoundStatus
from core.state_machine import RoundStateMachine
from core.exceptions import (
    InvalidStateTransition,
    RoundNotFound,
    SagaStepFailed,
)
from services import clock_service, equipment_service, registry_service

logger = logging.getLogger(__name__)


def _ensure_round_completed(db: Session, round_id: str, now: datetime) -> int:
    status = RoundStateMachine.current_status(db, round_id)
    if status == RoundStatus.COMPLETED:
        return 0

    if not RoundStateMachine.can_transition(status, RoundStatus.COMPLETED):
        raise InvalidStateTransition(f"Round {round_id} cannot complete from {status}")

    # Saga 被直接呼叫但 Barrier 還沒關：只有全部裝置都完成時 CAS 才會成功
    if not RoundStateMachine.try_complete(db, round_id, now):
        raise InvalidStateTransition(
            f"Round {round_id} still has unfinished devices, cannot complete"
        )
    db.add(EventLog(
        round_id=round_id,
        event_type="ROUND_COMPLETED",
        data={"trigger": "saga"}
    ))
    return 1


def _close_registry_entries(db: Session, round_id: str, now: datetime) -> int:
    participants = db.query(Participant).filter(
        Participant.round_id == round_id,
        Participant.registry_entry_id.isnot(None)
    ).all()

    closed = 0
    for participant in participants:
        if registry_service.complete_entry(
            participant.registry_entry_id,
            round_id,
            participant.payment_status,
            now,
            db
        ):
            closed += 1
    return closed


def _release_equipment(db: Session, round_id: str, now: datetime) -> int:
    return equipment_service.release_leases_for_round(round_id, now, db)


def _delete_resource_assignments(db: Session, round_id: str, now: datetime) -> int:
    return db.query(ResourceAssignment).filter(
        ResourceAssignment.round_id == round_id
    ).delete(synchronize_session=False)


def _mark_cleanup_finished(db: Session, round_id: str, now: datetime) -> int:
    result = db.execute(
        update(Round)
        .where(Round.id == round_id, Round.cleanup_completed_at.is_(None))
        .values(cleanup_completed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        db.add(EventLog(round_id=round_id, event_type="ROUND_CLEANUP_FINISHED", data={}))
    return result.rowcount


class CompletionSaga:
    """回合完成清理流程"""

    STEPS: List[Tuple[str, Callable[[Session, str, datetime], int]]] = [
        ("ensure_round_completed", _ensure_round_completed),
        ("close_registry_entries", _close_registry_entries),
        ("release_equipment", _release_equipment),
        ("delete_resource_assignments", _delete_resource_assignments),
        ("mark_cleanup_finished", _mark_cleanup_finished),
    ]

    @classmethod
    def run(cls, db: Session, round_id: str) -> Dict[str, int]:
        """
        執行（或重新執行）完成清理

        參數：
            db: SQLAlchemy Session
            round_id: Round ID

        返回：
            每個步驟實際變更的筆數，例如：
            {"ensure_round_completed": 0, "close_registry_entries": 3, ...}
            重跑一個已清理完成的回合時全部為 0

        異常：
            RoundNotFound: Round 不存在
            InvalidStateTransition: 還有裝置沒完成（Barrier 未關閉）
            SagaStepFailed: 某個步驟發生暫時性錯誤，重新呼叫 run() 即可
        """
        if not db.query(Round.id).filter(Round.id == round_id).first():
            raise RoundNotFound(round_id)

        now = clock_service.utcnow()
        report: Dict[str, int] = {}

        for name, step in cls.STEPS:
            try:
                report[name] = step(db, round_id, now)
                db.commit()
            except InvalidStateTransition:
                db.rollback()
                raise
            except Exception as e:
                db.rollback()
                logger.error(
                    f"Completion step {name} failed for round {round_id}: {e}",
                    exc_info=True
                )
                raise SagaStepFailed(name, round_id, e) from e

        logger.info(f"Completion saga finished for round {round_id}: {report}")
        return report

    @classmethod
    def resume_pending(cls, db: Session) -> List[str]:
        """
        補跑所有「已完成但清理未結束」的回合

        用途：
            應用程式啟動時呼叫，處理上次執行到一半就中斷的 Saga

        返回：
            成功補跑的 Round ID 列表（失敗的會記錄 log，下次啟動再試）
        """
        pending = [
            row.id for row in db.query(Round.id).filter(
                Round.status == RoundStatus.COMPLETED,
                Round.cleanup_completed_at.is_(None)
            ).all()
        ]

        resumed = []
        for round_id in pending:
            try:
                cls.run(db, round_id)
                resumed.append(round_id)
            except SagaStepFailed as e:
                logger.warning(f"Could not resume completion for round {round_id}: {e}")
        return resumed
