"""
Completion Barrier：所有裝置都完成記分，回合才算完成

每台裝置的狀態機：ACTIVE -> FINISHED（單向）

mark_device_finished 流程：
1. 翻轉裝置的 finished 旗標（條件式 UPDATE ... WHERE finished = false）並立即 commit
2. 在新的 transaction 裡重新讀取所有裝置，計算尚未完成的數量
3. 數量為 0 時嘗試 CAS（OPEN -> COMPLETED）
4. 只有 CAS 贏家執行 Completion Saga，輸家只回報 round_completed = True

為什麼第 1 步要先 commit：
    兩台裝置同時完成時，後 commit 的那一方在第 2 步一定看得到先 commit 的翻轉，
    所以「最後一台」不會被漏掉；兩方都看到 0 時由 CAS 決定唯一贏家

消除特殊情況：
    不需要判斷「我是不是最後一台」，任何人都可以嘗試關閉 Barrier，
    CAS 保證只有一次生效
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from models import DeviceProgress, EventLog, Participant, Round, RoundStatus
from core.state_machine import RoundStateMachine
from core.completion_saga import CompletionSaga
from core.exceptions import RoundNotFound, SagaStepFailed, UnknownDevice
from services import clock_service

logger = logging.getLogger(__name__)


@dataclass
class BarrierResult:
    round_completed: bool
    pending_devices: int
    newly_finished: bool
    triggered_completion: bool
    cleanup_pending: bool = False


@dataclass
class DeviceStatus:
    device_id: str
    device_name: Optional[str]
    finished: bool
    finished_at: Optional[datetime]
    current_unit: Optional[int]


@dataclass
class RoundStatusView:
    round_id: str
    status: RoundStatus
    devices: List[DeviceStatus]
    all_finished: bool
    total_devices: int
    finished_devices: int
    locked_participant_ids: List[str] = field(default_factory=list)
    cleanup_pending: bool = False


class CompletionBarrier:
    """回合完成 Barrier"""

    @staticmethod
    def flip_device_finished(db: Session, round_id: str, device_id: str) -> bool:
        """
        把裝置標記為完成（單向，冪等）

        返回：
            True 表示這次呼叫真的翻轉了旗標，False 表示原本就已完成

        異常：
            RoundNotFound: Round 不存在
            UnknownDevice: 裝置沒有登記在這個回合
        """
        device = db.query(DeviceProgress).filter(
            DeviceProgress.round_id == round_id,
            DeviceProgress.device_id == device_id
        ).first()
        if not device:
            if not db.query(Round.id).filter(Round.id == round_id).first():
                raise RoundNotFound(round_id)
            raise UnknownDevice(round_id, device_id)

        now = clock_service.utcnow()
        try:
            result = db.execute(
                update(DeviceProgress)
                .where(DeviceProgress.id == device.id, DeviceProgress.finished == False)  # noqa: E712
                .values(finished=True, finished_at=now)
                .execution_options(synchronize_session=False)
            )
            flipped = result.rowcount == 1
            if flipped:
                db.add(EventLog(
                    round_id=round_id,
                    event_type="DEVICE_FINISHED",
                    data={"device_id": device_id}
                ))
            db.commit()
        except Exception:
            db.rollback()
            raise

        if flipped:
            logger.info(f"Device {device_id} finished scoring in round {round_id}")
        return flipped

    @staticmethod
    def pending_device_count(db: Session, round_id: str) -> int:
        """重新讀取所有裝置，計算尚未完成的數量（不維護計數器）"""
        return db.query(DeviceProgress).filter(
            DeviceProgress.round_id == round_id,
            DeviceProgress.finished == False  # noqa: E712
        ).count()

    @staticmethod
    def try_close(db: Session, round_id: str) -> bool:
        """
        嘗試關閉 Barrier（CAS OPEN -> COMPLETED）並 commit

        返回：
            True 表示這個呼叫者贏得轉換，必須接著執行 CompletionSaga
        """
        try:
            won = RoundStateMachine.try_complete(db, round_id, clock_service.utcnow())
            if won:
                db.add(EventLog(
                    round_id=round_id,
                    event_type="ROUND_COMPLETED",
                    data={"trigger": "barrier"}
                ))
            db.commit()
        except Exception:
            db.rollback()
            raise
        return won

    @staticmethod
    def mark_device_finished(db: Session, round_id: str, device_id: str) -> BarrierResult:
        """
        裝置宣告完成記分

        參數：
            db: SQLAlchemy Session
            round_id: Round ID
            device_id: 裝置 ID

        返回：
            BarrierResult
            - round_completed: 回合目前是否已完成
            - pending_devices: 尚未完成的裝置數
            - newly_finished: 這次呼叫是否真的翻轉了旗標
            - triggered_completion: 這次呼叫是否贏得 CAS 並執行了清理
            - cleanup_pending: 回合已完成但清理尚未跑完（需要重試）

        異常：
            RoundNotFound: Round 不存在
            UnknownDevice: 裝置沒有登記在這個回合

        注意：
            - 重複呼叫不會重新執行清理
            - 若上次翻轉後在 CAS 前中斷，重複呼叫會補做 CAS（CAS 本身保證只生效一次）
        """
        # 1. 翻轉旗標（獨立 commit）
        newly_finished = CompletionBarrier.flip_device_finished(db, round_id, device_id)

        # 2. 新的 transaction 重新計算
        pending = CompletionBarrier.pending_device_count(db, round_id)

        # 3. 全部完成 -> 嘗試 CAS
        triggered = False
        cleanup_failed = False
        if pending == 0 and RoundStateMachine.current_status(db, round_id) == RoundStatus.OPEN:
            triggered = CompletionBarrier.try_close(db, round_id)

        # 4. CAS 贏家執行清理；失敗時回合仍是 COMPLETED，清理留給重試
        if triggered:
            logger.info(f"Device {device_id} closed the barrier for round {round_id}")
            try:
                CompletionSaga.run(db, round_id)
            except SagaStepFailed as e:
                cleanup_failed = True
                logger.error(f"Completion cleanup for round {round_id} needs retry: {e}")

        round_obj = db.query(Round).filter(Round.id == round_id).one()
        db.refresh(round_obj)
        round_completed = round_obj.status == RoundStatus.COMPLETED

        if not newly_finished:
            logger.info(
                f"Device {device_id} already finished in round {round_id} "
                f"(completed={round_completed}, pending={pending})"
            )

        return BarrierResult(
            round_completed=round_completed,
            pending_devices=pending,
            newly_finished=newly_finished,
            triggered_completion=triggered,
            cleanup_pending=cleanup_failed or (
                round_completed and round_obj.cleanup_completed_at is None
            )
        )

    @staticmethod
    def get_round_status(db: Session, round_id: str) -> RoundStatusView:
        """
        取得回合內每台裝置的完成狀態

        返回：
            RoundStatusView
            - devices: 每台裝置的 finished / finished_at / current_unit
            - all_finished: 至少有一台裝置且全部完成
            - locked_participant_ids: 裝置已完成的參賽者（前端應停用輸入）

        異常：
            RoundNotFound: Round 不存在
        """
        round_obj = db.query(Round).filter(Round.id == round_id).first()
        if not round_obj:
            raise RoundNotFound(round_id)

        devices = db.query(DeviceProgress).filter(
            DeviceProgress.round_id == round_id
        ).order_by(DeviceProgress.position).all()

        finished_ids = [d.device_id for d in devices if d.finished]
        locked = []
        if finished_ids:
            locked = [
                row.id for row in db.query(Participant.id).filter(
                    Participant.round_id == round_id,
                    Participant.device_id.in_(finished_ids)
                ).order_by(Participant.player_order).all()
            ]

        return RoundStatusView(
            round_id=round_id,
            status=round_obj.status,
            devices=[
                DeviceStatus(
                    device_id=d.device_id,
                    device_name=d.device_name,
                    finished=bool(d.finished),
                    finished_at=d.finished_at,
                    current_unit=d.current_unit
                )
                for d in devices
            ],
            all_finished=len(devices) > 0 and len(finished_ids) == len(devices),
            total_devices=len(devices),
            finished_devices=len(finished_ids),
            locked_participant_ids=locked,
            cleanup_pending=(
                round_obj.status == RoundStatus.COMPLETED
                and round_obj.cleanup_completed_at is None
            )
        )

    @staticmethod
    def retry_completion(db: Session, round_id: str) -> dict:
        """
        重新執行完成清理（冪等）

        用途：
            SagaStepFailed 之後由呼叫者重試

        異常：
            RoundNotFound / InvalidStateTransition（Barrier 還沒關閉）/ SagaStepFailed
        """
        return CompletionSaga.run(db, round_id)
