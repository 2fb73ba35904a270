"""
Round Manager：管理 Round 的生命週期與名單

職責：
1. 建立 Round（含裝置名單）
2. 加入裝置、登記參賽者
3. 更新目前洞號（進度顯示）
4. 查詢 Round 資訊

原則：
- 單一職責：只管 Round 與名單，「完成回合」交給 CompletionBarrier
- 名單在回合開始後視為固定（中途換裝置不在範圍內）
- 資料結構優先：先檢查資料是否符合要求，再執行操作
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from models import DeviceProgress, EventLog, Participant, Round, RoundStatus
from core.locks import with_round_lock
from core.exceptions import (
    InvalidConfiguration,
    InvalidUnit,
    RoundClosed,
    RoundNotFound,
    UnknownDevice,
)
from services import clock_service, registry_service
from services.hole_sequence_service import position_index, sequence
from database import get_settings, transactional

logger = logging.getLogger(__name__)


@dataclass
class UnitProgress:
    current_unit: int
    current_index: int
    sequence: List[int]


class RoundManager:
    """Round 生命週期管理器"""

    @staticmethod
    @transactional
    def create_round(
        db: Session,
        start_unit: int = 1,
        total_units: Optional[int] = None,
        name: Optional[str] = None,
        devices: Iterable[Tuple[str, Optional[str]]] = ()
    ) -> Round:
        """
        建立新回合

        流程：
        1. 驗證洞序設定（start_unit / total_units）
        2. 建立 Round（狀態 OPEN）
        3. 依序建立 DeviceProgress
        4. 記錄事件

        參數：
            db: SQLAlchemy Session
            start_unit: 開球洞
            total_units: 總洞數（預設取 settings.default_total_units）
            name: 回合名稱（flight 名稱）
            devices: (device_id, device_name) 列表，順序即名單順序

        返回：
            Round

        異常：
            InvalidConfiguration: 洞序設定不合法、超過上限，或裝置重複
        """
        settings = get_settings()
        if total_units is None:
            total_units = settings.default_total_units
        if total_units > settings.max_total_units:
            raise InvalidConfiguration(
                f"total_units must be <= {settings.max_total_units}, got {total_units}"
            )
        # 1. 驗證洞序（不合法會直接拋出 InvalidConfiguration）
        sequence(start_unit, total_units)

        devices = list(devices)
        device_ids = [device_id for device_id, _ in devices]
        if len(set(device_ids)) != len(device_ids):
            raise InvalidConfiguration(f"Duplicate device ids in roster: {device_ids}")

        # 2. 建立 Round
        round_obj = Round(
            name=name,
            start_unit=start_unit,
            total_units=total_units,
            current_unit=start_unit,
            status=RoundStatus.OPEN,
            created_at=clock_service.utcnow()
        )
        db.add(round_obj)
        db.flush()  # 取得 round_obj.id

        # 3. 建立裝置名單
        for position, (device_id, device_name) in enumerate(devices):
            db.add(DeviceProgress(
                round_id=round_obj.id,
                device_id=device_id,
                device_name=device_name,
                position=position,
                current_unit=start_unit,
                finished=False
            ))

        # 4. 記錄事件
        db.add(EventLog(
            round_id=round_obj.id,
            event_type="ROUND_CREATED",
            data={"start_unit": start_unit, "total_units": total_units, "devices": device_ids}
        ))

        logger.info(
            f"Created round {round_obj.id} (start={start_unit}, total={total_units}) "
            f"with {len(devices)} devices"
        )
        return round_obj

    @staticmethod
    @transactional
    def attach_device(
        db: Session,
        round_id: str,
        device_id: str,
        device_name: Optional[str] = None
    ) -> Tuple[DeviceProgress, bool]:
        """
        把裝置加入回合（冪等：重複加入回傳既有紀錄）

        返回：
            (DeviceProgress, created_new) tuple

        異常：
            RoundNotFound: Round 不存在
            RoundClosed: Round 已完成
        """
        round_obj = with_round_lock(round_id, db).first()
        if not round_obj:
            raise RoundNotFound(round_id)

        existing = db.query(DeviceProgress).filter(
            DeviceProgress.round_id == round_id,
            DeviceProgress.device_id == device_id
        ).first()
        if existing:
            return existing, False

        if round_obj.status != RoundStatus.OPEN:
            raise RoundClosed(round_id)

        position = db.query(DeviceProgress).filter(
            DeviceProgress.round_id == round_id
        ).count()
        device = DeviceProgress(
            round_id=round_id,
            device_id=device_id,
            device_name=device_name,
            position=position,
            current_unit=round_obj.start_unit,
            finished=False
        )
        db.add(device)
        db.add(EventLog(
            round_id=round_id,
            event_type="DEVICE_ATTACHED",
            data={"device_id": device_id}
        ))
        db.flush()

        logger.info(f"Device {device_id} attached to round {round_id} at position {position}")
        return device, True

    @staticmethod
    @transactional
    def register_participant(
        db: Session,
        round_id: str,
        device_id: str,
        display_name: str,
        handicap_index: Optional[float] = None,
        registry_entry_id: Optional[str] = None,
        payment_status: Optional[str] = None,
        player_order: Optional[int] = None
    ) -> Participant:
        """
        登記參賽者，並指定負責記分的裝置（之後不可更換）

        異常：
            RoundNotFound: Round 不存在
            RoundClosed: Round 已完成
            UnknownDevice: 裝置沒有登記在這個回合
            InvalidConfiguration: 指定的登記紀錄不存在
        """
        round_obj = with_round_lock(round_id, db).first()
        if not round_obj:
            raise RoundNotFound(round_id)
        if round_obj.status != RoundStatus.OPEN:
            raise RoundClosed(round_id)

        device = db.query(DeviceProgress).filter(
            DeviceProgress.round_id == round_id,
            DeviceProgress.device_id == device_id
        ).first()
        if not device:
            raise UnknownDevice(round_id, device_id)

        # 登記紀錄改掛到這個回合（上一個回合的完成狀態不再適用）
        if registry_entry_id and not registry_service.link_entry(
            registry_entry_id, round_id, clock_service.utcnow(), db
        ):
            raise InvalidConfiguration(f"Registry entry {registry_entry_id} not found")

        if player_order is None:
            player_order = db.query(Participant).filter(
                Participant.round_id == round_id
            ).count() + 1

        participant = Participant(
            round_id=round_id,
            device_id=device_id,
            display_name=display_name,
            player_order=player_order,
            handicap_index=handicap_index,
            registry_entry_id=registry_entry_id,
            payment_status=payment_status
        )
        db.add(participant)
        db.flush()

        logger.info(
            f"Participant {participant.id} ({display_name}) registered in round {round_id} "
            f"on device {device_id}"
        )
        return participant

    @staticmethod
    @transactional
    def update_current_unit(db: Session, round_id: str, device_id: str, unit: int) -> UnitProgress:
        """
        更新裝置與回合的目前洞號

        返回：
            UnitProgress（目前洞號、在洞序中的位置、完整洞序）

        異常：
            RoundNotFound / RoundClosed / UnknownDevice / InvalidUnit
        """
        round_obj = with_round_lock(round_id, db).first()
        if not round_obj:
            raise RoundNotFound(round_id)
        if round_obj.status != RoundStatus.OPEN:
            raise RoundClosed(round_id)

        device = db.query(DeviceProgress).filter(
            DeviceProgress.round_id == round_id,
            DeviceProgress.device_id == device_id
        ).first()
        if not device:
            raise UnknownDevice(round_id, device_id)

        holes = sequence(round_obj.start_unit, round_obj.total_units)
        if unit not in holes:
            raise InvalidUnit(unit, round_obj.total_units)

        device.current_unit = unit
        round_obj.current_unit = unit

        return UnitProgress(
            current_unit=unit,
            current_index=position_index(round_obj.start_unit, round_obj.total_units, unit),
            sequence=holes
        )

    @staticmethod
    def get_round_by_id(db: Session, round_id: str) -> Round:
        """
        透過 ID 取得 Round

        異常：
            RoundNotFound: Round 不存在
        """
        round_obj = db.query(Round).filter(Round.id == round_id).first()
        if not round_obj:
            raise RoundNotFound(round_id)
        return round_obj

    @staticmethod
    def get_participant_ids_by_device(db: Session, round_id: str) -> dict:
        """device_id -> [participant_id, ...]"""
        mapping: dict = {}
        participants = db.query(Participant).filter(
            Participant.round_id == round_id
        ).order_by(Participant.player_order).all()
        for participant in participants:
            mapping.setdefault(participant.device_id, []).append(participant.id)
        return mapping
