"""
資料模型

所有資料表都掛在 database.Base 之下，主鍵使用字串 UUID（SQLite / PostgreSQL 通用）

擁有關係：
- Round 擁有 DeviceProgress 與 Participant（不會實體刪除，只會 detach）
- ScoreEntry 透過 Participant 屬於 Round，回合完成後保留為唯讀
- EquipmentLease / RegistryEntry / ResourceAssignment 是外部協作者的資料，
  只透過 round_id 參照回合
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RoundStatus(str, enum.Enum):
    OPEN = "open"
    COMPLETED = "completed"


class LeaseStatus(str, enum.Enum):
    IN_USE = "in_use"
    AVAILABLE = "available"


class ResourceType(str, enum.Enum):
    TABLET = "tablet"
    CADDIE = "caddie"


class Round(Base):
    __tablename__ = "rounds"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, nullable=True)
    start_unit = Column(Integer, nullable=False, default=1)
    total_units = Column(Integer, nullable=False, default=18)
    current_unit = Column(Integer, nullable=True)
    status = Column(Enum(RoundStatus), nullable=False, default=RoundStatus.OPEN, index=True)
    created_at = Column(DateTime(timezone=True), default=_now)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    # Saga 全部步驟跑完才會設定；COMPLETED 但此欄為 NULL 表示清理尚未完成
    cleanup_completed_at = Column(DateTime(timezone=True), nullable=True)

    devices = relationship(
        "DeviceProgress",
        back_populates="round",
        order_by="DeviceProgress.position",
    )
    participants = relationship(
        "Participant",
        back_populates="round",
        order_by="Participant.player_order",
    )


class DeviceProgress(Base):
    __tablename__ = "device_progress"
    __table_args__ = (
        UniqueConstraint("round_id", "device_id", name="uq_device_progress_round_device"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    round_id = Column(String(36), ForeignKey("rounds.id"), nullable=False, index=True)
    device_id = Column(String, nullable=False, index=True)
    device_name = Column(String, nullable=True)
    position = Column(Integer, nullable=False, default=0)
    current_unit = Column(Integer, nullable=True)
    finished = Column(Boolean, nullable=False, default=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)

    round = relationship("Round", back_populates="devices")


class Participant(Base):
    __tablename__ = "participants"

    id = Column(String(36), primary_key=True, default=_uuid)
    round_id = Column(String(36), ForeignKey("rounds.id"), nullable=True, index=True)
    device_id = Column(String, nullable=False)
    display_name = Column(String, nullable=False)
    player_order = Column(Integer, nullable=False, default=0)
    handicap_index = Column(Float, nullable=True)
    registry_entry_id = Column(String(36), ForeignKey("registry_entries.id"), nullable=True)
    payment_status = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)

    round = relationship("Round", back_populates="participants")


class ScoreEntry(Base):
    __tablename__ = "score_entries"
    __table_args__ = (
        UniqueConstraint(
            "round_id", "participant_id", "unit", name="uq_score_entry_round_participant_unit"
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    round_id = Column(String(36), ForeignKey("rounds.id"), nullable=False, index=True)
    participant_id = Column(String(36), ForeignKey("participants.id"), nullable=False, index=True)
    unit = Column(Integer, nullable=False)
    value = Column(Integer, nullable=False)
    putts = Column(Integer, nullable=True)
    penalties = Column(Integer, nullable=True)
    fairway_hit = Column(Boolean, nullable=True)
    green_in_regulation = Column(Boolean, nullable=True)
    bunker = Column(Boolean, nullable=True)
    out_of_bounds = Column(Boolean, nullable=True)
    recorded_by = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now)


class RegistryEntry(Base):
    """外部參賽者登記紀錄（報到 / bag drop）"""
    __tablename__ = "registry_entries"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, nullable=True)
    status = Column(String, nullable=False, default="verified")
    payment_status = Column(String, nullable=True)
    round_id = Column(String(36), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=_now)


class EquipmentLease(Base):
    """外部設備（球車）租借"""
    __tablename__ = "equipment_leases"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    status = Column(Enum(LeaseStatus), nullable=False, default=LeaseStatus.AVAILABLE)
    round_id = Column(String(36), nullable=True, index=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    released_at = Column(DateTime(timezone=True), nullable=True)


class ResourceAssignment(Base):
    """顯示用的資源綁定（平板 / 桿弟對回合）"""
    __tablename__ = "resource_assignments"

    id = Column(String(36), primary_key=True, default=_uuid)
    round_id = Column(String(36), nullable=False, index=True)
    resource_type = Column(Enum(ResourceType), nullable=False)
    resource_id = Column(String, nullable=False)
    resource_name = Column(String, nullable=True)
    assigned_at = Column(DateTime(timezone=True), default=_now)


class EventLog(Base):
    __tablename__ = "event_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    round_id = Column(String(36), nullable=True, index=True)
    event_type = Column(String, nullable=False, index=True)
    data = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)
