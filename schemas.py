"""
API Request / Response schemas（Pydantic）
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import LeaseStatus, ResourceType, RoundStatus


# ============ Round ============

class DeviceSpec(BaseModel):
    device_id: str
    device_name: Optional[str] = None


class RoundCreate(BaseModel):
    name: Optional[str] = None
    start_unit: int = 1
    total_units: Optional[int] = None
    devices: List[DeviceSpec] = Field(default_factory=list)


class RoundResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: Optional[str] = None
    start_unit: int
    total_units: int
    current_unit: Optional[int] = None
    status: RoundStatus
    sequence: List[int]
    device_ids: List[str]
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cleanup_completed_at: Optional[datetime] = None


class DeviceAttach(BaseModel):
    device_id: str
    device_name: Optional[str] = None


class DeviceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    device_id: str
    device_name: Optional[str] = None
    position: int
    current_unit: Optional[int] = None
    finished: bool
    finished_at: Optional[datetime] = None


class CurrentUnitUpdate(BaseModel):
    unit: int


class CurrentUnitResponse(BaseModel):
    current_unit: int
    current_index: int
    sequence: List[int]


# ============ Participant ============

class ParticipantCreate(BaseModel):
    device_id: str
    display_name: str
    handicap_index: Optional[float] = None
    registry_entry_id: Optional[str] = None
    payment_status: Optional[str] = None
    player_order: Optional[int] = None


class ParticipantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    round_id: Optional[str] = None
    device_id: str
    display_name: str
    player_order: int
    handicap_index: Optional[float] = None
    registry_entry_id: Optional[str] = None
    payment_status: Optional[str] = None


# ============ Score ============

class ScoreMetrics(BaseModel):
    putts: Optional[int] = None
    penalties: Optional[int] = None
    fairway_hit: Optional[bool] = None
    green_in_regulation: Optional[bool] = None
    bunker: Optional[bool] = None
    out_of_bounds: Optional[bool] = None


class ScoreSubmit(BaseModel):
    participant_id: str
    unit: int
    value: int = Field(ge=0)
    recorded_by: str
    metrics: Optional[ScoreMetrics] = None


class ScoreEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    round_id: str
    participant_id: str
    unit: int
    value: int
    putts: Optional[int] = None
    penalties: Optional[int] = None
    fairway_hit: Optional[bool] = None
    green_in_regulation: Optional[bool] = None
    bunker: Optional[bool] = None
    out_of_bounds: Optional[bool] = None
    recorded_by: str
    updated_at: Optional[datetime] = None


class ScoreUpsertResponse(BaseModel):
    entry_id: str
    created: bool


class RangeTotalResponse(BaseModel):
    total: int
    entries: int
    has_data: bool


class SubtotalsResponse(BaseModel):
    front: RangeTotalResponse
    back: RangeTotalResponse
    total: RangeTotalResponse


class HoleCompletionResponse(BaseModel):
    unit: int
    all_completed: bool
    completed_count: int
    total_participants: int


# ============ Barrier ============

class FinishResponse(BaseModel):
    round_completed: bool
    pending_devices: int
    newly_finished: bool
    cleanup_pending: bool


class DeviceStatusResponse(BaseModel):
    device_id: str
    device_name: Optional[str] = None
    finished: bool
    finished_at: Optional[datetime] = None
    current_unit: Optional[int] = None


class RoundStatusResponse(BaseModel):
    round_id: str
    status: RoundStatus
    devices: List[DeviceStatusResponse]
    all_finished: bool
    total_devices: int
    finished_devices: int
    locked_participant_ids: List[str]
    cleanup_pending: bool


class CompletionRetryResponse(BaseModel):
    steps: Dict[str, int]


# ============ Ranking / History ============

class StandingResponse(BaseModel):
    participant_id: str
    display_name: str
    total: int
    units_completed: int
    position: int
    # 洞號 -> 桿數
    unit_scores: Dict[int, int] = Field(default_factory=dict)


class DeviceHistoryEntry(BaseModel):
    round_id: str
    name: Optional[str] = None
    completed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    total_strokes: int
    holes_completed: int


# ============ External collaborators ============

class RegistryEntryCreate(BaseModel):
    name: Optional[str] = None
    payment_status: Optional[str] = None


class RegistryEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: Optional[str] = None
    status: str
    payment_status: Optional[str] = None
    round_id: Optional[str] = None
    completed_at: Optional[datetime] = None


class EquipmentLeaseCreate(BaseModel):
    name: str


class EquipmentLeaseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    status: LeaseStatus
    round_id: Optional[str] = None
    assigned_at: Optional[datetime] = None
    released_at: Optional[datetime] = None


class ResourceAssignmentCreate(BaseModel):
    resource_type: ResourceType
    resource_id: str
    resource_name: Optional[str] = None


class ResourceAssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    round_id: str
    resource_type: ResourceType
    resource_id: str
    resource_name: Optional[str] = None


class ActionResponse(BaseModel):
    status: str
