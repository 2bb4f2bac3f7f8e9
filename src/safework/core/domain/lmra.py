"""Last-Minute Risk Analysis (LMRA) session documents.

Models:
- GeoPoint, LocationVerification, WeatherConditions: Site context
- EnvironmentalCheck, PersonnelCheck, EquipmentCheck, HazardReview: Stage inputs
- Photo, Signature, Annotation: Documentation items
- StageResult: Outcome of a stage validation
- SyncState: Offline reconciliation bookkeeping
- LMRASession: Complete field execution record

Every list item exposes `item_key`, the identity used when merging
offline array appends (append-if-absent, never duplicate).
"""

from datetime import datetime
from typing import Optional

from pydantic import Field

from .base import DomainModel, new_id
from .enums import (
    CheckStatus,
    CompetencyStatus,
    EquipmentCondition,
    LMRAAssessment,
    LMRAStage,
    LocationVerificationStatus,
    PhotoCategory,
)


class GeoPoint(DomainModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class LocationVerification(DomainModel):
    """Captured site location; `accuracy` is the GPS error radius in metres."""

    coordinates: GeoPoint
    accuracy: float = Field(ge=0, le=1000)
    verification_status: LocationVerificationStatus
    manual_override_reason: Optional[str] = None
    captured_at: datetime


class WeatherConditions(DomainModel):
    temperature: float = Field(ge=-50, le=60)
    humidity: float = Field(ge=0, le=100)
    wind_speed: float = Field(ge=0, le=200)
    visibility: float = Field(ge=0, le=50)
    conditions: str
    description: Optional[str] = None
    api_source: str
    fetched_at: datetime


class EnvironmentalCheck(DomainModel):
    """Environmental check item such as gas levels, noise or lighting."""

    id: str = Field(default_factory=new_id)
    check_type: str
    required: bool = True
    status: CheckStatus
    measurement: Optional[str] = None
    notes: Optional[str] = None
    checked_at: Optional[datetime] = None

    @property
    def item_key(self) -> str:
        return self.id


class CompetencyValidation(DomainModel):
    competency_name: str
    status: CompetencyStatus
    expiry_date: Optional[datetime] = None
    certificate_number: Optional[str] = None


class PersonnelCheck(DomainModel):
    """Check-in and competency verification for one team member."""

    user_id: str
    display_name: Optional[str] = None
    checked_in: bool = False
    check_in_time: Optional[datetime] = None
    competencies_verified: bool = False
    competencies: list[CompetencyValidation] = Field(default_factory=list)
    notes: Optional[str] = None

    @property
    def item_key(self) -> str:
        return self.user_id


class EquipmentCheck(DomainModel):
    id: str = Field(default_factory=new_id)
    equipment_name: str
    equipment_id: Optional[str] = None
    required: bool = True
    available: bool
    condition: EquipmentCondition
    inspection_date: Optional[datetime] = None
    notes: Optional[str] = None
    checked_by: Optional[str] = None

    @property
    def item_key(self) -> str:
        return self.id


class HazardReview(DomainModel):
    """On-site acknowledgement of a hazard identified in the TRA."""

    hazard_id: str
    acknowledged: bool
    controls_in_place: bool = True
    notes: Optional[str] = None

    @property
    def item_key(self) -> str:
        return self.hazard_id


class Photo(DomainModel):
    id: str = Field(default_factory=new_id)
    url: str
    category: PhotoCategory = PhotoCategory.WORK_AREA
    caption: Optional[str] = None
    location: Optional[GeoPoint] = None
    taken_at: datetime
    taken_by: str

    @property
    def item_key(self) -> str:
        return self.id


class Signature(DomainModel):
    id: str = Field(default_factory=new_id)
    signed_by: str
    signature_ref: str
    signed_at: datetime

    @property
    def item_key(self) -> str:
        return self.id


class Annotation(DomainModel):
    """Append-only audit annotation; allowed after completion."""

    id: str = Field(default_factory=new_id)
    author_id: str
    kind: str = "note"
    note: str
    created_at: datetime

    @property
    def item_key(self) -> str:
        return self.id


class StageResult(DomainModel):
    passed: bool
    completed_at: datetime
    warnings: list[str] = Field(default_factory=list)


class SyncState(DomainModel):
    """Offline reconciliation bookkeeping carried with the session."""

    applied_mutation_ids: list[str] = Field(default_factory=list)
    field_sequences: dict[str, int] = Field(default_factory=dict)
    last_sequence: int = -1


class LMRASession(DomainModel):
    """LMRA execution record referencing an active TRA."""

    id: str = Field(default_factory=new_id)
    tra_id: str
    organization_id: str
    project_id: Optional[str] = None

    performed_by: str
    team_members: list[str]
    tra_hazard_ids: list[str] = Field(default_factory=list)

    stage: LMRAStage = LMRAStage.LOCATION_PENDING
    stage_results: dict[LMRAStage, StageResult] = Field(default_factory=dict)

    location: Optional[LocationVerification] = None
    weather: Optional[WeatherConditions] = None
    environmental_checks: list[EnvironmentalCheck] = Field(default_factory=list)
    personnel_checks: list[PersonnelCheck] = Field(default_factory=list)
    equipment_checks: list[EquipmentCheck] = Field(default_factory=list)
    hazard_reviews: list[HazardReview] = Field(default_factory=list)
    additional_hazards: Optional[str] = None

    overall_assessment: Optional[LMRAAssessment] = None
    stop_work_reason: Optional[str] = None
    stop_work_at: Optional[datetime] = None
    stop_work_triggered_by: Optional[str] = None
    stop_work_acknowledged_by: Optional[str] = None

    photos: list[Photo] = Field(default_factory=list)
    comments: Optional[str] = None
    signatures: list[Signature] = Field(default_factory=list)
    annotations: list[Annotation] = Field(default_factory=list)

    started_at: datetime
    completed_at: Optional[datetime] = None
    sync: SyncState = Field(default_factory=SyncState)

    @property
    def is_completed(self) -> bool:
        return self.stage == LMRAStage.COMPLETED

    @property
    def is_stop_work(self) -> bool:
        return self.overall_assessment == LMRAAssessment.STOP_WORK

    @property
    def duration_seconds(self) -> int | None:
        if self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds())
