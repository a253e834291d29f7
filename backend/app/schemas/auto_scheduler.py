"""
Auto Scheduler schemas.
"""

from pydantic import BaseModel
from typing import List, Optional, Dict, Any
from datetime import datetime

from backend.app.services.driver_scoring import ScoringWeights


class SchedulerSettingsUpdate(BaseModel):
    """Toggle AI-enhanced logging and/or periodic auto-scheduling."""
    ai_enhanced: Optional[bool] = None
    auto_schedule_enabled: Optional[bool] = None


class UnscheduledTripResponse(BaseModel):
    id: int
    patient_id: Optional[int]
    patient_name: Optional[str]
    mobility_needs: Optional[str]
    pickup_address: str
    dropoff_address: str
    scheduled_pickup_time: datetime
    status: str


class DriverOverviewResponse(BaseModel):
    id: int
    full_name: str
    phone: Optional[str]
    has_location: bool
    workload: int
    total_trips: int
    on_time_rate: float
    cancellation_rate: float
    experience_months: Optional[int]
    is_top_performer: bool


class AssignmentResultResponse(BaseModel):
    success: bool
    trip_id: Optional[int]
    driver_id: Optional[int] = None
    driver_name: Optional[str] = None
    message: str

    class Config:
        from_attributes = True


class BatchRunResponse(BaseModel):
    batch_timestamp: Optional[datetime]
    assigned: int
    failed: int
    results: List[AssignmentResultResponse]


class UndoRequest(BaseModel):
    """Defaults to the last batch when batch_timestamp is omitted."""
    batch_timestamp: Optional[datetime] = None


class UndoResponse(BaseModel):
    batch_timestamp: datetime
    reverted_count: int
    message: str


class DriverScoreResponse(BaseModel):
    driver_id: int
    driver_name: str
    workload: int
    workload_score: float
    distance_score: float
    experience_score: float
    performance_score: float
    availability_score: float
    total_score: float
    distance_miles: Optional[float] = None

    class Config:
        from_attributes = True


class SchedulerStateResponse(BaseModel):
    ai_enhanced: bool
    auto_schedule_enabled: bool
    batch_in_progress: bool
    weights: ScoringWeights
    last_batch_timestamp: Optional[datetime]
    can_undo: bool
    refreshed_at: Optional[datetime]
    drivers: List[DriverOverviewResponse]
    unscheduled_trips: List[UnscheduledTripResponse]
    last_results: List[AssignmentResultResponse]


class AuditEntryResponse(BaseModel):
    id: int
    actor_id: Optional[int]
    action: str
    trip_id: Optional[int]
    meta_data: Optional[Dict[str, Any]]
    timestamp: datetime

    class Config:
        from_attributes = True
