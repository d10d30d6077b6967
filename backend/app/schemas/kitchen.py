"""
Kitchen Queue Schemas
Pydantic models shared by the scheduling services and the kitchen API
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CapacitySnapshot(BaseModel):
    """Current kitchen capacity usage"""
    max_capacity: int
    current_load: int
    available_slots: int
    utilization_percent: int = Field(..., description="current_load / max_capacity, rounded")
    is_full: bool


class PromotedOrder(BaseModel):
    order_id: int
    priority: str
    preparation_start_at: datetime
    expected_finish_at: datetime
    ticket_created: bool


class AdmissionResult(BaseModel):
    """Outcome of one admission pass"""
    promoted: List[PromotedOrder] = Field(default_factory=list)
    skipped_not_due: List[int] = Field(default_factory=list, description="Scheduled orders not yet due")
    kitchen_full: bool = False
    available_slots: int = 0
    message: str = ""

    @property
    def promoted_count(self) -> int:
        return len(self.promoted)


class LateOrder(BaseModel):
    order_id: int
    preparation_start_at: Optional[datetime] = None
    expected_finish_at: datetime
    minutes_late: int


class LateOrdersResponse(BaseModel):
    count: int
    orders: List[LateOrder]


class DelayEstimate(BaseModel):
    delay_minutes: int
    available_slots: int


class SchedulerStatus(BaseModel):
    running: bool
    interval_seconds: int
    started_at: Optional[datetime] = None
    last_tick_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    tick_count: int = 0
    consecutive_failures: int = 0
    last_error: Optional[str] = None


class WorkerHealthState(str, Enum):
    OK = "OK"
    WARNING = "WARNING"
    STOPPED = "STOPPED"


class WorkerHealth(BaseModel):
    status: WorkerHealthState
    running: bool
    interval_seconds: int
    tick_count: int
    last_tick_at: Optional[datetime] = None
    seconds_since_last_tick: Optional[int] = None
    started_at: Optional[datetime] = None
    threshold_seconds: int
    last_error: Optional[str] = None


class TickReport(BaseModel):
    """What a single scheduler tick did"""
    tick_number: int
    promoted: int = 0
    late_orders: int = 0
    ran_delay_prediction: bool = False
    ran_learning: bool = False
    errors: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class IntervalUpdate(BaseModel):
    interval_seconds: int = Field(..., ge=1, le=3600)


class SettingUpdate(BaseModel):
    value: Any


class SettingsResponse(BaseModel):
    settings: Dict[str, Any]


class DurationRecalibration(BaseModel):
    previous_minutes: int
    learned_minutes: Optional[int] = None
    updated: bool = False
    sample_size: int = 0


class PerformanceEvaluation(BaseModel):
    late_orders: int
    in_preparation: int
    late_percent: float
    needs_adjustment: bool


class LoadAnalysis(BaseModel):
    average_minutes: float
    sample_size: int
    trend: str  # increase, decrease, hold


class CapacityRecommendation(BaseModel):
    base_capacity: int
    suggested_capacity: int
    trend: str
    reason: str
    late_percent: float = 0.0
    average_minutes: Optional[float] = None
    sample_size: int = 0
