# Services module

from app.services.admission_service import (
    AdmissionPassError,
    AdmissionService,
    on_order_accepted,
)
from app.services.capacity_service import KitchenCapacityService
from app.services.notification_service import KitchenEventPublisher, kitchen_events
from app.services.scheduler_service import KitchenScheduler
from app.services.settings_service import SystemSettingsStore, UnknownSettingError
from app.services.ticket_service import KitchenTicketService
from app.services.timing_service import TimingService

# Adaptive tuning
from app.services.tuning_service import (
    CapacityAdjuster,
    DelayPredictor,
    DurationLearner,
)

__all__ = [
    "AdmissionPassError",
    "AdmissionService",
    "on_order_accepted",
    "KitchenCapacityService",
    "KitchenEventPublisher",
    "kitchen_events",
    "KitchenScheduler",
    "SystemSettingsStore",
    "UnknownSettingError",
    "KitchenTicketService",
    "TimingService",
    "CapacityAdjuster",
    "DelayPredictor",
    "DurationLearner",
]
