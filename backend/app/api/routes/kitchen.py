"""Kitchen queue routes - capacity, admission, late orders and scheduler control."""

import logging

from fastapi import APIRouter, HTTPException, Request

from app.core.rate_limit import EVALUATE_RATE, limiter
from app.db.session import DbSession
from app.schemas.kitchen import (
    AdmissionResult,
    CapacitySnapshot,
    DelayEstimate,
    IntervalUpdate,
    LateOrdersResponse,
    SchedulerStatus,
    SettingsResponse,
    SettingUpdate,
)
from app.services.admission_service import AdmissionPassError, AdmissionService
from app.services.capacity_service import KitchenCapacityService
from app.services.scheduler_service import KitchenScheduler
from app.services.settings_service import (
    TICK_INTERVAL_SECONDS,
    SystemSettingsStore,
    UnknownSettingError,
)
from app.services.tuning_service import DelayPredictor

logger = logging.getLogger(__name__)

router = APIRouter()


def _scheduler(request: Request) -> KitchenScheduler:
    scheduler = getattr(request.app.state, "kitchen_scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Kitchen scheduler not initialised")
    return scheduler


@router.get("/capacity", response_model=CapacitySnapshot)
@limiter.limit("60/minute")
async def get_capacity(request: Request, db: DbSession):
    """Current kitchen capacity usage."""
    return KitchenCapacityService(db).snapshot()


@router.post("/evaluate", response_model=AdmissionResult)
@limiter.limit(EVALUATE_RATE)
async def evaluate_queue(request: Request, db: DbSession):
    """Run an admission pass now instead of waiting for the next tick."""
    try:
        return AdmissionService(db).run_pass()
    except AdmissionPassError as e:
        logger.error(f"Manual admission pass failed: {e}")
        raise HTTPException(status_code=503, detail="Admission pass failed, try again")


@router.get("/late-orders", response_model=LateOrdersResponse)
@limiter.limit("60/minute")
async def get_late_orders(request: Request, db: DbSession):
    """Orders in preparation past their expected finish."""
    orders = AdmissionService(db).find_late_orders()
    return LateOrdersResponse(count=len(orders), orders=orders)


@router.get("/delay-estimate", response_model=DelayEstimate)
@limiter.limit("60/minute")
async def get_delay_estimate(request: Request, db: DbSession):
    """Expected wait before a new ASAP order starts preparation."""
    predictor = DelayPredictor(db)
    return DelayEstimate(
        delay_minutes=predictor.estimate_for_new_order(),
        available_slots=predictor.capacity.available_slots(),
    )


@router.get("/scheduler/status", response_model=SchedulerStatus)
@limiter.limit("60/minute")
async def get_scheduler_status(request: Request):
    return _scheduler(request).status()


@router.put("/scheduler/interval", response_model=SchedulerStatus)
@limiter.limit("30/minute")
async def update_scheduler_interval(request: Request, data: IntervalUpdate, db: DbSession):
    """Persist a new tick interval and apply it to the running scheduler."""
    scheduler = _scheduler(request)
    SystemSettingsStore(db).set_value(TICK_INTERVAL_SECONDS, data.interval_seconds)
    await scheduler.update_interval(data.interval_seconds)
    return scheduler.status()


@router.get("/settings", response_model=SettingsResponse)
@limiter.limit("60/minute")
async def get_kitchen_settings(request: Request, db: DbSession):
    """Effective value of every runtime kitchen setting."""
    return SettingsResponse(settings=SystemSettingsStore(db).all())


@router.put("/settings/{key}", response_model=SettingsResponse)
@limiter.limit("30/minute")
async def update_kitchen_setting(request: Request, key: str, data: SettingUpdate, db: DbSession):
    """Update one runtime setting. Takes effect on the next scheduler tick."""
    store = SystemSettingsStore(db)
    try:
        store.set_value(key, data.value)
    except UnknownSettingError:
        raise HTTPException(status_code=404, detail=f"Unknown setting '{key}'")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if key == TICK_INTERVAL_SECONDS:
        await _scheduler(request).update_interval(store.get_int(TICK_INTERVAL_SECONDS))

    return SettingsResponse(settings=store.all())
