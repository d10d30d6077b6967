"""FastAPI application entry point for the kitchen queue engine."""

import asyncio
import json
import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import PlainTextResponse

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.core.rate_limit import HEALTH_RATE, limiter
from app.core.metrics import MetricsMiddleware, metrics
from app.core.alerting import alert_manager

from app.api.routes import api_router
from app.core.config import settings
from app.db.session import engine, SessionLocal
from app.db.base import Base, utc_now
from app.schemas.kitchen import WorkerHealth, WorkerHealthState
from app.services.notification_service import kitchen_events
from app.services.scheduler_service import KitchenScheduler
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record):
        return json.dumps({
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        })


def _configure_logging():
    """Human-readable logs in debug, JSON on stdout otherwise."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))
    root_logger.handlers.clear()

    if settings.debug:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)


_configure_logging()
logger = logging.getLogger(__name__)
request_logger = logging.getLogger("requests")


class KitchenDisplayHub:
    """WebSocket fan-out to the kitchen displays listening on /ws/kitchen."""

    MAX_CONNECTIONS = 200

    def __init__(self):
        self.connections: List[WebSocket] = []

    @property
    def connection_count(self) -> int:
        return len(self.connections)

    async def connect(self, websocket: WebSocket) -> bool:
        if len(self.connections) >= self.MAX_CONNECTIONS:
            logger.warning("Kitchen display rejected: too many open connections")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return False
        await websocket.accept()
        self.connections.append(websocket)
        logger.debug(f"Kitchen display connected ({len(self.connections)} open)")
        return True

    def disconnect(self, websocket: WebSocket):
        if websocket in self.connections:
            self.connections.remove(websocket)
            logger.debug(f"Kitchen display disconnected ({len(self.connections)} open)")

    async def broadcast(self, message: Dict[str, Any]):
        stale = []
        for connection in list(self.connections):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.debug(f"Dropping kitchen display after failed send: {e}")
                stale.append(connection)
        for connection in stale:
            self.disconnect(connection)


display_hub = KitchenDisplayHub()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs API requests with status and timing."""

    QUIET_PATHS = ("/health", "/health/ready", "/health/worker", "/metrics", "/")

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.QUIET_PATHS:
            return await call_next(request)

        started = time.time()
        client_ip = request.client.host if request.client else "unknown"
        try:
            response = await call_next(request)
        except Exception as e:
            request_logger.error(
                f"{request.method} {request.url.path} raised {e!r} after "
                f"{time.time() - started:.3f}s (client {client_ip})"
            )
            raise

        request_logger.log(
            logging.WARNING if response.status_code >= 400 else logging.INFO,
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"in {time.time() - started:.3f}s (client {client_ip})",
        )
        return response


def _forward_kitchen_event(message: Dict[str, Any]):
    """Relay engine events to the kitchen displays."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        # Published outside the event loop (scripts, sync tests): nobody is listening
        return
    loop.create_task(display_hub.broadcast(message))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Kitchen Queue Engine")

    # SQLite deployments create their tables here; server databases use Alembic
    if settings.database_url.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created (SQLite mode)")

    kitchen_events.subscribe(_forward_kitchen_event)

    kitchen_scheduler = KitchenScheduler(SessionLocal, publisher=kitchen_events)
    app.state.kitchen_scheduler = kitchen_scheduler
    if settings.kitchen_scheduler_enabled:
        await kitchen_scheduler.start()
    else:
        logger.info("Kitchen scheduler disabled by configuration")

    yield

    kitchen_scheduler.stop()
    kitchen_events.unsubscribe(_forward_kitchen_event)
    logger.info("Shutting down Kitchen Queue Engine")


app = FastAPI(
    title="Kitchen Queue Engine",
    description="Kitchen order admission and scheduling",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# CORS middleware - added last so it runs first (Starlette LIFO order)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "Origin", "X-Requested-With", "X-Request-ID"],
    max_age=600,
)

app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
@limiter.limit(HEALTH_RATE)
def health_check(request: Request):
    """Basic liveness check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


@app.get("/health/ready")
@limiter.limit(HEALTH_RATE)
def readiness_check(request: Request):
    """Ready when the database answers and the scheduler is ticking (or disabled)."""
    checks = {}

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except SQLAlchemyError as e:
        logger.error(f"Database readiness check failed: {e}")
        checks["database"] = "unhealthy"
    finally:
        db.close()

    worker = request.app.state.kitchen_scheduler.health()
    if not settings.kitchen_scheduler_enabled:
        checks["scheduler"] = "disabled"
    elif worker.status == WorkerHealthState.OK:
        checks["scheduler"] = "healthy"
    else:
        checks["scheduler"] = worker.status.value.lower()

    ready = checks["database"] == "healthy" and checks["scheduler"] in ("healthy", "disabled")
    return {
        "status": "ready" if ready else "degraded",
        "version": "1.0.0",
        "timestamp": utc_now().isoformat(),
        "checks": checks,
        "kitchen_displays": display_hub.connection_count,
    }


@app.get("/health/worker", response_model=WorkerHealth)
@limiter.limit(HEALTH_RATE)
def worker_health(request: Request):
    """Kitchen scheduler health: OK, WARNING when ticks are overdue, STOPPED."""
    return request.app.state.kitchen_scheduler.health()


@app.get("/")
def root():
    return {
        "message": "Kitchen Queue Engine API",
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/metrics")
@limiter.limit("30/minute")
def prometheus_metrics(request: Request):
    """Prometheus-compatible metrics endpoint."""
    return PlainTextResponse(metrics.get_prometheus_metrics(), media_type="text/plain")


@app.get("/api/v1/alerts")
def get_alerts(level: Optional[str] = None, limit: int = 20):
    """Recent kitchen alerts, newest first."""
    return {"alerts": alert_manager.get_recent(limit=limit, level=level)}


@app.websocket("/ws/kitchen")
async def websocket_kitchen(websocket: WebSocket):
    """Realtime kitchen events: order state changes, capacity, late orders."""
    if not await display_hub.connect(websocket):
        return

    try:
        while True:
            if await websocket.receive_text() == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        display_hub.disconnect(websocket)
    except Exception as e:
        logger.error(f"Kitchen display socket error: {e}", exc_info=True)
        display_hub.disconnect(websocket)
