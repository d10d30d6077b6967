"""Prometheus-compatible metrics for application monitoring."""

import time
import logging
from typing import Dict, List

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)


class MetricsCollector:
    """Collects HTTP and kitchen scheduler metrics in Prometheus exposition format."""

    def __init__(self):
        self.request_count: Dict[str, int] = {}
        self.request_duration: Dict[str, List[float]] = {}
        self.error_count: Dict[int, int] = {}
        self.active_requests: int = 0
        # Kitchen scheduler
        self.scheduler_ticks: int = 0
        self.scheduler_tick_failures: int = 0
        self.tick_durations: List[float] = []
        self.orders_admitted: int = 0
        self.capacity_max: int = 0
        self.capacity_load: int = 0
        self.late_orders: int = 0

    def record_request(self, method: str, path: str, status: int, duration: float):
        # Normalize path to avoid cardinality explosion
        normalized = self._normalize_path(path)
        key = f"{method} {normalized}"
        self.request_count[key] = self.request_count.get(key, 0) + 1
        if key not in self.request_duration:
            self.request_duration[key] = []
        durations = self.request_duration[key]
        durations.append(duration)
        if len(durations) > 1000:
            self.request_duration[key] = durations[-1000:]
        if status >= 400:
            self.error_count[status] = self.error_count.get(status, 0) + 1

    def record_tick(self, duration: float, ok: bool):
        self.scheduler_ticks += 1
        if not ok:
            self.scheduler_tick_failures += 1
        self.tick_durations.append(duration)
        if len(self.tick_durations) > 1000:
            self.tick_durations = self.tick_durations[-1000:]

    def record_admissions(self, count: int):
        self.orders_admitted += count

    def set_capacity(self, max_capacity: int, load: int):
        self.capacity_max = max_capacity
        self.capacity_load = load

    def set_late_orders(self, count: int):
        self.late_orders = count

    @staticmethod
    def _normalize_path(path: str) -> str:
        """Replace numeric IDs with :id to limit cardinality."""
        parts = path.split("/")
        return "/".join(":id" if p.isdigit() else p for p in parts)

    def get_prometheus_metrics(self) -> str:
        lines: List[str] = []
        lines.append("# HELP http_requests_total Total HTTP requests")
        lines.append("# TYPE http_requests_total counter")
        for key, count in sorted(self.request_count.items()):
            method, path = key.split(" ", 1)
            lines.append(f'http_requests_total{{method="{method}",path="{path}"}} {count}')

        lines.append("# HELP http_errors_total Total HTTP errors by status code")
        lines.append("# TYPE http_errors_total counter")
        for code, count in sorted(self.error_count.items()):
            lines.append(f'http_errors_total{{status="{code}"}} {count}')

        lines.append("# HELP http_active_requests Current active requests")
        lines.append("# TYPE http_active_requests gauge")
        lines.append(f"http_active_requests {self.active_requests}")

        lines.append("# HELP kitchen_scheduler_ticks_total Scheduler ticks run")
        lines.append("# TYPE kitchen_scheduler_ticks_total counter")
        lines.append(f"kitchen_scheduler_ticks_total {self.scheduler_ticks}")

        lines.append("# HELP kitchen_scheduler_tick_failures_total Scheduler ticks with at least one failed step")
        lines.append("# TYPE kitchen_scheduler_tick_failures_total counter")
        lines.append(f"kitchen_scheduler_tick_failures_total {self.scheduler_tick_failures}")

        lines.append("# HELP kitchen_scheduler_tick_duration_seconds Scheduler tick duration")
        lines.append("# TYPE kitchen_scheduler_tick_duration_seconds summary")
        if self.tick_durations:
            ordered = sorted(self.tick_durations)
            avg = sum(ordered) / len(ordered)
            p99 = ordered[int(len(ordered) * 0.99)] if len(ordered) > 1 else ordered[0]
            lines.append(f'kitchen_scheduler_tick_duration_seconds{{quantile="0.99"}} {p99:.4f}')
            lines.append(f'kitchen_scheduler_tick_duration_seconds{{quantile="0.5"}} {avg:.4f}')

        lines.append("# HELP kitchen_orders_admitted_total Orders promoted to preparation")
        lines.append("# TYPE kitchen_orders_admitted_total counter")
        lines.append(f"kitchen_orders_admitted_total {self.orders_admitted}")

        lines.append("# HELP kitchen_capacity_max Current preparation capacity")
        lines.append("# TYPE kitchen_capacity_max gauge")
        lines.append(f"kitchen_capacity_max {self.capacity_max}")

        lines.append("# HELP kitchen_capacity_load Orders currently in preparation")
        lines.append("# TYPE kitchen_capacity_load gauge")
        lines.append(f"kitchen_capacity_load {self.capacity_load}")

        lines.append("# HELP kitchen_late_orders Orders past their expected finish")
        lines.append("# TYPE kitchen_late_orders gauge")
        lines.append(f"kitchen_late_orders {self.late_orders}")

        return "\n".join(lines) + "\n"


metrics = MetricsCollector()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware that records request metrics."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        metrics.active_requests += 1
        start = time.time()
        try:
            response = await call_next(request)
            duration = time.time() - start
            metrics.record_request(
                request.method,
                request.url.path,
                response.status_code,
                duration,
            )
            return response
        except Exception:
            duration = time.time() - start
            metrics.record_request(request.method, request.url.path, 500, duration)
            raise
        finally:
            metrics.active_requests -= 1
