"""Shared rate limiter for the health and kitchen routes."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings

# Health probes are polled by monitors; evaluate-now is a manual action
HEALTH_RATE = "60/minute"
EVALUATE_RATE = "30/minute"

limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
