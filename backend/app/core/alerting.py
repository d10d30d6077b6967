"""In-process operational alerts for the kitchen queue.

Alerts are kept in a bounded buffer (newest last) and mirrored to the
``alerts`` logger. Two producers exist today: the late-order sweep raises a
``warning`` and the scheduler raises a ``critical`` when ticks keep failing.
"""

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional

logger = logging.getLogger("alerts")

ALERT_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "critical": logging.CRITICAL,
}


class AlertManager:
    """Bounded buffer of recent alerts, queryable by minimum severity."""

    def __init__(self, max_buffer: int = 200):
        self._alerts: Deque[Dict] = deque(maxlen=max_buffer)

    def alert(self, level: str, title: str, message: str, source: str = "kitchen") -> Dict:
        if level not in ALERT_LEVELS:
            logger.warning(f"Unknown alert level '{level}', recording as info")
            level = "info"

        entry = {
            "level": level,
            "title": title,
            "message": message,
            "source": source,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self._alerts.append(entry)
        logger.log(ALERT_LEVELS[level], f"[{source}] {title}: {message}")
        return entry

    def get_recent(self, limit: int = 20, level: Optional[str] = None) -> List[Dict]:
        """Newest first; ``level`` keeps alerts at that severity or above."""
        threshold = ALERT_LEVELS.get(level, logging.INFO) if level else logging.NOTSET
        matching = [a for a in reversed(self._alerts) if ALERT_LEVELS[a["level"]] >= threshold]
        return matching[:limit]

    def clear(self):
        self._alerts.clear()


alert_manager = AlertManager()
