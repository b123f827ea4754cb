"""
Rate limit monitoring
Keeps recent limiter decisions in memory for the admin endpoints
"""
import logging
from collections import Counter, deque
from typing import Deque, List, Optional

from core.config import settings
from core.utils import utcnow

logger = logging.getLogger(__name__)


class RateLimitMonitor:
    """Bounded buffer of limiter events plus running counters"""

    def __init__(self, max_events: Optional[int] = None):
        self.max_events = max_events or settings.RATE_LIMIT_EVENTS_MAX
        self._events: Deque[dict] = deque(maxlen=self.max_events)
        self._reset_stats()

    def _reset_stats(self):
        self.total = 0
        self.blocked = 0
        self.by_endpoint: Counter = Counter()
        self.by_ip: Counter = Counter()
        self.blocked_by_endpoint: Counter = Counter()
        self.blocked_by_ip: Counter = Counter()

    def record_event(
        self,
        ip: str,
        endpoint: str,
        method: str,
        blocked: bool,
        user_id: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> dict:
        event = {
            "timestamp": utcnow().isoformat(),
            "ip": ip,
            "user_id": user_id,
            "endpoint": endpoint,
            "method": method,
            "user_agent": user_agent,
            "blocked": blocked,
        }
        self._events.append(event)

        self.total += 1
        self.by_endpoint[endpoint] += 1
        self.by_ip[ip] += 1
        if blocked:
            self.blocked += 1
            self.blocked_by_endpoint[endpoint] += 1
            self.blocked_by_ip[ip] += 1
            logger.warning(f"Rate limit exceeded: {method} {endpoint} from {ip}")
        return event

    def get_stats(self) -> dict:
        return {
            "total_requests": self.total,
            "blocked_requests": self.blocked,
            "requests_by_endpoint": dict(self.by_endpoint),
            "requests_by_ip": dict(self.by_ip),
            "top_blocked_ips": [
                {"ip": ip, "count": count} for ip, count in self.blocked_by_ip.most_common(10)
            ],
            "top_blocked_endpoints": [
                {"endpoint": endpoint, "count": count}
                for endpoint, count in self.blocked_by_endpoint.most_common(10)
            ],
        }

    def get_events(self, limit: int = 100) -> List[dict]:
        events = list(self._events)
        events.reverse()
        return events[:limit]

    def clear_events(self):
        self._events.clear()
        self._reset_stats()
        logger.info("Rate limit events cleared")


rate_limit_monitor = RateLimitMonitor()
