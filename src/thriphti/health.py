from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from .models import ContentSource, SourceHealth
from .utils import utc_now

CRITICAL_FAILURES = 3
HEALTHY_RATE = 0.8
DEGRADED_RATE = 0.5

HEALTH_STATUSES = ("inactive", "critical", "warning", "healthy", "degraded", "poor")


def apply_attempt(
    health: SourceHealth,
    ok: bool,
    error: str | None = None,
    now: datetime | None = None,
) -> SourceHealth:
    """Return the counters after one fetch attempt; the input is left untouched."""
    total = health.total_attempts + 1
    if ok:
        successful = health.successful_attempts + 1
        failures = 0
        last_error = health.last_error_message
    else:
        successful = health.successful_attempts
        failures = health.consecutive_failures + 1
        last_error = error or "unknown error"
    return replace(
        health,
        total_attempts=total,
        successful_attempts=successful,
        consecutive_failures=failures,
        success_rate=successful / total,
        last_error_message=last_error,
        last_scraped=(now or utc_now()).isoformat(),
    )


def health_status(source: ContentSource) -> str:
    # display threshold only; critical sources are never deactivated automatically
    if not source.active:
        return "inactive"
    health = source.health
    if health.consecutive_failures >= CRITICAL_FAILURES:
        return "critical"
    if health.consecutive_failures > 0:
        return "warning"
    if health.success_rate >= HEALTHY_RATE:
        return "healthy"
    if health.success_rate >= DEGRADED_RATE:
        return "degraded"
    return "poor"


def summarize_health(sources: list[ContentSource]) -> dict[str, int]:
    summary = {"critical": 0, "warning": 0, "healthy": 0, "inactive": 0}
    for source in sources:
        if not source.active:
            summary["inactive"] += 1
        elif source.health.consecutive_failures >= CRITICAL_FAILURES:
            summary["critical"] += 1
        elif source.health.consecutive_failures > 0:
            summary["warning"] += 1
        else:
            summary["healthy"] += 1
    return summary
