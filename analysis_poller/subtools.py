"""Known subtool identifiers and backend status vocabularies."""

from collections.abc import Iterable
from enum import Enum


class RunStatus(str, Enum):
    """Overall backend-reported run status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


class PollingRecommendation(str, Enum):
    """Backend hint for how soon to poll again."""

    AGGRESSIVE = "aggressive"
    MODERATE = "moderate"
    GENTLE = "gentle"
    STOP = "stop"


SUBTOOLS: tuple[str, ...] = (
    "math_correlation",
    "math_risk_metrics",
    "math_performance",
    "math_volatility",
    "math_quality_metrics",
    "math_performance_attribution",
    "optimization_risk_decomposition",
    "optimization_strategy_generation",
    "optimization_implementation",
    "optimization_stress_testing",
    "optimization_esg",
)

_RUN_STATUS_ALIASES = {
    "pending": RunStatus.PENDING,
    "queued": RunStatus.PENDING,
    "running": RunStatus.RUNNING,
    "in_progress": RunStatus.RUNNING,
    "processing": RunStatus.RUNNING,
    "complete": RunStatus.COMPLETE,
    "completed": RunStatus.COMPLETE,
    "done": RunStatus.COMPLETE,
    "failed": RunStatus.FAILED,
    "error": RunStatus.FAILED,
}


def normalize_run_status(raw: object) -> RunStatus:
    """Map a backend status string onto ``RunStatus``; unknown means running."""
    if not isinstance(raw, str):
        return RunStatus.RUNNING
    return _RUN_STATUS_ALIASES.get(raw.strip().lower(), RunStatus.RUNNING)


def normalize_recommendation(raw: object) -> PollingRecommendation | None:
    if not isinstance(raw, str):
        return None
    cleaned = raw.strip().lower()
    for item in PollingRecommendation:
        if item.value == cleaned:
            return item
    return None


def normalize_subtools(names: Iterable[str] | None) -> tuple[str, ...]:
    """Deduplicate and strip subtool names, preserving order."""
    if names is None:
        return SUBTOOLS
    seen: list[str] = []
    for name in names:
        cleaned = str(name).strip()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return tuple(seen)
