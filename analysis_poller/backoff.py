"""Inter-poll delay policy."""

from analysis_poller.config import PollingConfig
from analysis_poller.subtools import PollingRecommendation


class BackoffController:
    """Tracks failure/empty-poll streaks and turns them into the next delay."""

    def __init__(self, config: PollingConfig):
        self._config = config
        self.consecutive_failures = 0
        self.empty_polls = 0

    @property
    def base_delay(self) -> float:
        return max(0.0, float(self._config.poll_interval_seconds))

    def _cap(self, value: float) -> float:
        return min(value, max(self.base_delay, float(self._config.max_backoff_seconds)))

    def record_success(self, has_new_results: bool) -> None:
        self.consecutive_failures = 0
        self.empty_polls = 0 if has_new_results else self.empty_polls + 1

    def record_failure(self) -> int:
        self.consecutive_failures += 1
        return self.consecutive_failures

    def reset(self) -> None:
        self.consecutive_failures = 0
        self.empty_polls = 0

    def failure_delay(self) -> float:
        """Exponential backoff after the current failure streak."""
        exponent = max(0, self.consecutive_failures - 1)
        return self._cap(self.base_delay * (self._config.backoff_factor ** exponent))

    def success_delay(self, recommendation: PollingRecommendation | None = None) -> float:
        """Delay after a successful poll; backend hints win over empty-poll backoff."""
        if recommendation is not None:
            hinted = self._config.recommendation_delays.get(recommendation.value)
            if hinted is not None:
                return max(0.0, float(hinted))
        return self._cap(self.base_delay * (self._config.empty_poll_backoff_factor ** self.empty_polls))
