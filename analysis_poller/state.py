"""Per-run mutable context and the immutable snapshot published to consumers."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from analysis_poller.backoff import BackoffController
from analysis_poller.connection import ConnectionStatus
from analysis_poller.progress import ProgressCalculator
from analysis_poller.results import ResultMergeStore, SubtoolFailure


@dataclass
class RunContext:
    """Everything the poller knows about one run.

    Built fresh on every run change and never reused, so nothing written on
    behalf of an old run can reach the new one.
    """

    run_id: str
    store: ResultMergeStore
    progress: ProgressCalculator
    backoff: BackoffController
    generation: int = 0
    loading_start_time: float | None = None
    loading: bool = True
    has_succeeded: bool = False
    fatal: bool = False
    error: Exception | None = None
    since: str | None = None
    in_flight: bool = False
    cancelled: bool = False
    task: asyncio.Task[None] | None = None
    timers: list[asyncio.TimerHandle] = field(default_factory=list)

    @property
    def error_reason(self) -> str | None:
        if self.error is None:
            return None
        return getattr(self.error, "reason", "") or "unavailable"

    def cancel_timers(self) -> None:
        for handle in self.timers:
            handle.cancel()
        self.timers.clear()


def _noop_retry() -> None:
    return None


@dataclass(frozen=True)
class PollingSnapshot:
    """Read-only view of the poller, safe to hand to any reader."""

    run_id: str | None = None
    results: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    loading: bool = False
    error: Exception | None = None
    error_reason: str | None = None
    progress: int = 0
    pending: frozenset[str] = frozenset()
    failed: Mapping[str, SubtoolFailure] = field(default_factory=lambda: MappingProxyType({}))
    connection_status: ConnectionStatus = ConnectionStatus.IDLE
    loading_start_time: float | None = None
    retry: Callable[[], None] = field(default=_noop_retry, compare=False, repr=False)
