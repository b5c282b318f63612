"""First-write-wins store for resolved subtool payloads."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from analysis_poller.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SubtoolFailure:
    """A subtool the backend reported as failed."""

    name: str
    message: str
    first_seen: float
    abandoned: bool = False


class ResultMergeStore:
    """Canonical results for one run.

    Every write swaps in freshly built immutable containers, so a reference
    obtained from ``results``/``pending``/``failed`` never changes afterwards.
    A subtool moves from pending to resolved at most once and never back.
    """

    def __init__(self, expected: Iterable[str]):
        self._expected: tuple[str, ...] = tuple(expected)
        self._results: Mapping[str, Any] = MappingProxyType({})
        self._resolved_at: Mapping[str, float] = MappingProxyType({})
        self._failed: Mapping[str, SubtoolFailure] = MappingProxyType({})
        self._pending: frozenset[str] = frozenset(self._expected)

    @property
    def expected(self) -> tuple[str, ...]:
        return self._expected

    @property
    def results(self) -> Mapping[str, Any]:
        return self._results

    @property
    def pending(self) -> frozenset[str]:
        return self._pending

    @property
    def failed(self) -> Mapping[str, SubtoolFailure]:
        return self._failed

    @property
    def resolved_at(self) -> Mapping[str, float]:
        return self._resolved_at

    @property
    def total(self) -> int:
        """Progress denominator: expected subtools minus abandoned failures."""
        abandoned = sum(1 for item in self._failed.values() if item.abandoned)
        return len(self._expected) - abandoned

    def merge(self, name: str, payload: Any, now: float = 0.0) -> bool:
        """Record ``payload`` for ``name`` unless it is already resolved.

        Returns True only when the subtool transitioned to resolved.
        """
        return bool(self.merge_many({name: payload}, now=now))

    def merge_many(self, payloads: Mapping[str, Any], now: float = 0.0) -> list[str]:
        """Merge a batch of payloads in one swap; returns newly resolved names."""
        accepted: dict[str, Any] = {}
        for name, payload in payloads.items():
            if payload is None or name in self._results or name in accepted:
                continue
            if name not in self._expected:
                log.debug("ignoring unknown subtool", subtool=name)
                continue
            accepted[name] = payload
        if not accepted:
            return []

        results = dict(self._results)
        results.update(accepted)
        resolved_at = dict(self._resolved_at)
        resolved_at.update({name: now for name in accepted})
        failed = {name: item for name, item in self._failed.items() if name not in accepted}

        self._results = MappingProxyType(results)
        self._resolved_at = MappingProxyType(resolved_at)
        self._failed = MappingProxyType(failed)
        self._pending = self._pending - frozenset(accepted)
        return list(accepted)

    def mark_failed(self, name: str, message: str, now: float) -> bool:
        """Flag a still-unresolved subtool as failed. Keeps the first report."""
        if name not in self._expected or name in self._results or name in self._failed:
            return False
        failed = dict(self._failed)
        failed[name] = SubtoolFailure(name=name, message=message or "subtool failed", first_seen=now)
        self._failed = MappingProxyType(failed)
        return True

    def abandon_expired(self, now: float, grace_seconds: float) -> list[str]:
        """Stop waiting on failures older than ``grace_seconds``."""
        expired = [
            name
            for name, item in self._failed.items()
            if not item.abandoned and now - item.first_seen >= grace_seconds
        ]
        if expired:
            self._abandon(expired)
        return expired

    def abandon_pending(self, message: str, now: float) -> list[str]:
        """Give up on everything still pending, e.g. once the run has completed."""
        leftover = [name for name in self._expected if name in self._pending]
        if not leftover:
            return []
        failed = dict(self._failed)
        for name in leftover:
            if name not in failed:
                failed[name] = SubtoolFailure(name=name, message=message, first_seen=now)
        self._failed = MappingProxyType(failed)
        self._abandon(leftover)
        return leftover

    def _abandon(self, names: list[str]) -> None:
        failed = dict(self._failed)
        for name in names:
            item = failed[name]
            failed[name] = SubtoolFailure(
                name=item.name,
                message=item.message,
                first_seen=item.first_seen,
                abandoned=True,
            )
        self._failed = MappingProxyType(failed)
        self._pending = self._pending - frozenset(names)
