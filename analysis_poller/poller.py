"""Polling engine for multi-subtool analysis runs.

``AnalysisPoller`` owns the fetch loop for exactly one active run. Each run
gets a fresh ``RunContext``; every fetch is tagged with the context (and retry
generation) it was issued for, and a response that comes back after the run
changed, was stopped, or was retried is dropped without touching state.

The loop is an asyncio task that awaits ``tick()`` and sleeps for the delay it
returns. ``tick()`` can also be driven by hand, which is how the tests step
through a run without real timers.
"""

from __future__ import annotations

import asyncio
import functools
import time
from collections.abc import Callable, Iterable

from analysis_poller.backoff import BackoffController
from analysis_poller.client import AnalysisClient, PollResponse
from analysis_poller.config import PollingConfig, get_config
from analysis_poller.connection import classify_connection
from analysis_poller.exceptions import (
    AnalysisRunFailedError,
    BackendUnavailableError,
    PollingStoppedError,
    PollingTimeoutError,
)
from analysis_poller.logging import get_logger
from analysis_poller.progress import ProgressCalculator
from analysis_poller.results import ResultMergeStore
from analysis_poller.state import PollingSnapshot, RunContext
from analysis_poller.subtools import PollingRecommendation, RunStatus, normalize_subtools

log = get_logger(__name__)

SnapshotListener = Callable[[PollingSnapshot], None]

# Slack added to timer deadlines so the clock reads past the threshold when they fire.
_TIMER_SLACK_SECONDS = 0.05


class AnalysisPoller:
    """Polls one analysis run at a time and publishes immutable snapshots."""

    def __init__(
        self,
        client: AnalysisClient,
        *,
        config: PollingConfig | None = None,
        subtools: Iterable[str] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._client = client
        self._config = config or get_config().polling
        self._subtools = normalize_subtools(subtools)
        self._clock = clock
        self._context: RunContext | None = None
        self._generation = 0
        self._listeners: list[SnapshotListener] = []
        self._autostart = False

    @property
    def run_id(self) -> str | None:
        return self._context.run_id if self._context else None

    @property
    def snapshot(self) -> PollingSnapshot:
        """Current state; connection status is evaluated against the clock now."""
        return self._build_snapshot()

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register for published snapshots. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def activate(self, run_id: str) -> None:
        """Make ``run_id`` the active run with fresh state, without polling yet.

        Re-activating the run that is already active keeps its state.
        """
        cleaned = (run_id or "").strip()
        if not cleaned:
            raise ValueError("run_id must be a non-empty string")

        if self._context is not None and self._context.run_id == cleaned:
            log.debug("analysis run already active", run_id=cleaned)
            return

        self._teardown()
        store = ResultMergeStore(self._subtools)
        self._generation += 1
        self._context = RunContext(
            run_id=cleaned,
            generation=self._generation,
            store=store,
            progress=ProgressCalculator(),
            backoff=BackoffController(self._config),
            loading_start_time=self._clock(),
            loading=bool(store.pending),
        )
        log.info("analysis run activated", run_id=cleaned, subtools=len(store.expected))
        self._publish()

    def set_run(self, run_id: str | None) -> None:
        """Switch to ``run_id`` and start polling it; ``None`` detaches."""
        if not run_id or not run_id.strip():
            self.detach()
            return
        self.activate(run_id)
        self.start()

    def start(self) -> None:
        """Start the background loop for the active run. Needs a running event loop."""
        ctx = self._context
        if ctx is None:
            raise RuntimeError("No active analysis run to poll")
        self._autostart = True
        if not ctx.loading or (ctx.task is not None and not ctx.task.done()):
            return
        self._launch(ctx)

    def stop(self) -> None:
        """Stop polling immediately; in-flight results are discarded.

        A later ``retry()`` resumes the background loop if one was started.
        """
        ctx = self._context
        if ctx is None:
            return
        self._halt(ctx)
        if ctx.loading:
            ctx.loading = False
            log.info("analysis polling stopped", run_id=ctx.run_id)
        self._publish()

    def detach(self) -> None:
        """Drop the active run entirely."""
        self._autostart = False
        self._teardown()
        self._context = None
        self._publish()

    async def close(self) -> None:
        """Detach and wait for the loop task to unwind."""
        task = self._context.task if self._context else None
        self.detach()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    def retry(self) -> None:
        """Resume a stopped or failed run, keeping every resolved subtool.

        Clears the error, the failure streak and the success flag, and resets
        the loading start time so cold-start detection starts over. Without a
        background loop (manual ``tick()`` use) the run is left loading for the
        caller to drive.
        """
        self._retry_run(self._context)

    def _retry_run(self, ctx: RunContext | None) -> None:
        if ctx is None or ctx is not self._context or ctx.cancelled:
            return
        if ctx.loading or not ctx.store.pending:
            return
        self._halt(ctx)
        ctx.error = None
        ctx.fatal = False
        ctx.has_succeeded = False
        ctx.backoff.reset()
        ctx.loading_start_time = self._clock()
        ctx.loading = True
        log.info(
            "analysis polling retried",
            run_id=ctx.run_id,
            resolved=len(ctx.store.results),
            pending=len(ctx.store.pending),
        )
        self._publish()
        if self._autostart:
            self._launch(ctx)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def tick(self) -> float | None:
        """Run one poll cycle. Returns the next delay, or None when nothing follows."""
        ctx = self._context
        if ctx is None:
            return None
        return await self._tick(ctx)

    async def _tick(self, ctx: RunContext) -> float | None:
        if ctx.cancelled or not ctx.loading:
            return None
        if ctx.in_flight:
            log.debug("poll skipped, fetch already in flight", run_id=ctx.run_id)
            return None

        if self._elapsed(ctx) >= self._config.max_duration_seconds:
            self._fail(ctx, PollingTimeoutError(ctx.run_id, self._config.max_duration_seconds))
            return None

        generation = ctx.generation
        ctx.in_flight = True
        try:
            response = await self._client.fetch_results(ctx.run_id, ctx.since)
        except Exception as e:
            if self._is_stale(ctx, generation):
                log.debug("discarding failure for superseded poll", run_id=ctx.run_id)
                return None
            ctx.in_flight = False
            return self._handle_failure(ctx, e)
        finally:
            if not self._is_stale(ctx, generation):
                ctx.in_flight = False

        if self._is_stale(ctx, generation):
            log.debug("discarding results for superseded poll", run_id=ctx.run_id)
            return None
        return await self._handle_response(ctx, response, generation)

    def _handle_failure(self, ctx: RunContext, error: Exception) -> float | None:
        failures = ctx.backoff.record_failure()
        log.warning(
            "results poll failed",
            run_id=ctx.run_id,
            consecutive_failures=failures,
            error=str(error),
        )
        if failures >= self._config.max_consecutive_failures:
            self._fail(ctx, BackendUnavailableError(ctx.run_id, failures, error))
            return None
        self._publish()
        return ctx.backoff.failure_delay()

    async def _handle_response(
        self, ctx: RunContext, response: PollResponse, generation: int
    ) -> float | None:
        ctx.has_succeeded = True
        has_new = self._apply(ctx, response)
        ctx.backoff.record_success(has_new)

        if response.status is RunStatus.FAILED:
            self._fail(ctx, AnalysisRunFailedError(ctx.run_id, response.error))
            return None

        finished = (
            response.status is RunStatus.COMPLETE
            or response.recommendation is PollingRecommendation.STOP
        )
        if finished and ctx.store.pending:
            await self._final_check(ctx, generation)
            if self._is_stale(ctx, generation):
                return None
            leftover = ctx.store.abandon_pending("not reported by completed run", self._clock())
            if leftover:
                log.warning("run completed without subtools", run_id=ctx.run_id, subtools=leftover)
                ctx.progress.update(ctx.store.total, 0)

        if finished or not ctx.store.pending:
            self._complete(ctx)
            return None

        self._publish()
        return ctx.backoff.success_delay(response.recommendation)

    async def _final_check(self, ctx: RunContext, generation: int) -> None:
        """One more fetch once the backend says it is done, to catch stragglers."""
        ctx.in_flight = True
        try:
            response = await self._client.fetch_results(ctx.run_id, ctx.since)
        except Exception as e:
            log.warning("final results check failed", run_id=ctx.run_id, error=str(e))
            return
        finally:
            if not self._is_stale(ctx, generation):
                ctx.in_flight = False
        if not self._is_stale(ctx, generation):
            self._apply(ctx, response)

    def _apply(self, ctx: RunContext, response: PollResponse) -> bool:
        now = self._clock()
        store = ctx.store
        if response.timestamp:
            ctx.since = response.timestamp

        merged = store.merge_many(response.results, now=now)
        if merged:
            log.info(
                "subtool results merged",
                run_id=ctx.run_id,
                subtools=merged,
                pending=len(store.pending),
            )
        for name, message in response.failures.items():
            if store.mark_failed(name, message, now):
                log.warning("subtool reported failure", run_id=ctx.run_id, subtool=name, error=message)
        abandoned = store.abandon_expired(now, self._config.subtool_failure_grace_seconds)
        if abandoned:
            log.warning("giving up on failed subtools", run_id=ctx.run_id, subtools=abandoned)
        ctx.progress.update(store.total, len(store.pending))
        return bool(merged)

    # ------------------------------------------------------------------
    # Terminal states
    # ------------------------------------------------------------------

    def _complete(self, ctx: RunContext) -> None:
        ctx.loading = False
        ctx.cancel_timers()
        log.info(
            "analysis run complete",
            run_id=ctx.run_id,
            resolved=len(ctx.store.results),
            failed=len(ctx.store.failed),
        )
        self._publish()

    def _fail(self, ctx: RunContext, error: PollingStoppedError) -> None:
        ctx.error = error
        ctx.loading = False
        ctx.fatal = not isinstance(error, BackendUnavailableError)
        ctx.cancel_timers()
        log.error("analysis polling stopped", run_id=ctx.run_id, reason=error.reason, error=str(error))
        self._publish()

    def _on_timeout(self, ctx: RunContext) -> None:
        if ctx is not self._context or ctx.cancelled or not ctx.loading:
            return
        self._halt(ctx)
        self._fail(ctx, PollingTimeoutError(ctx.run_id, self._config.max_duration_seconds))

    def _on_cold_start_check(self, ctx: RunContext) -> None:
        if ctx is self._context and not ctx.cancelled:
            self._publish()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _launch(self, ctx: RunContext) -> None:
        loop = asyncio.get_running_loop()
        elapsed = self._elapsed(ctx)
        cold_start_in = self._config.cold_start_threshold_seconds - elapsed
        if not ctx.has_succeeded and cold_start_in >= 0:
            ctx.timers.append(
                loop.call_later(cold_start_in + _TIMER_SLACK_SECONDS, self._on_cold_start_check, ctx)
            )
        deadline_in = max(0.0, self._config.max_duration_seconds - elapsed)
        ctx.timers.append(loop.call_later(deadline_in + _TIMER_SLACK_SECONDS, self._on_timeout, ctx))
        ctx.task = asyncio.create_task(self._run_loop(ctx))

    async def _run_loop(self, ctx: RunContext) -> None:
        while True:
            delay = await self._tick(ctx)
            if delay is None or ctx.cancelled:
                return
            await asyncio.sleep(delay)

    def _halt(self, ctx: RunContext) -> None:
        """Cancel timers and the loop task, and orphan any fetch in flight."""
        ctx.cancel_timers()
        if ctx.task is not None and not ctx.task.done():
            ctx.task.cancel()
        ctx.task = None
        self._generation += 1
        ctx.generation = self._generation
        ctx.in_flight = False

    def _teardown(self) -> None:
        ctx = self._context
        if ctx is None:
            return
        ctx.cancelled = True
        self._halt(ctx)
        log.debug("analysis run released", run_id=ctx.run_id)

    def _is_stale(self, ctx: RunContext, generation: int) -> bool:
        return ctx is not self._context or ctx.cancelled or ctx.generation != generation

    def _elapsed(self, ctx: RunContext) -> float:
        if ctx.loading_start_time is None:
            return 0.0
        return max(0.0, self._clock() - ctx.loading_start_time)

    def _build_snapshot(self) -> PollingSnapshot:
        ctx = self._context
        if ctx is None:
            return PollingSnapshot()
        store = ctx.store
        status = classify_connection(
            self._elapsed(ctx),
            ctx.has_succeeded,
            ctx.backoff.consecutive_failures,
            ctx.fatal,
            cold_start_threshold_seconds=self._config.cold_start_threshold_seconds,
            max_consecutive_failures=self._config.max_consecutive_failures,
        )
        return PollingSnapshot(
            run_id=ctx.run_id,
            results=store.results,
            loading=ctx.loading,
            error=ctx.error,
            error_reason=ctx.error_reason,
            progress=ctx.progress.value,
            pending=store.pending,
            failed=store.failed,
            connection_status=status,
            loading_start_time=ctx.loading_start_time,
            retry=functools.partial(self._retry_run, ctx),
        )

    def _publish(self) -> None:
        snapshot = self._build_snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                log.error("snapshot listener failed", run_id=snapshot.run_id, error=str(e))
