"""Custom exceptions for the analysis poller."""


class AnalysisPollerError(Exception):
    """Base exception for the analysis poller."""

    pass


class ConfigurationError(AnalysisPollerError):
    """Configuration-related errors."""

    pass


class BackendError(AnalysisPollerError):
    """Results endpoint errors (connectivity, non-2xx status)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(BackendError):
    """Results endpoint returned a body that is not a results object."""

    pass


class PollingStoppedError(AnalysisPollerError):
    """Polling for a run ended in the ``error`` state.

    ``reason`` is one of ``unavailable``, ``failed`` or ``timeout``.
    """

    reason = ""

    def __init__(self, run_id: str, message: str):
        super().__init__(message)
        self.run_id = run_id


class BackendUnavailableError(PollingStoppedError):
    """Too many consecutive fetch failures."""

    reason = "unavailable"

    def __init__(self, run_id: str, failures: int, last_error: Exception | None = None):
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(run_id, f"Backend unavailable after {failures} failed polls{detail}")
        self.failures = failures
        self.last_error = last_error


class AnalysisRunFailedError(PollingStoppedError):
    """Backend reported the run as failed."""

    reason = "failed"

    def __init__(self, run_id: str, detail: str = ""):
        message = f"Analysis run {run_id} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(run_id, message)


class PollingTimeoutError(PollingStoppedError):
    """Run did not complete within the maximum polling duration."""

    reason = "timeout"

    def __init__(self, run_id: str, max_duration_seconds: float):
        super().__init__(
            run_id,
            f"Analysis run {run_id} did not complete within {max_duration_seconds:g}s",
        )
        self.max_duration_seconds = max_duration_seconds
