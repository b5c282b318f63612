"""Backend connectivity classification."""

from enum import Enum


class ConnectionStatus(str, Enum):
    """Connectivity/health of the results backend for the active run."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    WAKING = "waking"
    ERROR = "error"


def classify_connection(
    elapsed_seconds: float,
    has_succeeded: bool,
    consecutive_failures: int,
    fatal: bool,
    *,
    cold_start_threshold_seconds: float,
    max_consecutive_failures: int,
) -> ConnectionStatus:
    """Classify backend health from elapsed time and fetch history.

    ``error`` wins over everything and only clears through a manual retry,
    which resets the inputs. Any success means ``connected`` no matter how
    long it took. With no success yet, waiting past the cold-start threshold
    reads as a backend still waking up rather than a broken one.
    """
    if fatal:
        return ConnectionStatus.ERROR
    if consecutive_failures >= max(1, max_consecutive_failures):
        return ConnectionStatus.ERROR
    if has_succeeded:
        return ConnectionStatus.CONNECTED
    if elapsed_seconds > cold_start_threshold_seconds:
        return ConnectionStatus.WAKING
    return ConnectionStatus.CONNECTING
