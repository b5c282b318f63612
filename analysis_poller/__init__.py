"""Analysis poller - tracks multi-subtool portfolio analysis runs."""

__version__ = "0.1.0"

from analysis_poller.client import AnalysisClient, PollResponse
from analysis_poller.config import Config
from analysis_poller.connection import ConnectionStatus
from analysis_poller.poller import AnalysisPoller
from analysis_poller.state import PollingSnapshot

__all__ = [
    "AnalysisClient",
    "AnalysisPoller",
    "Config",
    "ConnectionStatus",
    "PollResponse",
    "PollingSnapshot",
    "__version__",
]
