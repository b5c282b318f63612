import json

import httpx
import pytest

from analysis_poller.client import AnalysisClient, parse_poll_response, snake_to_camel
from analysis_poller.config import Config
from analysis_poller.exceptions import BackendError, ConfigurationError, MalformedResponseError
from analysis_poller.subtools import PollingRecommendation, RunStatus


class _FakeClient:
    def __init__(self, response: httpx.Response | None = None, error: Exception | None = None):
        self._response = response
        self._error = error
        self.gets: list[dict] = []

    async def get(self, url: str, **kwargs):
        self.gets.append({"url": url, **kwargs})
        if self._error is not None:
            raise self._error
        return self._response

    async def aclose(self) -> None:
        return None


def _response(status_code: int = 200, **kwargs) -> httpx.Response:
    request = httpx.Request("GET", "https://api.example.com/session/run-1/results")
    return httpx.Response(status_code, request=request, **kwargs)


def test_snake_to_camel_handles_nested_keys_and_digits():
    data = {
        "historical_var_95_daily_pct": 1.2,
        "top_holdings": [{"ticker_symbol": "O", "weight_pct": 0.1}],
    }

    assert snake_to_camel(data) == {
        "historicalVar95DailyPct": 1.2,
        "topHoldings": [{"tickerSymbol": "O", "weightPct": 0.1}],
    }


def test_parse_poll_response_normalizes_entry_forms():
    body = {
        "status": "running",
        "timestamp": "2026-10-19T10:00:00Z",
        "metadata": {"pollingRecommendation": "moderate"},
        "results": {
            "math_volatility": {"status": "ready", "result": json.dumps({"annual_vol": 0.2})},
            "math_correlation": {"status": "ready", "result": {"avg_corr": 0.4}},
            "math_performance": {"total_return": 0.07},
            "math_risk_metrics": {"status": "pending"},
            "optimization_esg": {"status": "failed", "error": "no ESG coverage"},
            "math_quality_metrics": {"status": "ready", "result": "{not json"},
        },
    }

    response = parse_poll_response(body)

    assert response.status is RunStatus.RUNNING
    assert response.timestamp == "2026-10-19T10:00:00Z"
    assert response.recommendation is PollingRecommendation.MODERATE
    assert response.results == {
        "math_volatility": {"annualVol": 0.2},
        "math_correlation": {"avgCorr": 0.4},
        "math_performance": {"totalReturn": 0.07},
    }
    assert response.failures == {"optimization_esg": "no ESG coverage"}


def test_parse_poll_response_merges_empty_ready_results():
    body = {
        "results": {
            "math_volatility": {"status": "ready", "result": {}},
            "math_correlation": {"status": "ready", "result": []},
            "math_performance": {"status": "ready", "result": ""},
            "math_risk_metrics": {"status": "ready", "result": None},
        }
    }

    response = parse_poll_response(body)

    assert response.results == {"math_volatility": {}, "math_correlation": []}
    assert response.failures == {}


def test_parse_poll_response_maps_status_aliases():
    assert parse_poll_response({"status": "completed"}).status is RunStatus.COMPLETE
    assert parse_poll_response({"status": "error", "error": "boom"}).status is RunStatus.FAILED
    assert parse_poll_response({}).status is RunStatus.RUNNING


def test_parse_poll_response_rejects_non_objects():
    with pytest.raises(MalformedResponseError):
        parse_poll_response(["not", "an", "object"])
    with pytest.raises(MalformedResponseError):
        parse_poll_response({"results": ["bad"]})


@pytest.mark.asyncio
async def test_fetch_results_passes_since_cursor():
    client = AnalysisClient("https://api.example.com/", auth_token="secret")
    fake = _FakeClient(_response(json={"results": {"math_volatility": {"vol": 1}}}))
    client._client = fake

    response = await client.fetch_results("run-1", since="2026-10-19T10:00:00Z")

    assert fake.gets[0]["url"] == "https://api.example.com/session/run-1/results"
    assert fake.gets[0]["params"] == {"since": "2026-10-19T10:00:00Z"}
    assert response.results == {"math_volatility": {"vol": 1}}


@pytest.mark.asyncio
async def test_fetch_results_wraps_http_status_errors():
    client = AnalysisClient("https://api.example.com")
    client._client = _FakeClient(_response(503, text="unavailable"))

    with pytest.raises(BackendError) as excinfo:
        await client.fetch_results("run-1")

    assert excinfo.value.status_code == 503


@pytest.mark.asyncio
async def test_fetch_results_wraps_transport_errors():
    client = AnalysisClient("https://api.example.com")
    client._client = _FakeClient(error=httpx.ConnectError("connection refused"))

    with pytest.raises(BackendError) as excinfo:
        await client.fetch_results("run-1")

    assert excinfo.value.status_code is None


@pytest.mark.asyncio
async def test_fetch_results_rejects_invalid_json():
    client = AnalysisClient("https://api.example.com")
    client._client = _FakeClient(_response(text="<html>maintenance</html>"))

    with pytest.raises(MalformedResponseError):
        await client.fetch_results("run-1")


@pytest.mark.asyncio
async def test_from_config_uses_api_section():
    cfg = Config()
    cfg.api.base_url = "https://analysis.example.com/api/"
    client = AnalysisClient.from_config(cfg)

    assert client.base_url == "https://analysis.example.com/api"
    await client.close()


def test_client_requires_base_url():
    with pytest.raises(ConfigurationError):
        AnalysisClient("   ")
