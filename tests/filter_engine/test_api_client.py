# This test file validates the backend HTTP client against the aggregation contract.
# It exists so request bodies and error mapping stay stable as endpoints evolve.
# The tests focus on the filters body and clear failure modes.

from __future__ import annotations

from typing import Any

import pytest
import requests

from src.filter_engine.api_client import ApiUnavailableError, OmbudsmanApiClient
from src.filter_engine.filter_set import FilterSet, eq


class _FakeResponse:
    def __init__(self, *, status_code: int, payload: Any = None, invalid_json: bool = False) -> None:
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self._invalid_json = invalid_json

    def json(self) -> Any:
        if self._invalid_json:
            raise ValueError("not json")
        return self._payload


class _FakeSession:
    def __init__(
        self, responses: list[_FakeResponse] | None = None, raise_error: Exception | None = None
    ) -> None:
        self.responses = responses or []
        self.raise_error = raise_error
        self.calls: list[tuple[str, str, Any, float]] = []

    def post(self, url: str, json: Any, timeout: float) -> _FakeResponse:
        self.calls.append(("POST", url, json, timeout))
        return self._respond()

    def get(self, url: str, timeout: float) -> _FakeResponse:
        self.calls.append(("GET", url, None, timeout))
        return self._respond()

    def _respond(self) -> _FakeResponse:
        if self.raise_error is not None:
            raise self.raise_error
        return self.responses.pop(0)


def test_post_aggregated_sends_filters_body() -> None:
    session = _FakeSession(responses=[_FakeResponse(status_code=200, payload={"totalManifestations": 3})])
    client = OmbudsmanApiClient(base_url="http://localhost:3000/api/", session=session)

    payload = client.post_aggregated(FilterSet.of(eq("tema", "Saúde")), timeout_seconds=60)

    assert payload == {"totalManifestations": 3}
    assert session.calls == [
        (
            "POST",
            "http://localhost:3000/api/filter/aggregated",
            {"filters": [{"field": "tema", "op": "eq", "value": "Saúde"}]},
            60,
        )
    ]


def test_get_json_uses_default_timeout() -> None:
    session = _FakeSession(responses=[_FakeResponse(status_code=200, payload={"ok": True})])
    client = OmbudsmanApiClient(base_url="http://localhost:3000/api", timeout_seconds=12, session=session)

    client.get_json("/dashboard-data")

    assert session.calls[0][0] == "GET"
    assert session.calls[0][3] == 12


def test_transport_error_raises_unavailable() -> None:
    session = _FakeSession(raise_error=requests.ConnectionError("api down"))
    client = OmbudsmanApiClient(base_url="http://localhost:3000/api", session=session)

    with pytest.raises(ApiUnavailableError):
        client.post_records(FilterSet.of(eq("tema", "A")))


def test_server_error_and_invalid_json_raise_unavailable() -> None:
    session = _FakeSession(
        responses=[
            _FakeResponse(status_code=503),
            _FakeResponse(status_code=200, invalid_json=True),
        ]
    )
    client = OmbudsmanApiClient(base_url="http://localhost:3000/api", session=session)

    with pytest.raises(ApiUnavailableError, match="status 503"):
        client.post_aggregated(FilterSet.empty())
    with pytest.raises(ApiUnavailableError, match="valid JSON"):
        client.post_aggregated(FilterSet.empty())


def test_client_errors_raise_value_error() -> None:
    session = _FakeSession(responses=[_FakeResponse(status_code=404), _FakeResponse(status_code=422)])
    client = OmbudsmanApiClient(base_url="http://localhost:3000/api", session=session)

    with pytest.raises(ValueError, match="404"):
        client.post_aggregated(FilterSet.empty())
    with pytest.raises(ValueError, match="rejected"):
        client.post_aggregated(FilterSet.empty())
