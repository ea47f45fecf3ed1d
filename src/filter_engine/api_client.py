# This file implements the HTTP client for the ombudsman aggregation backend.
# It exists so the loader can call the filter endpoints without embedding request details everywhere.
# The client converts transport failures, server errors, and invalid JSON into one clear exception type.
# 4xx rejections surface as ValueError because retrying them cannot succeed.

from __future__ import annotations

from typing import Any

import requests

from src.filter_engine.filter_set import FilterSet
from src.filter_engine.normalization import AGGREGATED_ENDPOINT, RECORDS_ENDPOINT


class ApiUnavailableError(RuntimeError):
    """Raised when the backend cannot be reached, fails with a server error, or returns invalid JSON."""


class OmbudsmanApiClient:
    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 30,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def post_aggregated(self, filter_set: FilterSet, *, timeout_seconds: float | None = None) -> Any:
        return self.post_filters(AGGREGATED_ENDPOINT, filter_set, timeout_seconds=timeout_seconds)

    def post_records(self, filter_set: FilterSet, *, timeout_seconds: float | None = None) -> Any:
        return self.post_filters(RECORDS_ENDPOINT, filter_set, timeout_seconds=timeout_seconds)

    def post_filters(
        self,
        path: str,
        filter_set: FilterSet,
        *,
        timeout_seconds: float | None = None,
    ) -> Any:
        return self._request_json(
            "POST",
            path,
            body={"filters": filter_set.to_payload()},
            timeout_seconds=timeout_seconds,
        )

    def get_json(self, path: str, *, timeout_seconds: float | None = None) -> Any:
        return self._request_json("GET", path, body=None, timeout_seconds=timeout_seconds)

    def _request_json(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None,
        timeout_seconds: float | None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        timeout = timeout_seconds if timeout_seconds is not None else self.timeout_seconds
        try:
            if method == "POST":
                response = self.session.post(url, json=body, timeout=timeout)
            else:
                response = self.session.get(url, timeout=timeout)
        except requests.RequestException as exc:
            raise ApiUnavailableError(f"Backend request failed for {url}: {exc}") from exc

        if response.status_code == 404:
            raise ValueError(f"Endpoint returned 404 for {url}")
        if response.status_code >= 500:
            raise ApiUnavailableError(
                f"Backend request failed with status {response.status_code} for {url}"
            )
        if response.status_code >= 400:
            raise ValueError(
                f"Backend request was rejected with status {response.status_code} for {url}"
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ApiUnavailableError(f"Backend did not return valid JSON for {url}") from exc
