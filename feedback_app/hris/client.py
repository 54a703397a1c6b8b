"""
HR directory clients.

``DirectoryClient`` is the capability the sync depends on. ``HRISClient``
talks to the directory's REST API with ``requests``; ``MockDirectoryClient``
(see ``mock_client``) serves fixture data for development. Which one is used
is decided by ``create_directory_client`` from configuration.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping
from urllib.parse import quote

import requests
from flask import Flask, current_app

from feedback_app.models.enums import EmploymentStatus

from .errors import (
    DirectoryAuthError,
    DirectoryError,
    DirectorySchemaError,
    DirectoryUnavailable,
    HRISConfigurationError,
)
from .records import ExternalRecord, FetchedRecord, InvalidRecord, parse_records

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_PAGE_SIZE = 100
MAX_PAGES = 1000
CLIENT_IDENTIFIER = "feedback-app"

EMPLOYEES_PATH = "/api/v1/employees"
UPDATED_EMPLOYEES_PATH = "/api/v1/employees/updated"
HEALTH_PATH = "/api/v1/health"


@dataclass(frozen=True)
class ConnectionStatus:
    ok: bool
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.ok}
        if self.error:
            payload["error"] = self.error
        return payload


class DirectoryClient(abc.ABC):
    """Read-only access to employee records in the HR directory."""

    @abc.abstractmethod
    def fetch_all(self, status: EmploymentStatus | None = None) -> list[FetchedRecord]:
        ...

    @abc.abstractmethod
    def fetch_since(self, since: datetime) -> list[FetchedRecord]:
        ...

    @abc.abstractmethod
    def fetch_one(self, employee_id: str) -> FetchedRecord | None:
        ...

    @abc.abstractmethod
    def test_connection(self) -> ConnectionStatus:
        ...


class HRISClient(DirectoryClient):
    """REST client for the HR directory API."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        page_size: int = DEFAULT_PAGE_SIZE,
        session: requests.Session | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if not api_url or not api_key:
            raise HRISConfigurationError("HRIS_API_URL and HRIS_API_KEY are required for the HTTP directory client.")
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.page_size = max(1, int(page_size))
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)

    def fetch_all(self, status: EmploymentStatus | None = None) -> list[FetchedRecord]:
        params: dict[str, Any] = {}
        if status is not None:
            params["status"] = EmploymentStatus(status).value
        return self._fetch_paginated(EMPLOYEES_PATH, params)

    def fetch_since(self, since: datetime) -> list[FetchedRecord]:
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        return self._fetch_paginated(UPDATED_EMPLOYEES_PATH, {"since": since.isoformat()})

    def fetch_one(self, employee_id: str) -> FetchedRecord | None:
        payload = self._request(f"{EMPLOYEES_PATH}/{quote(employee_id, safe='')}", allow_not_found=True)
        if payload is None:
            return None
        data = self._extract_data(payload)
        if not data:
            return None
        return parse_records(data[:1])[0]

    def test_connection(self) -> ConnectionStatus:
        try:
            self._request(HEALTH_PATH)
        except DirectoryError as exc:
            return ConnectionStatus(ok=False, error=str(exc))
        return ConnectionStatus(ok=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-API-Client": CLIENT_IDENTIFIER,
        }

    def _fetch_paginated(self, path: str, params: Mapping[str, Any]) -> list[FetchedRecord]:
        records: list[FetchedRecord] = []
        page = 1
        while True:
            payload = self._request(path, params={**params, "page": page, "page_size": self.page_size})
            data = self._extract_data(payload)
            records.extend(parse_records(data))
            pagination = payload.get("pagination") if isinstance(payload, Mapping) else None
            if not isinstance(pagination, Mapping) or not pagination.get("has_more"):
                break
            page += 1
            if page > MAX_PAGES:
                raise DirectorySchemaError(f"Directory pagination did not terminate after {MAX_PAGES} pages.")
        self.logger.debug("Fetched %s directory records from %s", len(records), path)
        return records

    def _extract_data(self, payload: Any) -> list[Mapping[str, Any]]:
        if not isinstance(payload, Mapping):
            raise DirectorySchemaError("Directory response is not a JSON object.")
        if payload.get("success") is False:
            raise DirectorySchemaError(f"HRIS API error: {payload.get('error') or 'Unknown error'}")
        data = payload.get("data") or []
        if not isinstance(data, list):
            raise DirectorySchemaError("Directory response 'data' is not a list.")
        return data

    def _request(
        self,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> Any:
        url = f"{self.api_url}{path}"
        try:
            response = self.session.get(url, headers=self._headers(), params=params, timeout=self.timeout)
        except requests.Timeout as exc:
            raise DirectoryUnavailable(f"HRIS API timed out after {self.timeout}s ({path}).") from exc
        except requests.RequestException as exc:
            raise DirectoryUnavailable(f"HRIS API unreachable: {exc}") from exc

        status = response.status_code
        if status == 404 and allow_not_found:
            return None
        if status in (401, 403):
            raise DirectoryAuthError(f"HRIS API rejected credentials ({status}).")
        if status == 429 or status >= 500:
            raise DirectoryUnavailable(f"HRIS API returned {status}.")
        if status >= 400:
            raise DirectorySchemaError(f"HRIS API returned {status} for {path}.")
        try:
            return response.json()
        except ValueError as exc:
            raise DirectorySchemaError(f"HRIS API returned invalid JSON for {path}.") from exc


def create_directory_client(app: Flask | None = None) -> DirectoryClient:
    """Build the directory client selected by ``HRIS_CLIENT``."""
    flask_app = app or current_app
    config = flask_app.config
    kind = (config.get("HRIS_CLIENT") or "http").strip().lower()
    if kind == "mock":
        from .mock_client import MockDirectoryClient

        return MockDirectoryClient()
    if kind != "http":
        raise HRISConfigurationError(f"Unknown HRIS_CLIENT '{kind}'. Expected 'http' or 'mock'.")
    return HRISClient(
        config.get("HRIS_API_URL") or "",
        config.get("HRIS_API_KEY") or "",
        timeout=float(config.get("HRIS_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)),
        page_size=int(config.get("HRIS_PAGE_SIZE", DEFAULT_PAGE_SIZE)),
        logger=flask_app.logger,
    )


__all__ = [
    "ConnectionStatus",
    "DirectoryClient",
    "ExternalRecord",
    "HRISClient",
    "InvalidRecord",
    "create_directory_client",
]
