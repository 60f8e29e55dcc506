"""
Adapter base — the contract between the setup engine and REST backends.

Every backend (Radarr, Sonarr, Prowlarr, qBittorrent) is reached
through an ApiClient subclass.  The base class owns URL building,
sending through the shared RetryingTransport, status checking, and
JSON decoding; subclasses add authentication and endpoints.

Unlike the transport, adapters raise: ApiError for a response the
backend rejected, TransportError for one that never arrived.  The
orchestrator turns both into ActionOutcomes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import Any, Protocol

import requests

from mediastack.core.reliability.cancel import CancelToken
from mediastack.core.reliability.retry import HttpRequest, RetryingTransport


class ApiError(Exception):
    """A backend answered with a non-2xx status or an unreadable body."""

    def __init__(self, service: str, status_code: int, message: str):
        self.service = service
        self.status_code = status_code
        self.message = message
        super().__init__(f"{service} API error {status_code}: {message}")


class ResourceKind(StrEnum):
    """Configurable resource kinds the setup run manages."""

    APPLICATION = "application"
    DOWNLOAD_CLIENT = "download client"
    INDEXER_PROXY = "indexer proxy"
    NOTIFICATION = "notification"
    ROOT_FOLDER = "root folder"


class ResourceCollection(Protocol):
    """One kind of resource on one backend: list it, create into it."""

    kind: ResourceKind

    def list(self, cancel: CancelToken | None = None) -> list[dict[str, Any]]:
        ...

    def create(
        self, descriptor: dict[str, Any], cancel: CancelToken | None = None
    ) -> dict[str, Any]:
        ...


# Bodies longer than this are cut in error messages
_ERROR_BODY_LIMIT = 300


class ApiClient(ABC):
    """Base class for REST backends.

    Args:
        base_url: Service root, e.g. ``http://localhost:7878``.
        transport: Shared retrying transport; one is created if omitted.
    """

    def __init__(self, base_url: str, transport: RetryingTransport | None = None):
        self._base_url = base_url.rstrip("/")
        self._transport = transport or RetryingTransport()

    @property
    @abstractmethod
    def name(self) -> str:
        """The backend identifier (e.g. 'radarr')."""

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self) -> dict[str, str]:
        """Headers sent with every request. Subclasses add auth here."""
        return {"Accept": "application/json"}

    def _execute(self, request: HttpRequest, cancel: CancelToken | None) -> requests.Response:
        return self._transport.execute(request, cancel)

    def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        data: Any = None,
        cancel: CancelToken | None = None,
    ) -> requests.Response:
        request = HttpRequest(
            method=method,
            url=f"{self._base_url}{path}",
            headers=self._headers(),
            params=params,
            json=json,
            data=data,
        )
        response = self._execute(request, cancel)
        if not 200 <= response.status_code < 300:
            body = (response.text or "").strip()[:_ERROR_BODY_LIMIT]
            raise ApiError(self.name, response.status_code, body or response.reason or "")
        return response

    def _decode(self, response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(self.name, response.status_code, f"invalid JSON: {e}") from e

    def _get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        cancel: CancelToken | None = None,
    ) -> Any:
        return self._decode(self._send("GET", path, params=params, cancel=cancel))

    def _post_json(self, path: str, body: Any, cancel: CancelToken | None = None) -> Any:
        return self._decode(self._send("POST", path, json=body, cancel=cancel))

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} url={self._base_url!r}>"
