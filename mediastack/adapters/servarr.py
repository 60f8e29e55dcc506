"""
Servarr adapter — Radarr, Sonarr and Prowlarr share one REST shape.

All three authenticate with an ``X-Api-Key`` header and expose each
configurable resource as a collection: ``GET /api/<v>/<kind>`` lists,
``POST /api/<v>/<kind>`` creates.  Radarr and Sonarr speak v3,
Prowlarr speaks v1 and has applications and indexer proxies instead
of root folders.

The descriptor helpers at the bottom build the request bodies the
setup run posts; they carry only the fields the setup run sets.
"""

from __future__ import annotations

import logging
from typing import Any

from mediastack.adapters.base import ApiClient, ApiError, ResourceKind
from mediastack.core.reliability.cancel import CancelToken
from mediastack.core.reliability.retry import RetryingTransport

logger = logging.getLogger(__name__)

RADARR_RESOURCES = {
    ResourceKind.ROOT_FOLDER: "rootfolder",
    ResourceKind.DOWNLOAD_CLIENT: "downloadclient",
    ResourceKind.NOTIFICATION: "notification",
}
SONARR_RESOURCES = RADARR_RESOURCES
PROWLARR_RESOURCES = {
    ResourceKind.APPLICATION: "applications",
    ResourceKind.DOWNLOAD_CLIENT: "downloadclient",
    ResourceKind.INDEXER_PROXY: "indexerproxy",
    ResourceKind.NOTIFICATION: "notification",
}


class ServarrCollection:
    """One resource kind on one Servarr instance."""

    def __init__(self, client: ServarrClient, kind: ResourceKind, path: str):
        self.kind = kind
        self._client = client
        self._path = path

    def list(self, cancel: CancelToken | None = None) -> list[dict[str, Any]]:
        items = self._client._get_json(self._path, cancel=cancel)
        if items is None:
            return []
        if not isinstance(items, list):
            raise ApiError(
                self._client.name, 200, f"expected a list from {self._path}, got {type(items).__name__}"
            )
        return items

    def create(
        self, descriptor: dict[str, Any], cancel: CancelToken | None = None
    ) -> dict[str, Any]:
        created = self._client._post_json(self._path, descriptor, cancel=cancel)
        return created if isinstance(created, dict) else {}


class ServarrClient(ApiClient):
    """API-key client for a Servarr application.

    Args:
        name: Backend identifier ('radarr', 'sonarr', 'prowlarr').
        base_url: Service root URL.
        api_key: Value for the X-Api-Key header.
        resources: Resource kind → collection path segment.
        api_version: 'v3' for Radarr/Sonarr, 'v1' for Prowlarr.
        transport: Shared retrying transport.
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        api_key: str,
        resources: dict[ResourceKind, str],
        api_version: str = "v3",
        transport: RetryingTransport | None = None,
    ):
        super().__init__(base_url, transport)
        self._name = name
        self._api_key = api_key
        self._resources = dict(resources)
        self._api_version = api_version

    @property
    def name(self) -> str:
        return self._name

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["X-Api-Key"] = self._api_key
        return headers

    def resources(self, kind: ResourceKind) -> ServarrCollection:
        """Collection handle for ``kind``.

        Raises:
            ValueError: The backend has no such resource kind.
        """
        segment = self._resources.get(kind)
        if segment is None:
            raise ValueError(f"{self._name} has no {kind} resources")
        return ServarrCollection(self, kind, f"/api/{self._api_version}/{segment}")


def radarr_client(base_url: str, api_key: str, transport: RetryingTransport | None = None) -> ServarrClient:
    return ServarrClient("radarr", base_url, api_key, RADARR_RESOURCES, "v3", transport)


def sonarr_client(base_url: str, api_key: str, transport: RetryingTransport | None = None) -> ServarrClient:
    return ServarrClient("sonarr", base_url, api_key, SONARR_RESOURCES, "v3", transport)


def prowlarr_client(base_url: str, api_key: str, transport: RetryingTransport | None = None) -> ServarrClient:
    return ServarrClient("prowlarr", base_url, api_key, PROWLARR_RESOURCES, "v1", transport)


# ── Descriptors ─────────────────────────────────────────────────


def fields(**values: Any) -> list[dict[str, Any]]:
    """Servarr ``fields`` array from keyword arguments."""
    return [{"name": name, "value": value} for name, value in values.items()]


def root_folder_descriptor(path: str) -> dict[str, Any]:
    return {"path": path}


def qbittorrent_download_client(
    name: str,
    host: str,
    port: int,
    username: str,
    password: str,
    category_field: str,
    category: str,
) -> dict[str, Any]:
    """qBittorrent entry for a Servarr download-client list.

    ``category_field`` differs per app: ``movieCategory`` (Radarr),
    ``tvCategory`` (Sonarr), ``category`` (Prowlarr).
    """
    return {
        "name": name,
        "implementation": "QBittorrent",
        "configContract": "QBittorrentSettings",
        "enable": True,
        "protocol": "torrent",
        "priority": 1,
        "fields": fields(
            host=host,
            port=port,
            username=username,
            password=password,
            **{category_field: category},
        ),
    }


def application_descriptor(
    name: str,
    implementation: str,
    prowlarr_url: str,
    base_url: str,
    api_key: str,
) -> dict[str, Any]:
    """Prowlarr application link (Prowlarr pushes indexers to the app)."""
    return {
        "name": name,
        "implementation": implementation,
        "configContract": f"{implementation}Settings",
        "syncLevel": "fullSync",
        "fields": fields(prowlarrUrl=prowlarr_url, baseUrl=base_url, apiKey=api_key),
    }


def flaresolverr_proxy(name: str, host: str, request_timeout: int = 60) -> dict[str, Any]:
    return {
        "name": name,
        "implementation": "FlareSolverr",
        "configContract": "FlareSolverrSettings",
        "fields": fields(host=host, requestTimeout=request_timeout),
    }


def webhook_notification(name: str, url: str, secret: str = "") -> dict[str, Any]:
    """Webhook notification fired on grab, download and upgrade."""
    hook_fields = fields(url=url, method=1)
    if secret:
        hook_fields.append({
            "name": "headers",
            "value": [{"key": "X-Webhook-Secret", "value": secret}],
        })
    return {
        "name": name,
        "implementation": "Webhook",
        "configContract": "WebhookSettings",
        "onGrab": True,
        "onDownload": True,
        "onUpgrade": True,
        "fields": hook_fields,
    }
