"""Adapters — REST bindings for the media services.

Public re-exports for convenient access.
"""

from mediastack.adapters.base import ApiClient, ApiError, ResourceCollection, ResourceKind
from mediastack.adapters.qbittorrent import LoginError, QBittorrentClient
from mediastack.adapters.servarr import (
    ServarrClient,
    prowlarr_client,
    radarr_client,
    sonarr_client,
)

__all__ = [
    "ApiClient",
    "ApiError",
    "LoginError",
    "QBittorrentClient",
    "ResourceCollection",
    "ResourceKind",
    "ServarrClient",
    "prowlarr_client",
    "radarr_client",
    "sonarr_client",
]
