"""
Stack model — which media services run, where they listen, where files live.

StackConfig is loaded from stack.yml and describes the stack the
wizard produced: the enabled components, directory layout, generated
file locations, and tuning for HTTP retries and the setup run.  The
setup engine only reads it.

SERVICE_ENDPOINTS is the process-wide, read-only table of health
probe endpoints (container port + path) for each known component.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType

from pydantic import BaseModel, Field, field_validator, model_validator

from mediastack.core.reliability.retry import RetryPolicy

# ── Component names ─────────────────────────────────────────────

COMPONENT_RADARR = "radarr"
COMPONENT_SONARR = "sonarr"
COMPONENT_READARR = "readarr"
COMPONENT_PROWLARR = "prowlarr"
COMPONENT_QBITTORRENT = "qbittorrent"
COMPONENT_TRANSMISSION = "transmission"
COMPONENT_DELUGE = "deluge"
COMPONENT_JELLYFIN = "jellyfin"
COMPONENT_PLEX = "plex"
COMPONENT_GLUETUN = "gluetun"
COMPONENT_FLARESOLVERR = "flaresolverr"

TORRENT_CLIENTS = (COMPONENT_QBITTORRENT, COMPONENT_TRANSMISSION, COMPONENT_DELUGE)
MEDIA_SERVERS = (COMPONENT_JELLYFIN, COMPONENT_PLEX)

# Components that keep an <ApiKey> in <config_dir>/<name>/config.xml
SERVARR_COMPONENTS = frozenset(
    {COMPONENT_RADARR, COMPONENT_SONARR, COMPONENT_READARR, COMPONENT_PROWLARR}
)


@dataclass(frozen=True)
class ProbeEndpoint:
    """Container port and path that answers HTTP once a service is up."""

    port: int
    path: str


# Any status below 500 from these means the process is up, even 401.
SERVICE_ENDPOINTS: MappingProxyType[str, ProbeEndpoint] = MappingProxyType({
    COMPONENT_RADARR: ProbeEndpoint(7878, "/api/v3/health"),
    COMPONENT_SONARR: ProbeEndpoint(8989, "/api/v3/health"),
    COMPONENT_READARR: ProbeEndpoint(8787, "/api/v1/health"),
    COMPONENT_PROWLARR: ProbeEndpoint(9696, "/api/v1/health"),
    COMPONENT_QBITTORRENT: ProbeEndpoint(8080, "/api/v2/app/version"),
    COMPONENT_TRANSMISSION: ProbeEndpoint(9091, "/transmission/web/"),
    COMPONENT_DELUGE: ProbeEndpoint(8112, "/"),
    COMPONENT_JELLYFIN: ProbeEndpoint(8096, "/health"),
    COMPONENT_PLEX: ProbeEndpoint(32400, "/identity"),
    COMPONENT_GLUETUN: ProbeEndpoint(8000, "/v1/publicip/ip"),
    COMPONENT_FLARESOLVERR: ProbeEndpoint(8191, "/"),
})


def service_port(component: str) -> int | None:
    """Container port of a known component, or None."""
    endpoint = SERVICE_ENDPOINTS.get(component)
    return endpoint.port if endpoint else None


def service_url(component: str, host: str = "http://localhost") -> str:
    """Host-side base URL (the setup CLI talking to published ports)."""
    port = service_port(component)
    if port is None:
        return ""
    return f"{host.rstrip('/')}:{port}"


def docker_service_url(component: str) -> str:
    """Compose-network base URL (one container talking to another)."""
    port = service_port(component)
    if port is None:
        return ""
    return f"http://{component}:{port}"


# ── Settings blocks ─────────────────────────────────────────────


class HttpSettings(BaseModel):
    """Retry policy for backend API calls."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=10.0, ge=0)
    timeout: float = Field(default=30.0, gt=0)

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            request_timeout=self.timeout,
        )


class SetupSettings(BaseModel):
    """Health-gate budget for the setup run."""

    health_rounds: int = Field(default=3, ge=1)
    health_interval: float = Field(default=10.0, ge=0)
    probe_timeout: float = Field(default=5.0, gt=0)


class QBittorrentSettings(BaseModel):
    """WebUI credentials and categories the *arr apps use for qBittorrent."""

    username: str = "admin"
    password: str = "adminadmin"
    radarr_category: str = "radarr"
    sonarr_category: str = "sonarr"
    prowlarr_category: str = "prowlarr"


class WebhookSettings(BaseModel):
    """Download notifications Radarr should post to."""

    enabled: bool = False
    name: str = "MediaStack"
    url: str = ""
    secret: str = ""


class StackConfig(BaseModel):
    """The stack produced by the setup wizard.

    Directory fields left empty are derived: movies and tv under
    ``media_dir``, generated files under ``output_dir``.
    """

    components: list[str] = Field(default_factory=list)
    torrent_client: str = COMPONENT_QBITTORRENT
    media_server: str = COMPONENT_JELLYFIN

    # ── Directories ──────────────────────────────────────────────
    media_dir: str = "/data/media"
    movies_dir: str = ""
    tv_dir: str = ""
    downloads_dir: str = "/data/downloads"
    config_dir: str = "./config"
    output_dir: str = "."

    # ── Generated files the setup run patches ────────────────────
    env_path: str = ""
    app_config_path: str = ""

    # ── Where the services are reachable from this host ─────────
    host: str = "http://localhost"

    http: HttpSettings = Field(default_factory=HttpSettings)
    setup: SetupSettings = Field(default_factory=SetupSettings)
    qbittorrent: QBittorrentSettings = Field(default_factory=QBittorrentSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    @field_validator("components")
    @classmethod
    def _normalize_components(cls, value: list[str]) -> list[str]:
        seen: list[str] = []
        for name in value:
            name = name.strip().lower()
            if name and name not in seen:
                seen.append(name)
        return seen

    @field_validator("torrent_client")
    @classmethod
    def _known_torrent_client(cls, value: str) -> str:
        if value not in TORRENT_CLIENTS:
            raise ValueError(f"torrent_client must be one of {', '.join(TORRENT_CLIENTS)}")
        return value

    @field_validator("media_server")
    @classmethod
    def _known_media_server(cls, value: str) -> str:
        if value not in MEDIA_SERVERS:
            raise ValueError(f"media_server must be one of {', '.join(MEDIA_SERVERS)}")
        return value

    @model_validator(mode="after")
    def _derive_paths(self) -> StackConfig:
        media = self.media_dir.rstrip("/")
        if not self.movies_dir:
            self.movies_dir = f"{media}/movies"
        if not self.tv_dir:
            self.tv_dir = f"{media}/tv"
        out = self.output_dir.rstrip("/") or "."
        if not self.env_path:
            self.env_path = f"{out}/.env"
        if not self.app_config_path:
            self.app_config_path = f"{out}/mediastack.yaml"
        return self

    def has_component(self, name: str) -> bool:
        """Whether ``name`` is enabled in this stack."""
        return name in self.components

    @property
    def probe_targets(self) -> list[str]:
        """Enabled components that expose a health endpoint, in config order."""
        return [c for c in self.components if c in SERVICE_ENDPOINTS]
