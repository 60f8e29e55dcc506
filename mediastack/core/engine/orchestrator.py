"""
Setup orchestrator — configure a freshly started media stack.

The orchestrator runs a fixed sequence of phases after ``compose up``:

    1. health gating      probe services, a few rounds, until all answer
    2. API keys           read the keys the Servarr apps generated
    3. config patching    write those keys into .env and the app config
    4. cross-config       Radarr / Sonarr / Prowlarr / qBittorrent links
       (list existing → compare by name → create if absent)

Every attempted or skipped step leaves one ActionOutcome in the
ledger.  A failing step never stops the run; the only early exit is
the caller's cancel token, checked while waiting and between phases.
Re-running against a configured stack converges without writes.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

import requests

from mediastack.adapters.base import ApiError, ResourceKind
from mediastack.adapters.qbittorrent import LoginError, QBittorrentClient
from mediastack.adapters.servarr import (
    ServarrClient,
    application_descriptor,
    flaresolverr_proxy,
    prowlarr_client,
    qbittorrent_download_client,
    radarr_client,
    root_folder_descriptor,
    sonarr_client,
    webhook_notification,
)
from mediastack.core.engine.idempotent import DesiredResource, by_path, ensure_resource
from mediastack.core.models.outcome import ActionOutcome, ResultLedger
from mediastack.core.models.stack import (
    COMPONENT_FLARESOLVERR,
    COMPONENT_PROWLARR,
    COMPONENT_QBITTORRENT,
    COMPONENT_RADARR,
    COMPONENT_SONARR,
    StackConfig,
    docker_service_url,
    service_port,
    service_url,
)
from mediastack.core.observability.health import HealthChecker, ServiceHealth, all_healthy
from mediastack.core.reliability.cancel import CancelToken, is_cancelled, wait_or_cancel
from mediastack.core.reliability.errors import OperationCancelledError, TransportError
from mediastack.core.reliability.retry import RetryingTransport, Sleeper
from mediastack.core.services.api_keys import ApiKeyScan, read_api_keys
from mediastack.core.services.config_patch import update_env_file, update_placeholders

logger = logging.getLogger(__name__)

# ── Ledger labels ───────────────────────────────────────────────

ACTION_HEALTH = "health check"
ACTION_READ_KEY = "read api key"
ACTION_SETUP = "setup"
ACTION_ROOT_FOLDER = "create root folder"
ACTION_DOWNLOAD_CLIENT = "add download client"
ACTION_WEBHOOK = "add webhook"
ACTION_FLARESOLVERR = "add flaresolverr proxy"
ACTION_SAVE_PATH = "set download path"

DOWNLOAD_CLIENT_NAME = "qBittorrent"
FLARESOLVERR_NAME = "FlareSolverr"

_SERVARR_BUILDERS: dict[str, Callable[..., ServarrClient]] = {
    COMPONENT_RADARR: radarr_client,
    COMPONENT_SONARR: sonarr_client,
    COMPONENT_PROWLARR: prowlarr_client,
}


class ClientFactory:
    """Builds the backend clients and health checker for one setup run.

    Each client gets its own transport (and so its own requests.Session)
    so qBittorrent's session cookie is never shared.
    """

    def __init__(self, config: StackConfig):
        self._config = config
        self._policy = config.http.to_policy()

    def transport(self) -> RetryingTransport:
        return RetryingTransport(self._policy, requests.Session())

    def servarr(self, component: str, api_key: str) -> ServarrClient:
        builder = _SERVARR_BUILDERS[component]
        return builder(service_url(component, self._config.host), api_key, self.transport())

    def qbittorrent(self) -> QBittorrentClient:
        creds = self._config.qbittorrent
        return QBittorrentClient(
            service_url(COMPONENT_QBITTORRENT, self._config.host),
            creds.username,
            creds.password,
            self.transport(),
        )

    def health_checker(self) -> HealthChecker:
        return HealthChecker(
            base_url=self._config.host,
            timeout=self._config.setup.probe_timeout,
        )


def _qbittorrent_port() -> int:
    port = service_port(COMPONENT_QBITTORRENT)
    if port is None:
        raise ValueError("invalid qbittorrent port")
    return port


class SetupOrchestrator:
    """Runs the post-start configuration sequence for a StackConfig.

    Args:
        config: The stack to configure (read-only).
        clients: Backend client factory; defaults to real HTTP clients.
        checker: Health checker; defaults to ``clients.health_checker()``.
        sleep: Cancellable sleep used between health rounds.
    """

    def __init__(
        self,
        config: StackConfig,
        clients: ClientFactory | None = None,
        checker: HealthChecker | None = None,
        sleep: Sleeper = wait_or_cancel,
    ):
        self._config = config
        self._clients = clients or ClientFactory(config)
        self._checker = checker or self._clients.health_checker()
        self._sleep = sleep

    def run(self, cancel: CancelToken | None = None) -> ResultLedger:
        """Run every phase and return the ledger, complete or cancelled."""
        ledger = ResultLedger()
        try:
            self._run(ledger, cancel)
        except OperationCancelledError:
            logger.warning("setup cancelled, returning %d outcomes", len(ledger))
        else:
            logger.info(
                "setup finished: %d ok, %d failed", ledger.succeeded, ledger.failed
            )
        return ledger

    def _run(self, ledger: ResultLedger, cancel: CancelToken | None) -> None:
        cfg = self._config
        self._checkpoint(cancel)

        self._wait_for_health(ledger, cancel)
        self._checkpoint(cancel)

        scan = self._read_api_keys(ledger)
        self._patch_configs(ledger, scan)
        keys = scan.keys

        if cfg.has_component(COMPONENT_RADARR):
            self._configure(ledger, COMPONENT_RADARR, keys, self._setup_radarr, cancel)
        if cfg.has_component(COMPONENT_SONARR):
            self._configure(ledger, COMPONENT_SONARR, keys, self._setup_sonarr, cancel)
        if cfg.has_component(COMPONENT_PROWLARR):
            self._configure(ledger, COMPONENT_PROWLARR, keys, self._setup_prowlarr, cancel)
        if self._uses_qbittorrent:
            self._checkpoint(cancel)
            self._record(ledger, self._setup_qbittorrent(cancel))

    # ── Phase 1: health gating ───────────────────────────────────

    def _wait_for_health(self, ledger: ResultLedger, cancel: CancelToken | None) -> None:
        targets = self._config.probe_targets
        if not targets:
            logger.info("no services with health endpoints, skipping health gate")
            return

        rounds = self._config.setup.health_rounds
        interval = self._config.setup.health_interval
        results: list[ServiceHealth] = []
        cancelled = False

        for attempt in range(1, rounds + 1):
            logger.info("health check round %d/%d", attempt, rounds)
            results = self._checker.probe_all(targets)
            if all_healthy(results):
                logger.info("all %d services healthy", len(results))
                break
            if attempt < rounds:
                down = [r.name for r in results if not r.healthy]
                logger.info("unhealthy: %s, next round in %.0fs", ", ".join(down), interval)
                try:
                    self._sleep(interval, cancel)
                except OperationCancelledError:
                    cancelled = True
                    break

        for health in results:
            if health.healthy:
                self._record(ledger, ActionOutcome.success(health.name, ACTION_HEALTH))
            else:
                self._record(
                    ledger,
                    ActionOutcome.failure(health.name, ACTION_HEALTH, health.error or "unhealthy"),
                )

        if cancelled:
            raise OperationCancelledError("cancelled during health gating")

    # ── Phase 2: API keys ────────────────────────────────────────

    def _read_api_keys(self, ledger: ResultLedger) -> ApiKeyScan:
        scan = read_api_keys(Path(self._config.config_dir), self._config.components)
        for component in self._config.components:
            if component in scan.keys:
                self._record(ledger, ActionOutcome.success(component, ACTION_READ_KEY))
            elif component in scan.errors:
                self._record(
                    ledger,
                    ActionOutcome.failure(component, ACTION_READ_KEY, scan.errors[component]),
                )
        return scan

    # ── Phase 3: config patching ─────────────────────────────────

    def _patch_configs(self, ledger: ResultLedger, scan: ApiKeyScan) -> None:
        targets = (
            ("env", "update .env with API keys", Path(self._config.env_path), update_env_file),
            (
                "config",
                "update app config with API keys",
                Path(self._config.app_config_path),
                update_placeholders,
            ),
        )
        for service, action, path, patch in targets:
            try:
                patch(path, scan.keys)
            except FileNotFoundError:
                self._record(ledger, ActionOutcome.failure(service, action, f"file not found: {path}"))
            except (OSError, UnicodeDecodeError) as e:
                self._record(ledger, ActionOutcome.failure(service, action, f"{path}: {e}"))
            else:
                self._record(ledger, ActionOutcome.success(service, action))

    # ── Phase 4: per-service configuration ───────────────────────

    def _configure(
        self,
        ledger: ResultLedger,
        service: str,
        keys: dict[str, str],
        setup: Callable[[ResultLedger, ServarrClient, dict[str, str], CancelToken | None], None],
        cancel: CancelToken | None,
    ) -> None:
        """Run one service's steps, or record why they cannot run."""
        self._checkpoint(cancel)

        api_key = keys.get(service)
        if not api_key:
            logger.warning("skipping %s setup: no API key available", service)
            self._record(ledger, ActionOutcome.failure(service, ACTION_SETUP, "no API key available"))
            return

        try:
            client = self._clients.servarr(service, api_key)
            setup(ledger, client, keys, cancel)
        except OperationCancelledError:
            raise
        except Exception as e:
            # Steps record as they finish; this adds only the failure that stopped them
            logger.exception("%s setup raised unexpectedly", service)
            self._record(ledger, ActionOutcome.failure(service, ACTION_SETUP, f"unexpected error: {e}"))

    @property
    def _uses_qbittorrent(self) -> bool:
        cfg = self._config
        return cfg.has_component(COMPONENT_QBITTORRENT) and cfg.torrent_client == COMPONENT_QBITTORRENT

    def _download_client(
        self,
        service: str,
        client: ServarrClient,
        category_field: str,
        category: str,
        cancel: CancelToken | None,
    ) -> ActionOutcome:
        creds = self._config.qbittorrent
        return ensure_resource(
            DesiredResource(
                service=service,
                action=ACTION_DOWNLOAD_CLIENT,
                identity=DOWNLOAD_CLIENT_NAME,
                collection=client.resources(ResourceKind.DOWNLOAD_CLIENT),
                build=lambda: qbittorrent_download_client(
                    name=DOWNLOAD_CLIENT_NAME,
                    host=COMPONENT_QBITTORRENT,
                    port=_qbittorrent_port(),
                    username=creds.username,
                    password=creds.password,
                    category_field=category_field,
                    category=category,
                ),
            ),
            cancel,
        )

    def _root_folder(
        self,
        service: str,
        client: ServarrClient,
        path: str,
        cancel: CancelToken | None,
    ) -> ActionOutcome:
        return ensure_resource(
            DesiredResource(
                service=service,
                action=ACTION_ROOT_FOLDER,
                identity=path.rstrip("/"),
                collection=client.resources(ResourceKind.ROOT_FOLDER),
                build=lambda: root_folder_descriptor(path),
                identify=by_path,
            ),
            cancel,
        )

    def _setup_radarr(
        self,
        ledger: ResultLedger,
        client: ServarrClient,
        keys: dict[str, str],
        cancel: CancelToken | None,
    ) -> None:
        cfg = self._config
        self._record(ledger, self._root_folder(COMPONENT_RADARR, client, cfg.movies_dir, cancel))

        if self._uses_qbittorrent:
            self._record(
                ledger,
                self._download_client(
                    COMPONENT_RADARR,
                    client,
                    "movieCategory",
                    cfg.qbittorrent.radarr_category,
                    cancel,
                ),
            )

        if cfg.webhook.enabled:
            self._record(ledger, self._radarr_webhook(client, cancel))

    def _radarr_webhook(self, client: ServarrClient, cancel: CancelToken | None) -> ActionOutcome:
        hook = self._config.webhook
        if not hook.url:
            logger.warning("radarr: webhook enabled but no url configured")
            return ActionOutcome.failure(COMPONENT_RADARR, ACTION_WEBHOOK, "webhook url not configured")
        if not hook.secret:
            logger.warning("radarr: registering webhook without a secret")

        return ensure_resource(
            DesiredResource(
                service=COMPONENT_RADARR,
                action=ACTION_WEBHOOK,
                identity=hook.name,
                collection=client.resources(ResourceKind.NOTIFICATION),
                build=lambda: webhook_notification(hook.name, hook.url, hook.secret),
            ),
            cancel,
        )

    def _setup_sonarr(
        self,
        ledger: ResultLedger,
        client: ServarrClient,
        keys: dict[str, str],
        cancel: CancelToken | None,
    ) -> None:
        cfg = self._config
        self._record(ledger, self._root_folder(COMPONENT_SONARR, client, cfg.tv_dir, cancel))
        if self._uses_qbittorrent:
            self._record(
                ledger,
                self._download_client(
                    COMPONENT_SONARR,
                    client,
                    "tvCategory",
                    cfg.qbittorrent.sonarr_category,
                    cancel,
                ),
            )

    def _setup_prowlarr(
        self,
        ledger: ResultLedger,
        client: ServarrClient,
        keys: dict[str, str],
        cancel: CancelToken | None,
    ) -> None:
        cfg = self._config

        for app, implementation in ((COMPONENT_RADARR, "Radarr"), (COMPONENT_SONARR, "Sonarr")):
            if not cfg.has_component(app):
                continue
            self._record(
                ledger, self._prowlarr_application(client, app, implementation, keys, cancel)
            )

        if self._uses_qbittorrent:
            self._record(
                ledger,
                self._download_client(
                    COMPONENT_PROWLARR,
                    client,
                    "category",
                    cfg.qbittorrent.prowlarr_category,
                    cancel,
                ),
            )

        if cfg.has_component(COMPONENT_FLARESOLVERR):
            self._record(
                ledger,
                ensure_resource(
                    DesiredResource(
                        service=COMPONENT_PROWLARR,
                        action=ACTION_FLARESOLVERR,
                        identity=FLARESOLVERR_NAME,
                        collection=client.resources(ResourceKind.INDEXER_PROXY),
                        build=lambda: flaresolverr_proxy(
                            FLARESOLVERR_NAME, docker_service_url(COMPONENT_FLARESOLVERR)
                        ),
                    ),
                    cancel,
                ),
            )

    def _prowlarr_application(
        self,
        client: ServarrClient,
        app: str,
        implementation: str,
        keys: dict[str, str],
        cancel: CancelToken | None,
    ) -> ActionOutcome:
        action = f"add {app} application"
        app_key = keys.get(app)
        if not app_key:
            logger.warning("prowlarr: cannot link %s without its API key", app)
            return ActionOutcome.failure(COMPONENT_PROWLARR, action, f"no {app} API key available")

        return ensure_resource(
            DesiredResource(
                service=COMPONENT_PROWLARR,
                action=action,
                identity=implementation,
                collection=client.resources(ResourceKind.APPLICATION),
                build=lambda: application_descriptor(
                    name=implementation,
                    implementation=implementation,
                    prowlarr_url=docker_service_url(COMPONENT_PROWLARR),
                    base_url=docker_service_url(app),
                    api_key=app_key,
                ),
            ),
            cancel,
        )

    def _setup_qbittorrent(self, cancel: CancelToken | None) -> ActionOutcome:
        """Point qBittorrent's default save path at the downloads dir."""
        target = self._config.downloads_dir
        try:
            client = self._clients.qbittorrent()
            prefs = client.get_preferences(cancel)
            if str(prefs.get("save_path") or "").rstrip("/") == target.rstrip("/"):
                logger.info("qbittorrent: save path already %s", target)
                return ActionOutcome.success(COMPONENT_QBITTORRENT, ACTION_SAVE_PATH)
            client.set_preferences({"save_path": target}, cancel)
        except (ApiError, TransportError, LoginError) as e:
            logger.error("qbittorrent: failed to set download path: %s", e)
            return ActionOutcome.failure(COMPONENT_QBITTORRENT, ACTION_SAVE_PATH, str(e))

        logger.info("qbittorrent: set download path to %s", target)
        return ActionOutcome.success(COMPONENT_QBITTORRENT, ACTION_SAVE_PATH)

    # ── Helpers ─────────────────────────────────────────────────

    @staticmethod
    def _checkpoint(cancel: CancelToken | None) -> None:
        if is_cancelled(cancel):
            raise OperationCancelledError("setup cancelled")

    @staticmethod
    def _record(ledger: ResultLedger, outcome: ActionOutcome) -> None:
        ledger.record(outcome)
        marker = "✓" if outcome.ok else "✗"
        if outcome.ok:
            logger.info("%s %s: %s", marker, outcome.service, outcome.action)
        else:
            logger.info("%s %s: %s (%s)", marker, outcome.service, outcome.action, outcome.error)
