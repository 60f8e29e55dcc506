"""
Tests for the setup orchestrator — phases, isolation, convergence, cancellation.
"""

import threading
from pathlib import Path

from fakes import FakeQBittorrentApi, FakeServarrApi, NoSleep, fast_transport, make_response
from mediastack.adapters.qbittorrent import QBittorrentClient
from mediastack.adapters.servarr import prowlarr_client, radarr_client, sonarr_client
from mediastack.core.engine.orchestrator import ClientFactory, SetupOrchestrator
from mediastack.core.models.stack import SetupSettings, StackConfig, WebhookSettings, service_url
from mediastack.core.observability.health import ServiceHealth
from mediastack.core.reliability.cancel import wait_or_cancel

ALL_COMPONENTS = ("radarr", "sonarr", "prowlarr", "qbittorrent", "flaresolverr", "jellyfin")
SERVARR = ("radarr", "sonarr", "prowlarr")


class StubChecker:
    """Each round is the set of services that are down; the last round repeats."""

    def __init__(self, *rounds: set):
        self.rounds = list(rounds) or [set()]
        self.calls: list[list[str]] = []

    def probe_all(self, names):
        self.calls.append(list(names))
        down = self.rounds[min(len(self.calls), len(self.rounds)) - 1]
        return [
            ServiceHealth(name=n, error="connection refused")
            if n in down
            else ServiceHealth(name=n, healthy=True, status_code=200)
            for n in names
        ]


class FakeClients(ClientFactory):
    """Real clients wired to in-memory backends."""

    _builders = {"radarr": radarr_client, "sonarr": sonarr_client, "prowlarr": prowlarr_client}

    def __init__(
        self,
        config: StackConfig,
        apis: dict,
        qbit: FakeQBittorrentApi | None = None,
        sleep=None,
    ):
        super().__init__(config)
        self.sleep = sleep
        self.apis = apis
        self.qbit = qbit or FakeQBittorrentApi(save_path="/downloads")
        self.keys_used: dict[str, str] = {}

    def servarr(self, component, api_key):
        self.keys_used[component] = api_key
        url = service_url(component, self._config.host)
        return self._builders[component](
            url, api_key, fast_transport(self.apis[component], sleep=self.sleep)
        )

    def qbittorrent(self):
        creds = self._config.qbittorrent
        return QBittorrentClient(
            "http://localhost:8080", creds.username, creds.password, fast_transport(self.qbit)
        )


class BrokenListApi(FakeServarrApi):
    """Raises ``error`` when one collection is listed."""

    def __init__(self, segment: str, error: Exception, **kwargs):
        super().__init__(**kwargs)
        self.segment = segment
        self.error = error

    def request(self, method, url, **kwargs):
        if method == "GET" and url.rstrip("/").endswith(f"/{self.segment}"):
            raise self.error
        return super().request(method, url, **kwargs)


class CancellingListApi(FakeServarrApi):
    """Sets the cancel token and answers 503 when one collection is listed."""

    def __init__(self, segment: str, cancel: threading.Event, **kwargs):
        super().__init__(**kwargs)
        self.segment = segment
        self.cancel = cancel

    def request(self, method, url, **kwargs):
        if method == "GET" and url.rstrip("/").endswith(f"/{self.segment}"):
            self.cancel.set()
            return make_response(503, "Service Unavailable", url=url)
        return super().request(method, url, **kwargs)


def _make_stack(
    tmp_path: Path,
    components=ALL_COMPONENTS,
    keys=SERVARR,
    **overrides,
) -> StackConfig:
    config_dir = tmp_path / "config"
    for component in keys:
        xml = config_dir / component / "config.xml"
        xml.parent.mkdir(parents=True, exist_ok=True)
        xml.write_text(f"<Config><ApiKey>{component}-key</ApiKey></Config>")

    (tmp_path / ".env").write_text(
        "MEDIASTACK_RADARR_API_KEY=\n"
        "MEDIASTACK_SONARR_API_KEY=\n"
        "MEDIASTACK_PROWLARR_API_KEY=\n"
    )
    (tmp_path / "mediastack.yaml").write_text(
        "radarr:\n  api_key: ${MEDIASTACK_RADARR_API_KEY}\n"
    )

    overrides.setdefault("setup", SetupSettings(health_rounds=3, health_interval=10.0))
    return StackConfig(
        components=list(components),
        config_dir=str(config_dir),
        output_dir=str(tmp_path),
        **overrides,
    )


def _apis() -> dict:
    return {name: FakeServarrApi(api_key=f"{name}-key") for name in SERVARR}


def _orchestrator(config, apis=None, checker=None, sleep=None, qbit=None):
    clients = FakeClients(config, apis if apis is not None else _apis(), qbit)
    orch = SetupOrchestrator(
        config,
        clients=clients,
        checker=checker or StubChecker(),
        sleep=sleep or NoSleep(),
    )
    return orch, clients


def _labels(ledger) -> list[tuple[str, str]]:
    return [(o.service, o.action) for o in ledger]


# ── Full run ─────────────────────────────────────────────────────────


class TestFullRun:
    def test_configures_every_service(self, tmp_path: Path):
        config = _make_stack(tmp_path)
        orch, clients = _orchestrator(config)

        ledger = orch.run()

        assert ledger.all_ok, ledger.failures()
        assert _labels(ledger) == [
            ("radarr", "health check"),
            ("sonarr", "health check"),
            ("prowlarr", "health check"),
            ("qbittorrent", "health check"),
            ("flaresolverr", "health check"),
            ("jellyfin", "health check"),
            ("radarr", "read api key"),
            ("sonarr", "read api key"),
            ("prowlarr", "read api key"),
            ("env", "update .env with API keys"),
            ("config", "update app config with API keys"),
            ("radarr", "create root folder"),
            ("radarr", "add download client"),
            ("sonarr", "create root folder"),
            ("sonarr", "add download client"),
            ("prowlarr", "add radarr application"),
            ("prowlarr", "add sonarr application"),
            ("prowlarr", "add download client"),
            ("prowlarr", "add flaresolverr proxy"),
            ("qbittorrent", "set download path"),
        ]

    def test_backend_writes(self, tmp_path: Path):
        config = _make_stack(tmp_path)
        apis = _apis()
        orch, clients = _orchestrator(config, apis)

        orch.run()

        assert apis["radarr"].collections["rootfolder"][0]["path"] == "/data/media/movies"
        assert apis["sonarr"].collections["rootfolder"][0]["path"] == "/data/media/tv"

        radarr_dc = apis["radarr"].collections["downloadclient"][0]
        assert {"name": "movieCategory", "value": "radarr"} in radarr_dc["fields"]
        assert {"name": "host", "value": "qbittorrent"} in radarr_dc["fields"]

        apps = {a["name"]: a for a in apis["prowlarr"].collections["applications"]}
        assert set(apps) == {"Radarr", "Sonarr"}
        assert {"name": "apiKey", "value": "radarr-key"} in apps["Radarr"]["fields"]
        assert {"name": "baseUrl", "value": "http://sonarr:8989"} in apps["Sonarr"]["fields"]

        proxy = apis["prowlarr"].collections["indexerproxy"][0]
        assert {"name": "host", "value": "http://flaresolverr:8191"} in proxy["fields"]

        assert clients.qbit.preferences["save_path"] == "/data/downloads"
        assert clients.keys_used == {
            "radarr": "radarr-key",
            "sonarr": "sonarr-key",
            "prowlarr": "prowlarr-key",
        }

    def test_patches_generated_files(self, tmp_path: Path):
        config = _make_stack(tmp_path)
        orch, _ = _orchestrator(config)

        orch.run()

        env = (tmp_path / ".env").read_text()
        assert "MEDIASTACK_RADARR_API_KEY=radarr-key\n" in env
        assert "MEDIASTACK_PROWLARR_API_KEY=prowlarr-key\n" in env
        assert "api_key: radarr-key" in (tmp_path / "mediastack.yaml").read_text()

    def test_rerun_issues_no_writes(self, tmp_path: Path):
        config = _make_stack(tmp_path)
        apis = _apis()
        qbit = FakeQBittorrentApi(save_path="/downloads")
        first, _ = _orchestrator(config, apis, qbit=qbit)
        first.run()
        writes = {name: len(api.created) for name, api in apis.items()}
        qbit_writes = len(qbit.writes)

        second, _ = _orchestrator(config, apis, qbit=qbit)
        ledger = second.run()

        assert ledger.all_ok
        assert {name: len(api.created) for name, api in apis.items()} == writes
        assert len(qbit.writes) == qbit_writes

    def test_existing_root_folder_with_trailing_slash(self, tmp_path: Path):
        config = _make_stack(tmp_path, components=("radarr",))
        apis = _apis()
        apis["radarr"].collections["rootfolder"] = [{"id": 1, "path": "/data/media/movies/"}]
        orch, _ = _orchestrator(config, apis)

        assert orch.run().all_ok
        assert apis["radarr"].created == []


# ── Missing preconditions ────────────────────────────────────────────


class TestMissingPreconditions:
    def test_missing_api_key(self, tmp_path: Path):
        config = _make_stack(tmp_path, keys=("radarr", "prowlarr"))
        orch, clients = _orchestrator(config)

        ledger = orch.run()

        failures = {(o.service, o.action): o.error for o in ledger.failures()}
        assert set(failures) == {
            ("sonarr", "read api key"),
            ("sonarr", "setup"),
            ("prowlarr", "add sonarr application"),
        }
        assert failures[("sonarr", "setup")] == "no API key available"
        assert failures[("prowlarr", "add sonarr application")] == "no sonarr API key available"
        assert "sonarr" not in clients.keys_used
        assert ledger.status == "partial"

    def test_missing_env_file(self, tmp_path: Path):
        config = _make_stack(tmp_path, components=("radarr",))
        (tmp_path / ".env").unlink()
        orch, _ = _orchestrator(config)

        ledger = orch.run()

        [failure] = ledger.failures()
        assert failure.service == "env"
        assert failure.error.startswith("file not found:")
        assert ("radarr", "create root folder") in _labels(ledger)

    def test_webhook_without_url(self, tmp_path: Path):
        config = _make_stack(
            tmp_path, components=("radarr",), webhook=WebhookSettings(enabled=True)
        )
        orch, _ = _orchestrator(config)

        [failure] = orch.run().failures()

        assert (failure.service, failure.action) == ("radarr", "add webhook")

    def test_webhook_created(self, tmp_path: Path):
        config = _make_stack(
            tmp_path,
            components=("radarr",),
            webhook=WebhookSettings(enabled=True, url="http://hooks.local/radarr", secret="s"),
        )
        apis = _apis()
        orch, _ = _orchestrator(config, apis)

        assert orch.run().all_ok
        [hook] = apis["radarr"].collections["notification"]
        assert hook["name"] == "MediaStack"

    def test_other_torrent_client_skips_qbittorrent_steps(self, tmp_path: Path):
        config = _make_stack(
            tmp_path,
            components=("radarr", "transmission"),
            torrent_client="transmission",
        )
        orch, clients = _orchestrator(config)

        ledger = orch.run()

        assert ledger.all_ok
        assert ("radarr", "add download client") not in _labels(ledger)
        assert ("qbittorrent", "set download path") not in _labels(ledger)
        assert clients.qbit.calls == []


# ── Failure isolation ────────────────────────────────────────────────


class TestIsolation:
    def test_failed_create_does_not_stop_run(self, tmp_path: Path):
        config = _make_stack(tmp_path)
        apis = _apis()
        apis["radarr"].failures[("POST", "rootfolder")] = 500
        orch, _ = _orchestrator(config, apis)

        ledger = orch.run()

        [failure] = ledger.failures()
        assert (failure.service, failure.action) == ("radarr", "create root folder")
        assert "500" in failure.error
        assert len(apis["radarr"].collections["downloadclient"]) == 1
        assert len(apis["sonarr"].collections["rootfolder"]) == 1

    def test_unexpected_error_is_contained(self, tmp_path: Path):
        config = _make_stack(tmp_path, components=("radarr", "sonarr"))

        class BrokenRadarr(FakeClients):
            def servarr(self, component, api_key):
                if component == "radarr":
                    raise RuntimeError("boom")
                return super().servarr(component, api_key)

        orch = SetupOrchestrator(
            config,
            clients=BrokenRadarr(config, _apis()),
            checker=StubChecker(),
            sleep=NoSleep(),
        )

        ledger = orch.run()

        [failure] = ledger.failures()
        assert (failure.service, failure.action) == ("radarr", "setup")
        assert failure.error == "unexpected error: boom"
        assert ("sonarr", "create root folder") in _labels(ledger)

    def test_unexpected_error_keeps_finished_steps(self, tmp_path: Path):
        config = _make_stack(tmp_path, components=("radarr", "qbittorrent"), keys=("radarr",))
        apis = _apis()
        apis["radarr"] = BrokenListApi(
            "downloadclient", RuntimeError("socket closed"), api_key="radarr-key"
        )
        orch, _ = _orchestrator(config, apis)

        ledger = orch.run()

        radarr = [(o.action, o.ok) for o in ledger if o.service == "radarr"]
        assert radarr == [
            ("health check", True),
            ("read api key", True),
            ("create root folder", True),
            ("setup", False),
        ]
        assert apis["radarr"].created == [("rootfolder", {"path": "/data/media/movies"})]

    def test_qbittorrent_login_failure(self, tmp_path: Path):
        config = _make_stack(tmp_path, components=("qbittorrent",))
        qbit = FakeQBittorrentApi(password="changed")
        orch, _ = _orchestrator(config, qbit=qbit)

        [failure] = orch.run().failures()

        assert (failure.service, failure.action) == ("qbittorrent", "set download path")
        assert "login failed" in failure.error


# ── Health gating ────────────────────────────────────────────────────


class TestHealthGating:
    def test_healthy_first_round_never_sleeps(self, tmp_path: Path):
        config = _make_stack(tmp_path)
        sleeper = NoSleep()
        checker = StubChecker()
        orch, _ = _orchestrator(config, checker=checker, sleep=sleeper)

        orch.run()

        assert len(checker.calls) == 1
        assert sleeper.delays == []

    def test_recovers_on_second_round(self, tmp_path: Path):
        config = _make_stack(tmp_path)
        sleeper = NoSleep()
        checker = StubChecker({"sonarr"}, set())
        orch, _ = _orchestrator(config, checker=checker, sleep=sleeper)

        ledger = orch.run()

        assert len(checker.calls) == 2
        assert sleeper.delays == [10.0]
        assert ledger.all_ok

    def test_unreachable_service_recorded_and_run_continues(self, tmp_path: Path):
        config = _make_stack(tmp_path)
        sleeper = NoSleep()
        checker = StubChecker({"jellyfin"})
        orch, _ = _orchestrator(config, checker=checker, sleep=sleeper)

        ledger = orch.run()

        assert len(checker.calls) == 3
        assert sleeper.delays == [10.0, 10.0]
        [failure] = ledger.failures()
        assert (failure.service, failure.action) == ("jellyfin", "health check")
        assert failure.error == "connection refused"
        assert ("qbittorrent", "set download path") in _labels(ledger)

    def test_probes_only_enabled_components(self, tmp_path: Path):
        config = _make_stack(tmp_path, components=("radarr", "gluetun"), keys=("radarr",))
        checker = StubChecker()
        orch, _ = _orchestrator(config, checker=checker)

        orch.run()

        assert checker.calls == [["radarr", "gluetun"]]


# ── Cancellation ─────────────────────────────────────────────────────


class TestCancellation:
    def test_cancel_before_start(self, tmp_path: Path):
        config = _make_stack(tmp_path)
        checker = StubChecker()
        orch, _ = _orchestrator(config, checker=checker)
        cancel = threading.Event()
        cancel.set()

        ledger = orch.run(cancel)

        assert len(ledger) == 0
        assert checker.calls == []

    def test_cancel_during_health_wait(self, tmp_path: Path):
        config = _make_stack(tmp_path)
        apis = _apis()
        cancel = threading.Event()

        def interrupted_sleep(delay, token):
            cancel.set()
            wait_or_cancel(delay, token)

        checker = StubChecker({"radarr"})
        orch, clients = _orchestrator(config, apis, checker=checker, sleep=interrupted_sleep)

        ledger = orch.run(cancel)

        assert len(checker.calls) == 1
        assert {o.action for o in ledger} == {"health check"}
        assert len(ledger) == len(ALL_COMPONENTS)
        assert all(api.calls == [] for api in apis.values())
        assert clients.keys_used == {}

    def test_cancel_mid_service_keeps_finished_steps(self, tmp_path: Path):
        config = _make_stack(tmp_path, components=("radarr", "qbittorrent"), keys=("radarr",))
        cancel = threading.Event()
        apis = _apis()
        apis["radarr"] = CancellingListApi("downloadclient", cancel, api_key="radarr-key")
        qbit = FakeQBittorrentApi(save_path="/downloads")
        clients = FakeClients(config, apis, qbit, sleep=wait_or_cancel)
        orch = SetupOrchestrator(config, clients=clients, checker=StubChecker(), sleep=NoSleep())

        ledger = orch.run(cancel)

        assert apis["radarr"].created == [("rootfolder", {"path": "/data/media/movies"})]
        assert _labels(ledger)[-1] == ("radarr", "create root folder")
        assert ("radarr", "add download client") not in _labels(ledger)
        assert ("radarr", "setup") not in _labels(ledger)
        assert qbit.calls == []


# ── Default client factory ───────────────────────────────────────────


class TestClientFactory:
    def test_builds_clients_from_config(self):
        config = StackConfig(host="http://nas.local", components=["radarr"])
        clients = ClientFactory(config)

        radarr = clients.servarr("radarr", "k")
        prowlarr = clients.servarr("prowlarr", "k")
        qbit = clients.qbittorrent()

        assert radarr.base_url == "http://nas.local:7878"
        assert prowlarr.base_url == "http://nas.local:9696"
        assert qbit.base_url == "http://nas.local:8080"

    def test_transports_are_not_shared(self):
        clients = ClientFactory(StackConfig())
        first, second = clients.transport(), clients.transport()

        assert first is not second
        assert first.session is not second.session
        assert first.policy == StackConfig().http.to_policy()
