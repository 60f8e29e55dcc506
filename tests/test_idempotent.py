"""
Tests for ensure_resource — list, compare by identity, create if absent.
"""

import threading

import pytest

from mediastack.adapters.base import ApiError, ResourceKind
from mediastack.core.engine.idempotent import DesiredResource, by_name, by_path, ensure_resource
from mediastack.core.reliability.errors import OperationCancelledError, RetryExhaustedError


class MemoryCollection:
    def __init__(self, kind=ResourceKind.DOWNLOAD_CLIENT, items=None):
        self.kind = kind
        self.items = list(items or [])
        self.creates: list[dict] = []
        self.list_error: Exception | None = None
        self.create_error: Exception | None = None

    def list(self, cancel=None):
        if self.list_error:
            raise self.list_error
        return list(self.items)

    def create(self, descriptor, cancel=None):
        if self.create_error:
            raise self.create_error
        self.creates.append(descriptor)
        self.items.append(descriptor)
        return descriptor


def _desired(collection, identity="qBittorrent", build=None, identify=by_name):
    return DesiredResource(
        service="radarr",
        action="add download client",
        identity=identity,
        collection=collection,
        build=build or (lambda: {"name": identity}),
        identify=identify,
    )


class TestIdentity:
    def test_by_name(self):
        assert by_name({"name": "qBittorrent"}) == "qBittorrent"
        assert by_name({}) == ""

    def test_by_path_ignores_trailing_slash(self):
        assert by_path({"path": "/data/media/movies/"}) == "/data/media/movies"
        assert by_path({"id": 3}) == ""


class TestEnsureResource:
    def test_creates_when_absent(self):
        coll = MemoryCollection(items=[{"name": "Transmission"}])

        outcome = ensure_resource(_desired(coll))

        assert outcome.ok
        assert coll.creates == [{"name": "qBittorrent"}]

    def test_skips_when_present(self):
        coll = MemoryCollection(items=[{"name": "qBittorrent", "id": 1}])

        outcome = ensure_resource(_desired(coll))

        assert outcome.ok
        assert coll.creates == []

    def test_second_run_issues_no_writes(self):
        coll = MemoryCollection()

        ensure_resource(_desired(coll))
        ensure_resource(_desired(coll))

        assert len(coll.creates) == 1

    def test_identity_is_exact(self):
        coll = MemoryCollection(items=[{"name": "qbittorrent"}])

        ensure_resource(_desired(coll))

        assert len(coll.creates) == 1

    def test_path_identity(self):
        coll = MemoryCollection(ResourceKind.ROOT_FOLDER, items=[{"path": "/data/media/movies/"}])

        outcome = ensure_resource(
            _desired(coll, identity="/data/media/movies", identify=by_path)
        )

        assert outcome.ok
        assert coll.creates == []

    def test_build_not_called_when_present(self):
        coll = MemoryCollection(items=[{"name": "qBittorrent"}])

        def build():
            raise AssertionError("should not build")

        assert ensure_resource(_desired(coll, build=build)).ok

    def test_list_failure(self):
        coll = MemoryCollection()
        coll.list_error = ApiError("radarr", 401, "Unauthorized")

        outcome = ensure_resource(_desired(coll))

        assert not outcome.ok
        assert outcome.error.startswith("list download client:")
        assert "401" in outcome.error
        assert coll.creates == []

    def test_create_failure(self):
        coll = MemoryCollection()
        coll.create_error = RetryExhaustedError(3, "http://radarr:7878", last_status=429)

        outcome = ensure_resource(_desired(coll))

        assert not outcome.ok
        assert outcome.error.startswith("create download client:")
        assert outcome.service == "radarr"
        assert outcome.action == "add download client"

    def test_build_failure(self):
        coll = MemoryCollection()

        def build():
            raise ValueError("invalid qbittorrent port")

        outcome = ensure_resource(_desired(coll, build=build))

        assert not outcome.ok
        assert "invalid qbittorrent port" in outcome.error
        assert coll.creates == []

    def test_cancellation_propagates(self):
        coll = MemoryCollection()
        coll.list_error = OperationCancelledError("cancelled")

        with pytest.raises(OperationCancelledError):
            ensure_resource(_desired(coll), threading.Event())
