"""
Health checker — is each stack service up and answering HTTP?

A probe is a single GET against the service's well-known endpoint
with a short timeout.  Any status below 500 counts as healthy: a 401
from Radarr still proves the process is running, which is all the
setup run needs before it starts configuring things.

``probe_all`` runs every probe on its own worker and writes each
result into the slot matching its input index, so the output order
is the input order no matter which probe finishes first.

No retries happen here; the setup orchestrator decides how many
rounds to run.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

import requests

from mediastack.core.models.stack import SERVICE_ENDPOINTS, ProbeEndpoint

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 5.0


@dataclass(frozen=True)
class ServiceHealth:
    """Outcome of one probe.

    ``status_code`` is 0 exactly when no HTTP response came back.
    """

    name: str
    endpoint: str = ""
    healthy: bool = False
    status_code: int = 0
    error: str | None = None
    latency: float = 0.0  # seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "endpoint": self.endpoint,
            "healthy": self.healthy,
            "status_code": self.status_code,
            "error": self.error,
            "latency_ms": round(self.latency * 1000),
        }


class HealthChecker:
    """Probes stack services over HTTP.

    Args:
        base_url: Scheme and host the service ports are published on.
        endpoints: Component → probe endpoint table.
        timeout: Per-probe timeout in seconds.
        session: requests.Session to probe with (shared across workers).
    """

    def __init__(
        self,
        base_url: str = "http://localhost",
        endpoints: Mapping[str, ProbeEndpoint] = SERVICE_ENDPOINTS,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        session: requests.Session | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._endpoints = endpoints
        self._timeout = timeout
        self._session = session if session is not None else requests.Session()

    def endpoint_url(self, name: str) -> str | None:
        endpoint = self._endpoints.get(name)
        if endpoint is None:
            return None
        return f"{self._base_url}:{endpoint.port}{endpoint.path}"

    def probe(self, name: str) -> ServiceHealth:
        """Probe a single service. Never raises."""
        url = self.endpoint_url(name)
        if url is None:
            return ServiceHealth(name=name, error="unknown service")

        start = time.monotonic()
        try:
            response = self._session.get(url, timeout=self._timeout)
        except requests.RequestException as e:
            return ServiceHealth(
                name=name,
                endpoint=url,
                error=str(e) or e.__class__.__name__,
                latency=time.monotonic() - start,
            )
        latency = time.monotonic() - start
        status = response.status_code
        response.close()

        healthy = status < 500
        return ServiceHealth(
            name=name,
            endpoint=url,
            healthy=healthy,
            status_code=status,
            error=None if healthy else f"unhealthy status: {status}",
            latency=latency,
        )

    def probe_all(self, names: Sequence[str]) -> list[ServiceHealth]:
        """Probe every service concurrently; results follow input order."""
        results: list[ServiceHealth | None] = [None] * len(names)
        if not names:
            return []

        def _run(idx: int, name: str) -> None:
            result = self.probe(name)
            results[idx] = result
            logger.info(
                "health probe %s: healthy=%s status=%d latency=%.0fms%s",
                result.name,
                result.healthy,
                result.status_code,
                result.latency * 1000,
                f" error={result.error}" if result.error else "",
            )

        with ThreadPoolExecutor(max_workers=len(names), thread_name_prefix="probe") as pool:
            futures = [pool.submit(_run, idx, name) for idx, name in enumerate(names)]
            for future in futures:
                future.result()

        return [r for r in results if r is not None]


def all_healthy(results: Sequence[ServiceHealth]) -> bool:
    return all(r.healthy for r in results)


def summarize(results: Sequence[ServiceHealth]) -> str:
    """Aggregate probe results: healthy, degraded, or unhealthy.

    ``degraded`` means some but not all services answered.
    """
    if not results:
        return "healthy"
    up = sum(1 for r in results if r.healthy)
    if up == len(results):
        return "healthy"
    if up == 0:
        return "unhealthy"
    return "degraded"
