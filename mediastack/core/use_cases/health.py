"""
Health use case — probe every enabled service once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from mediastack.core.config.loader import ConfigError, load_stack_config
from mediastack.core.observability.health import (
    HealthChecker,
    ServiceHealth,
    all_healthy,
    summarize,
)


@dataclass
class HealthResult:
    """One probe round over the stack."""

    services: list[ServiceHealth] = field(default_factory=list)
    error: str | None = None

    @property
    def healthy(self) -> bool:
        return self.error is None and all_healthy(self.services)

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        result["status"] = summarize(self.services)
        result["services"] = [s.to_dict() for s in self.services]
        return result


def check_health(
    config_path: Path | None = None,
    checker: HealthChecker | None = None,
) -> HealthResult:
    """Probe the stack's services once, concurrently.

    Args:
        config_path: Optional explicit path to stack.yml.
        checker: Optional pre-built health checker.
    """
    result = HealthResult()

    try:
        config = load_stack_config(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    if checker is None:
        checker = HealthChecker(base_url=config.host, timeout=config.setup.probe_timeout)

    result.services = checker.probe_all(config.probe_targets)
    return result
