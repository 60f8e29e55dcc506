"""
Setup use case — configure a running stack from its stack.yml.

Loads the config, runs the SetupOrchestrator, and wraps the ledger in
a result the CLI can print or serialize.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from mediastack.core.config.loader import ConfigError, load_stack_config
from mediastack.core.engine.orchestrator import ClientFactory, SetupOrchestrator
from mediastack.core.models.outcome import ResultLedger
from mediastack.core.models.stack import StackConfig
from mediastack.core.observability.health import HealthChecker
from mediastack.core.reliability.cancel import CancelToken, is_cancelled

logger = logging.getLogger(__name__)


@dataclass
class SetupResult:
    """Result of a setup run."""

    ledger: ResultLedger | None = None
    config: StackConfig | None = None
    config_path: Path | None = None
    cancelled: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.ledger is not None and self.ledger.all_ok

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            return result

        result["config_path"] = str(self.config_path) if self.config_path else ""
        result["cancelled"] = self.cancelled
        if self.ledger is not None:
            result.update(self.ledger.to_dict())
        return result


def run_setup(
    config_path: Path | None = None,
    cancel: CancelToken | None = None,
    clients: ClientFactory | None = None,
    checker: HealthChecker | None = None,
) -> SetupResult:
    """Run the post-start setup for the stack in ``config_path``.

    Args:
        config_path: Optional explicit path to stack.yml.
        cancel: Token that stops the run at its next wait or phase boundary.
        clients: Optional pre-built client factory.
        checker: Optional pre-built health checker.

    Returns:
        SetupResult with the ledger, or ``error`` when config failed to load.
    """
    result = SetupResult(config_path=config_path)

    try:
        config = load_stack_config(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result
    result.config = config

    orchestrator = SetupOrchestrator(config, clients=clients, checker=checker)
    result.ledger = orchestrator.run(cancel)
    result.cancelled = is_cancelled(cancel)

    logger.info(
        "setup %s: %d/%d steps ok",
        result.ledger.status,
        result.ledger.succeeded,
        len(result.ledger),
    )
    return result
