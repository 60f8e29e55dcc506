"""
ActionOutcome and ResultLedger — the setup run's report.

Every configuration step the orchestrator attempts (or skips for a
missing precondition) leaves exactly one ActionOutcome in the ledger.
The ledger is append-only: insertion order is attempt order, and an
outcome is never changed once recorded.  A failing step never stops
the run; callers read the ledger and decide what counts as success.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator


class ActionOutcome(BaseModel):
    """Result of one attempted configuration action.

    ``error`` is set exactly when ``ok`` is False.
    """

    model_config = ConfigDict(frozen=True)

    service: str                    # e.g. "radarr", "env"
    action: str                     # e.g. "create root folder"
    ok: bool
    error: str | None = None

    @model_validator(mode="after")
    def _error_iff_failed(self) -> ActionOutcome:
        if self.ok and self.error:
            raise ValueError("a successful outcome cannot carry an error")
        if not self.ok and not self.error:
            raise ValueError("a failed outcome needs an error message")
        return self

    @classmethod
    def success(cls, service: str, action: str) -> ActionOutcome:
        """Create a success outcome."""
        return cls(service=service, action=action, ok=True)

    @classmethod
    def failure(cls, service: str, action: str, error: str) -> ActionOutcome:
        """Create a failure outcome. An empty message becomes 'unknown error'."""
        return cls(service=service, action=action, ok=False, error=error or "unknown error")


class ResultLedger:
    """Append-only list of outcomes, in the order they were attempted."""

    def __init__(self, outcomes: Iterable[ActionOutcome] = ()):
        self._outcomes: list[ActionOutcome] = list(outcomes)

    def record(self, outcome: ActionOutcome) -> ActionOutcome:
        self._outcomes.append(outcome)
        return outcome

    def succeed(self, service: str, action: str) -> ActionOutcome:
        return self.record(ActionOutcome.success(service, action))

    def fail(self, service: str, action: str, error: str) -> ActionOutcome:
        return self.record(ActionOutcome.failure(service, action, error))

    @property
    def entries(self) -> tuple[ActionOutcome, ...]:
        return tuple(self._outcomes)

    def __iter__(self) -> Iterator[ActionOutcome]:
        return iter(tuple(self._outcomes))

    def __len__(self) -> int:
        return len(self._outcomes)

    # ── Summary ─────────────────────────────────────────────────

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self._outcomes if o.ok)

    @property
    def failed(self) -> int:
        return sum(1 for o in self._outcomes if not o.ok)

    @property
    def all_ok(self) -> bool:
        return self.failed == 0

    @property
    def status(self) -> str:
        if self.failed == 0:
            return "ok"
        if self.succeeded > 0:
            return "partial"
        return "failed"

    def failures(self) -> list[ActionOutcome]:
        return [o for o in self._outcomes if not o.ok]

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "total": len(self),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "outcomes": [o.model_dump(mode="json") for o in self._outcomes],
        }
