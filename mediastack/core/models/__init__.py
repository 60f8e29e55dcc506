"""
Domain models — Pydantic types for the setup engine.

All models are re-exported here for convenient access:

    from mediastack.core.models import StackConfig, ActionOutcome, ResultLedger
"""

from mediastack.core.models.outcome import ActionOutcome, ResultLedger
from mediastack.core.models.stack import (
    SERVICE_ENDPOINTS,
    HttpSettings,
    ProbeEndpoint,
    QBittorrentSettings,
    SetupSettings,
    StackConfig,
    WebhookSettings,
)

__all__ = [
    # outcome.py
    "ActionOutcome",
    "ResultLedger",
    # stack.py
    "HttpSettings",
    "ProbeEndpoint",
    "QBittorrentSettings",
    "SERVICE_ENDPOINTS",
    "SetupSettings",
    "StackConfig",
    "WebhookSettings",
]
