from __future__ import annotations

import os

from campusmart.integrations.messaging.base import IntegrationMisconfiguredError, MessagingProvider
from campusmart.integrations.messaging.log_provider import LogMessagingProvider
from campusmart.integrations.messaging.mock_provider import MockMessagingProvider

_PROVIDERS = {
    "log": LogMessagingProvider,
    "mock": MockMessagingProvider,
}


def build_messaging_provider(name: str | None = None) -> MessagingProvider:
    key = (name or os.getenv("NOTIFY_PROVIDER") or "log").strip().lower()
    provider_cls = _PROVIDERS.get(key)
    if provider_cls is None:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:unknown notify provider {key}")
    return provider_cls()
