"""
The contract every provider integration satisfies, and the registry that
holds them.

There is no base class: each provider is its own small type and
pulls in the helpers below (plus usagebar.http / usagebar.parsing) by
composition.
"""

import logging
from typing import Protocol, runtime_checkable

from ..errors import CredentialStoreError, InvalidCredentials, ProviderError, UnknownError
from ..models import AuthMethod, AuthState, Credentials, UsageSnapshot

log = logging.getLogger(__name__)


@runtime_checkable
class Provider(Protocol):
    id: str
    display_name: str
    auth_method: AuthMethod
    credential_instructions: list[str]
    auth_state: AuthState
    latest_usage: UsageSnapshot | None

    @property
    def is_authenticated(self) -> bool: ...

    def configure(self, credentials: Credentials) -> None:
        """Store the secret, validate with one real fetch, raise on failure."""

    def fetch_usage(self) -> UsageSnapshot:
        """Fetch and parse current usage; raises a ProviderError."""

    def clear_credentials(self) -> None:
        """Forget the secret in memory and in the store. Never raises."""

    def validate_credentials(self) -> bool: ...


# ── shared helpers ────────────────────────────────────────────────────────────

def require_secret(value: str | None) -> str:
    """Clean a pasted secret, rejecting empty input."""
    if value is None:
        raise InvalidCredentials()
    cleaned = value.strip().strip("\"'").strip()
    if not cleaned:
        raise InvalidCredentials()
    return cleaned


def confirm_configuration(provider) -> None:
    """Validating → one real fetch → Authenticated, or Failed and re-raise."""
    provider.auth_state = AuthState.validating()
    try:
        provider.fetch_usage()
    except ProviderError as e:
        provider.auth_state = AuthState.failed(str(e))
        log.info("%s: configuration failed: %s", provider.id, e)
        raise
    except Exception as e:
        log.exception("%s: unexpected error while configuring", provider.id)
        error = UnknownError(str(e) or type(e).__name__)
        provider.auth_state = AuthState.failed(str(error))
        raise error from e
    provider.auth_state = AuthState.authenticated()
    log.info("%s: configured successfully", provider.id)


def validate_by_fetching(provider) -> bool:
    try:
        provider.fetch_usage()
    except ProviderError as e:
        log.debug("%s: validation failed: %s", provider.id, e)
        return False
    return True


def forget_credentials(provider, store) -> None:
    """Tail of clear_credentials: reset state, then drop the stored record."""
    provider.latest_usage = None
    provider.auth_state = AuthState.not_configured()
    try:
        store.delete(provider.id)
    except CredentialStoreError:
        # memory is already reset; the caller still sees a cleared provider
        log.exception("%s: could not delete stored credentials", provider.id)
    log.info("%s: credentials cleared", provider.id)


# ── registry ──────────────────────────────────────────────────────────────────

class ProviderRegistry:
    """Providers keyed by id, iterated in registration order."""

    def __init__(self):
        self._providers: dict[str, Provider] = {}

    def register(self, provider: Provider):
        if provider.id in self._providers:
            raise ValueError(f"provider {provider.id!r} already registered")
        self._providers[provider.id] = provider

    def get(self, provider_id: str) -> Provider | None:
        return self._providers.get(provider_id)

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def __iter__(self):
        return iter(list(self._providers.values()))

    def __len__(self) -> int:
        return len(self._providers)

    def all(self) -> list[Provider]:
        return list(self._providers.values())

    def ids(self) -> list[str]:
        return list(self._providers)

    def enabled(self, enabled_ids) -> list[Provider]:
        return [p for p in self._providers.values() if p.id in enabled_ids]

    def authenticated(self) -> list[Provider]:
        return [p for p in self._providers.values() if p.is_authenticated]
