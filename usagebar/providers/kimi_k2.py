"""
kimi-k2.ai credit balance via /api/user/credits.

The response shape has changed several times, so the numbers are probed
rather than decoded: a list of candidate objects (the body, then the usual
wrapper keys) is searched for each known alias in priority order and the
first numeric value wins.
"""

import logging

from ..errors import InvalidCredentials, NotConfigured
from ..http import HttpClient, USER_AGENT, decode_json, is_auth_failure, raise_for_status
from ..models import AuthMethod, AuthState, Credentials, QuotaMetric, UsageSnapshot
from ..parsing import to_float
from .base import confirm_configuration, forget_credentials, require_secret, validate_by_fetching

log = logging.getLogger(__name__)

CREDITS_URL = "https://kimi-k2.ai/api/user/credits"

CONSUMED_KEYS = (
    "total_credits_consumed", "totalCreditsConsumed",
    "total_credits_used", "totalCreditsUsed",
    "credits_consumed", "creditsConsumed",
    "consumedCredits", "usedCredits",
    "total",
)
REMAINING_KEYS = (
    "credits_remaining", "creditsRemaining",
    "remaining_credits", "remainingCredits",
    "available_credits", "availableCredits",
    "credits_left", "creditsLeft",
)
REMAINING_HEADER = "x-credits-remaining"


def build_contexts(body: dict) -> list[dict]:
    """Candidate objects in probe order."""
    contexts = [body]
    for wrapper in ("data", "result"):
        inner = body.get(wrapper)
        if isinstance(inner, dict):
            contexts.append(inner)
            for sub in ("usage", "credits"):
                if isinstance(inner.get(sub), dict):
                    contexts.append(inner[sub])
    for sub in ("usage", "credits"):
        if isinstance(body.get(sub), dict):
            contexts.append(body[sub])
    return contexts


def probe(contexts: list[dict], keys, usage_keys) -> float | None:
    """First numeric value for any alias, checking each context's usage block after its own keys."""
    for context in contexts:
        for key in keys:
            value = to_float(context.get(key))
            if value is not None:
                return value
        usage = context.get("usage")
        if isinstance(usage, dict):
            for key in usage_keys:
                value = to_float(usage.get(key))
                if value is not None:
                    return value
    return None


class KimiK2Provider:
    id = "kimik2"
    display_name = "Kimi K2"
    auth_method = AuthMethod.API_KEY
    credential_instructions = [
        "1. Go to kimi-k2.ai and sign in",
        "2. Navigate to your API settings or dashboard",
        "3. Generate or copy your API key",
        "4. Paste the API key below",
    ]

    def __init__(self, store, http: HttpClient | None = None):
        self.store = store
        self.http = http or HttpClient()
        self.auth_state = AuthState.not_configured()
        self.latest_usage: UsageSnapshot | None = None
        self._api_key = ""
        self._load_credentials()

    @property
    def is_authenticated(self) -> bool:
        return self.auth_state.is_authenticated

    def _load_credentials(self):
        creds = self.store.load(self.id)
        if creds is None:
            return
        self._api_key = (creds.api_key or "").strip()
        if self._api_key:
            self.auth_state = AuthState.authenticated()
            log.info("kimik2: loaded credentials from store")

    def configure(self, credentials: Credentials):
        key = require_secret(credentials.api_key)
        self._api_key = key
        self.store.save(Credentials(provider_id=self.id, api_key=key))
        confirm_configuration(self)

    def fetch_usage(self) -> UsageSnapshot:
        if not self._api_key:
            raise NotConfigured()

        r = self.http.get(CREDITS_URL, {
            "Authorization": f"Bearer {self._api_key}",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        })
        if is_auth_failure(r):
            self.auth_state = AuthState.failed("Invalid API key")
            raise InvalidCredentials()
        raise_for_status(r)

        snapshot = self._parse(decode_json(r), r.headers)
        self.latest_usage = snapshot
        self.auth_state = AuthState.authenticated()
        return snapshot

    def clear_credentials(self):
        self._api_key = ""
        forget_credentials(self, self.store)

    def validate_credentials(self) -> bool:
        if not self._api_key:
            return False
        return validate_by_fetching(self)

    def _parse(self, body: dict, headers) -> UsageSnapshot:
        contexts = build_contexts(body)
        consumed = probe(contexts, CONSUMED_KEYS, ("total", "consumed"))
        remaining = probe(contexts, REMAINING_KEYS, ("credits_remaining", "remaining"))
        if not remaining:
            from_header = to_float((headers or {}).get(REMAINING_HEADER))
            if from_header is not None:
                remaining = from_header

        if consumed is None and remaining is None:
            log.warning("kimik2: no credit fields in response (keys: %s)", list(body))
            quota = QuotaMetric(id="credits", name="Credits (unknown)", unit="credits")
            return UsageSnapshot(provider_id=self.id, quotas=[quota])

        consumed = consumed or 0.0
        remaining = max(0.0, remaining or 0.0)
        total = consumed + remaining
        pct = min(100.0, max(0.0, consumed / total * 100)) if total > 0 else 0.0
        log.debug("kimik2: consumed=%s remaining=%s pct=%.1f", consumed, remaining, pct)
        quota = QuotaMetric(
            id="credits",
            name="Credits",
            percentage=pct,
            used=consumed,
            limit=total if total > 0 else None,
            unit="credits",
        )
        return UsageSnapshot(provider_id=self.id, quotas=[quota])
