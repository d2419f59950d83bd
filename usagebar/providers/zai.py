"""
Z.ai (GLM Coding plan) quota via the web console's monitor endpoint.

Auth is the console's bearer token, pasted by hand. The endpoint wraps its
payload in {code, msg, data}; a non-200 code in the body is an upstream
error even when the HTTP status is 200.
"""

import logging

from ..errors import InvalidCredentials, NotConfigured, ParseError
from ..http import HttpClient, USER_AGENT, decode_json, is_auth_failure, raise_for_status
from ..models import AuthMethod, AuthState, Credentials, QuotaMetric, UsageSnapshot
from ..parsing import parse_timestamp, to_float
from .base import confirm_configuration, forget_credentials, require_secret, validate_by_fetching

log = logging.getLogger(__name__)

USAGE_URL = "https://api.z.ai/api/monitor/usage/quota/limit"

# limit type → (quota id, label, unit)
_KNOWN_LIMITS = {
    "TOKENS_LIMIT": ("session",       "Tokens (5 hour)", "tokens"),
    "TIME_LIMIT":   ("monthly_tools", "Tools (Monthly)", "uses"),
}


class ZaiProvider:
    id = "zhipu"
    display_name = "Z.ai"
    auth_method = AuthMethod.BEARER_TOKEN
    credential_instructions = [
        "1. Go to z.ai and sign in",
        "2. Open DevTools (Cmd+Option+I)",
        "3. Go to Network tab, then reload the page",
        "4. Click any request, go to Headers tab",
        '5. Find "authorization: Bearer eyJ..."',
        '6. Copy only the token (after "Bearer ")',
    ]

    def __init__(self, store, http: HttpClient | None = None):
        self.store = store
        self.http = http or HttpClient()
        self.auth_state = AuthState.not_configured()
        self.latest_usage: UsageSnapshot | None = None
        self._token = ""
        self._load_credentials()

    @property
    def is_authenticated(self) -> bool:
        return self.auth_state.is_authenticated

    def _load_credentials(self):
        creds = self.store.load(self.id)
        if creds is None:
            return
        self._token = (creds.bearer_token or "").strip()
        if self._token:
            self.auth_state = AuthState.authenticated()
            log.info("zhipu: loaded credentials from store")

    def configure(self, credentials: Credentials):
        token = require_secret(credentials.bearer_token)
        if token.lower().startswith("bearer "):
            token = token[7:].strip()
        self._token = token
        self.store.save(Credentials(provider_id=self.id, bearer_token=token))
        confirm_configuration(self)

    def fetch_usage(self) -> UsageSnapshot:
        if not self._token:
            raise NotConfigured()

        r = self.http.get(USAGE_URL, {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        })
        if is_auth_failure(r):
            self.auth_state = AuthState.failed("Token expired or invalid")
            raise InvalidCredentials()
        raise_for_status(r)

        snapshot = self._parse(decode_json(r))
        self.latest_usage = snapshot
        self.auth_state = AuthState.authenticated()
        return snapshot

    def clear_credentials(self):
        self._token = ""
        forget_credentials(self, self.store)

    def validate_credentials(self) -> bool:
        if not self._token:
            return False
        return validate_by_fetching(self)

    def _parse(self, body: dict) -> UsageSnapshot:
        code = body.get("code")
        if isinstance(code, int) and not isinstance(code, bool) and code != 200:
            message = body.get("msg") or body.get("message") or "Unknown error"
            raise ParseError(f"API error {code}: {message}")

        data = body.get("data")
        limits = data.get("limits") if isinstance(data, dict) else None
        quotas = []
        for limit in limits if isinstance(limits, list) else []:
            if not isinstance(limit, dict):
                continue
            kind = limit.get("type")
            if not isinstance(kind, str) or not kind:
                continue
            quota_id, label, unit = _KNOWN_LIMITS.get(
                kind, (kind.lower(), kind.replace("_", " ").title(), "units")
            )
            quotas.append(QuotaMetric(
                id=quota_id,
                name=label,
                percentage=to_float(limit.get("percentage")) or 0.0,
                used=to_float(limit.get("currentValue")) or 0.0,
                limit=to_float(limit.get("usage")) or 0.0,
                unit=unit,
                reset_time=_reset_from_ms(limit.get("nextResetTime")),
            ))

        if not quotas:
            log.warning("zhipu: no quota limits in response")
            quotas.append(QuotaMetric(id="session", name="Tokens (unknown)", unit="tokens"))
        log.debug("zhipu: parsed %d quotas", len(quotas))
        return UsageSnapshot(provider_id=self.id, quotas=quotas)


def _reset_from_ms(value):
    ms = to_float(value)
    if ms is None:
        return None
    return parse_timestamp(ms / 1000)
