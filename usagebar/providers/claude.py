"""
claude.ai plan usage via the web app's own endpoints.

Auth is the browser cookie, sent as-is. Usage lives under the organization,
so the org id is taken from the lastActiveOrg cookie field when present and
otherwise looked up once per provider lifetime.

Usage response shape (confirmed):
  five_hour        → Current session      {utilization: 0-100, resets_at: ISO}
  seven_day        → Weekly, all models
  seven_day_sonnet → Weekly, Sonnet only  (Pro plans)
"""

import json
import logging

from ..errors import InvalidCredentials, NotConfigured, ParseError
from ..http import (
    HttpClient, USER_AGENT, cookie_value, decode_json, is_auth_failure, raise_for_status,
)
from ..models import AuthMethod, AuthState, Credentials, QuotaMetric, UsageSnapshot
from ..parsing import as_dict, as_list, parse_timestamp, to_float
from .base import confirm_configuration, forget_credentials, require_secret, validate_by_fetching

log = logging.getLogger(__name__)

BASE_URL = "https://claude.ai"

_BUCKETS = (
    ("five_hour",        "session",       "Session (5 hour)"),
    ("seven_day",        "weekly",        "Weekly (7 day)"),
    ("seven_day_sonnet", "weekly_sonnet", "Weekly Sonnet (7 day)"),
)


class ClaudeProvider:
    id = "claude"
    display_name = "Claude"
    auth_method = AuthMethod.COOKIE
    credential_instructions = [
        "1. Go to Settings > Usage on claude.ai",
        "2. Press F12 (or Cmd+Option+I)",
        "3. Go to Network tab",
        "4. Refresh page, click 'usage' request",
        "5. Find 'Cookie' in Request Headers",
        "6. Copy full cookie value (starts with anthropic-device-id=...)",
    ]

    def __init__(self, store, http: HttpClient | None = None):
        self.store = store
        self.http = http or HttpClient()
        self.auth_state = AuthState.not_configured()
        self.latest_usage: UsageSnapshot | None = None
        self._cookie = ""
        self._org_id: str | None = None
        self._load_credentials()

    @property
    def is_authenticated(self) -> bool:
        return self.auth_state.is_authenticated

    def _load_credentials(self):
        creds = self.store.load(self.id)
        if creds is None:
            return
        self._cookie = (creds.cookie or "").strip()
        self._org_id = creds.organization_id
        if self._cookie:
            self.auth_state = AuthState.authenticated()
            log.info("claude: loaded credentials from store")

    # ── contract ─────────────────────────────────────────────────────────────

    def configure(self, credentials: Credentials):
        cookie = require_secret(credentials.cookie)
        self._cookie = cookie
        self._org_id = credentials.organization_id
        self.store.save(Credentials(
            provider_id=self.id,
            cookie=cookie,
            organization_id=credentials.organization_id,
            additional_data=dict(credentials.additional_data),
        ))
        confirm_configuration(self)

    def fetch_usage(self) -> UsageSnapshot:
        if not self._cookie:
            raise NotConfigured()
        if not self._org_id:
            self._org_id = self._find_org_id()

        r = self.http.get(
            f"{BASE_URL}/api/organizations/{self._org_id}/usage", self._headers()
        )
        if is_auth_failure(r):
            self.auth_state = AuthState.failed("Session expired")
            raise InvalidCredentials()
        raise_for_status(r)

        snapshot = self._parse_usage(decode_json(r))
        self.latest_usage = snapshot
        self.auth_state = AuthState.authenticated()
        return snapshot

    def clear_credentials(self):
        self._cookie = ""
        self._org_id = None
        forget_credentials(self, self.store)

    def validate_credentials(self) -> bool:
        if not self._cookie:
            return False
        return validate_by_fetching(self)

    # ── handshake ────────────────────────────────────────────────────────────

    def _cookie_header(self) -> str:
        # a bare value pasted from the Application tab is the sessionKey
        if "=" not in self._cookie:
            return f"sessionKey={self._cookie}"
        return self._cookie

    def _headers(self) -> dict:
        return {
            "Cookie": self._cookie_header(),
            "Accept": "*/*",
            "Content-Type": "application/json",
            "Origin": BASE_URL,
            "Referer": f"{BASE_URL}/settings/usage",
            "User-Agent": USER_AGENT,
        }

    def _find_org_id(self) -> str:
        org_id = cookie_value(self._cookie, "lastActiveOrg")
        if org_id:
            log.debug("claude: org id from cookie")
            return org_id

        for path in ("/api/bootstrap", "/api/organizations"):
            r = self.http.get(f"{BASE_URL}{path}", self._headers())
            if is_auth_failure(r):
                self.auth_state = AuthState.failed("Session expired")
                raise InvalidCredentials()
            if r.status_code != 200:
                log.debug("claude: %s returned %s", path, r.status_code)
                continue
            try:
                org_id = _org_id_from_payload(decode_json(r))
            except ParseError:
                # /api/organizations answers with a bare list
                org_id = _org_id_from_list(r)
            if org_id:
                log.debug("claude: org id from %s", path)
                return org_id
        raise ParseError("Could not find organization id")

    # ── parsing ──────────────────────────────────────────────────────────────

    def _parse_usage(self, data: dict) -> UsageSnapshot:
        quotas = []
        for key, quota_id, label in _BUCKETS:
            bucket = data.get(key)
            if not isinstance(bucket, dict):
                continue
            quotas.append(QuotaMetric(
                id=quota_id,
                name=label,
                percentage=min(100.0, to_float(bucket.get("utilization")) or 0.0),
                unit="%",
                reset_time=parse_timestamp(bucket.get("resets_at")),
            ))
        if not quotas:
            log.warning("claude: no known usage buckets in response (keys: %s)", list(data))
            quotas.append(QuotaMetric(id="session", name="Session (unknown)", unit="%"))
        log.debug("claude: parsed %d quotas", len(quotas))
        return UsageSnapshot(provider_id=self.id, quotas=quotas)


def _org_id_from_payload(data: dict) -> str | None:
    account = as_dict(data.get("account"))
    memberships = as_list(account.get("memberships"))
    first = as_dict(memberships[0]) if memberships else {}
    for candidate in (
        account.get("lastActiveOrgId"),
        data.get("organization_id"),
        data.get("org_id"),
        as_dict(first.get("organization")).get("uuid"),
    ):
        if isinstance(candidate, str) and candidate:
            return candidate
    return None


def _org_id_from_list(response) -> str | None:
    try:
        data = json.loads(response.text)
    except (json.JSONDecodeError, TypeError):
        return None
    if isinstance(data, list) and data and isinstance(data[0], dict):
        for key in ("uuid", "id"):
            value = data[0].get(key)
            if isinstance(value, str) and value:
                return value
    return None
