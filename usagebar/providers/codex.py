"""
ChatGPT Codex rate limits via chatgpt.com/backend-api/wham/usage.

Handshake: the session cookie buys a short-lived bearer token from
/api/auth/session. The usage call needs that token plus an oai-device-id
header that must match the oai-did cookie; when the cookie has none, a
random id is generated once and persisted with the credentials so it stays
stable across restarts.

A 401/403 from the usage endpoint gets exactly one token refresh and one
retry. A second rejection ends the fetch as "Session expired".

Confirmed shape (2026-02):
  rate_limit.primary_window.used_percent     (0-100)
  rate_limit.primary_window.reset_at         (Unix timestamp)
  rate_limit.secondary_window                 (same, 7-day window)
  code_review_rate_limit.primary_window      (same structure)
  additional_rate_limits                     list of {name, primary_window}
"""

import logging
import uuid

from ..errors import CredentialStoreError, InvalidCredentials, NotConfigured
from ..http import (
    HttpClient, USER_AGENT, cookie_value, decode_json, is_auth_failure, raise_for_status,
)
from ..models import AuthMethod, AuthState, Credentials, QuotaMetric, UsageSnapshot
from ..parsing import as_list, parse_timestamp, to_float
from .base import confirm_configuration, forget_credentials, require_secret, validate_by_fetching

log = logging.getLogger(__name__)

SESSION_URL = "https://chatgpt.com/api/auth/session"
USAGE_URL = "https://chatgpt.com/backend-api/wham/usage"
DEVICE_ID_KEY = "deviceId"


class CodexProvider:
    id = "codex"
    display_name = "Codex"
    auth_method = AuthMethod.COOKIE
    credential_instructions = [
        "1. Go to chatgpt.com/codex",
        "2. Press F12 (or Cmd+Option+I)",
        "3. Go to Network tab",
        "4. Look for 'wham/usage' request",
        "5. Find 'Cookie' in Request Headers",
        "6. Copy full cookie value",
    ]

    def __init__(self, store, http: HttpClient | None = None):
        self.store = store
        self.http = http or HttpClient()
        self.auth_state = AuthState.not_configured()
        self.latest_usage: UsageSnapshot | None = None
        self._cookie = ""
        self._device_id = ""
        self._access_token = ""
        self._load_credentials()

    @property
    def is_authenticated(self) -> bool:
        return self.auth_state.is_authenticated

    def _load_credentials(self):
        creds = self.store.load(self.id)
        if creds is None or not creds.cookie:
            return
        self._cookie = creds.cookie.strip()
        stored = creds.additional_data.get(DEVICE_ID_KEY, "")
        self._device_id = self._resolve_device_id(self._cookie, stored)
        if self._device_id != stored:
            creds.additional_data[DEVICE_ID_KEY] = self._device_id
            try:
                self.store.save(creds)
            except CredentialStoreError as e:
                log.warning("codex: could not persist device id: %s", e)
        self.auth_state = AuthState.authenticated()
        log.info("codex: loaded credentials from store")

    # ── contract ─────────────────────────────────────────────────────────────

    def configure(self, credentials: Credentials):
        cookie = require_secret(credentials.cookie)
        log.debug("codex: configuring with cookie of length %d", len(cookie))
        self._cookie = cookie
        self._access_token = ""
        self._device_id = self._resolve_device_id(
            cookie, credentials.additional_data.get(DEVICE_ID_KEY, "")
        )
        additional = dict(credentials.additional_data)
        additional[DEVICE_ID_KEY] = self._device_id
        self.store.save(Credentials(
            provider_id=self.id, cookie=cookie, additional_data=additional,
        ))
        confirm_configuration(self)

    def fetch_usage(self) -> UsageSnapshot:
        if not self._cookie:
            raise NotConfigured()
        if not self._access_token:
            log.debug("codex: no access token yet, fetching one")
            self._access_token = self._fetch_access_token()

        r = self.http.get(USAGE_URL, self._usage_headers())
        if is_auth_failure(r):
            log.info("codex: usage returned %s, refreshing token once", r.status_code)
            r = self._refresh_and_retry()
        raise_for_status(r)

        snapshot = self._parse_usage(decode_json(r))
        self.latest_usage = snapshot
        self.auth_state = AuthState.authenticated()
        return snapshot

    def clear_credentials(self):
        self._cookie = ""
        self._device_id = ""
        self._access_token = ""
        forget_credentials(self, self.store)

    def validate_credentials(self) -> bool:
        if not self._cookie:
            return False
        return validate_by_fetching(self)

    # ── handshake ────────────────────────────────────────────────────────────

    @staticmethod
    def _resolve_device_id(cookie: str, stored: str) -> str:
        """oai-did cookie field, else the persisted id, else a fresh UUID."""
        from_cookie = cookie_value(cookie, "oai-did")
        if from_cookie:
            return from_cookie
        if stored:
            return stored
        fresh = str(uuid.uuid4())
        log.debug("codex: generated new device id")
        return fresh

    def _fetch_access_token(self) -> str:
        r = self.http.get(SESSION_URL, {
            "Cookie": self._cookie,
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        })
        if is_auth_failure(r):
            self.auth_state = AuthState.failed("Session expired")
            raise InvalidCredentials()
        raise_for_status(r)
        token = decode_json(r).get("accessToken")
        if not isinstance(token, str) or not token:
            # /api/auth/session answers 200 {} when the cookie is logged out
            log.info("codex: session has no access token (not logged in)")
            self.auth_state = AuthState.failed("Session expired")
            raise InvalidCredentials()
        return token

    def _refresh_and_retry(self):
        try:
            self._access_token = self._fetch_access_token()
        except InvalidCredentials:
            self._access_token = ""
            raise
        r = self.http.get(USAGE_URL, self._usage_headers())
        if is_auth_failure(r):
            self._access_token = ""
            self.auth_state = AuthState.failed("Session expired")
            raise InvalidCredentials()
        return r

    def _usage_headers(self) -> dict:
        return {
            "Cookie": self._cookie,
            "Accept": "*/*",
            "Origin": "https://chatgpt.com",
            "Referer": "https://chatgpt.com/codex",
            "User-Agent": USER_AGENT,
            "oai-device-id": self._device_id,
            "oai-language": "en-US",
            "Authorization": f"Bearer {self._access_token}",
        }

    # ── parsing ──────────────────────────────────────────────────────────────

    def _parse_usage(self, data: dict) -> UsageSnapshot:
        quotas = []
        rate_limit = data.get("rate_limit")
        if isinstance(rate_limit, dict):
            for key, quota_id, label in (
                ("primary_window", "primary", "Primary (5 hour)"),
                ("secondary_window", "weekly", "Weekly (7 day)"),
            ):
                row = _window_quota(rate_limit.get(key), quota_id, label)
                if row:
                    quotas.append(row)

        code_review = data.get("code_review_rate_limit")
        if isinstance(code_review, dict):
            row = _window_quota(
                code_review.get("primary_window"), "code_review", "Code Review (weekly)"
            )
            if row:
                quotas.append(row)

        for extra in as_list(data.get("additional_rate_limits")):
            if not isinstance(extra, dict):
                continue
            name = str(extra.get("name") or extra.get("type") or "extra")
            row = _window_quota(
                extra.get("primary_window"), name.lower(), name.replace("_", " ").title()
            )
            if row:
                quotas.append(row)

        if not quotas:
            log.warning("codex: no rate limit data in response (keys: %s)", list(data))
            quotas.append(QuotaMetric(id="primary", name="Rate limit (unknown)", unit="%"))
        log.debug("codex: parsed %d quotas", len(quotas))
        return UsageSnapshot(provider_id=self.id, quotas=quotas)


def _window_quota(window, quota_id: str, label: str) -> QuotaMetric | None:
    if not isinstance(window, dict):
        return None
    return QuotaMetric(
        id=quota_id,
        name=label,
        percentage=min(100.0, to_float(window.get("used_percent")) or 0.0),
        unit="%",
        reset_time=parse_timestamp(window.get("reset_at")),
    )
