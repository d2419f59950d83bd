"""
Kimi Code console usage via the billing gateway's GetUsages RPC.

The user pastes the kimi-auth cookie value; the gateway wants it as a bearer
token. Numbers in the response are strings ("limit": "100").
"""

import logging

from ..errors import InvalidCredentials, NotConfigured
from ..http import HttpClient, USER_AGENT, decode_json, is_auth_failure, raise_for_status
from ..models import AuthMethod, AuthState, Credentials, QuotaMetric, UsageSnapshot
from ..parsing import as_dict, as_list, parse_timestamp, to_float
from .base import confirm_configuration, forget_credentials, require_secret, validate_by_fetching

log = logging.getLogger(__name__)

USAGE_URL = "https://www.kimi.com/apiv2/kimi.gateway.billing.v1.BillingService/GetUsages"
CODING_SCOPE = "FEATURE_CODING"


class KimiProvider:
    id = "kimi"
    display_name = "Kimi"
    auth_method = AuthMethod.COOKIE
    credential_instructions = [
        "1. Go to kimi.com/code/console",
        "2. Press F12 (or Cmd+Option+I)",
        "3. Go to Application > Cookies",
        "4. Copy the 'kimi-auth' cookie value",
        "5. Paste the token below",
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
        self._token = (creds.cookie or "").strip()
        if self._token:
            self.auth_state = AuthState.authenticated()
            log.info("kimi: loaded credentials from store")

    def configure(self, credentials: Credentials):
        token = require_secret(credentials.cookie)
        # a full "kimi-auth=..." pair is accepted too
        if token.startswith("kimi-auth="):
            token = token.partition("=")[2].split(";")[0].strip()
        log.debug("kimi: configuring with token of length %d", len(token))
        self._token = token
        self.store.save(Credentials(provider_id=self.id, cookie=token))
        confirm_configuration(self)

    def fetch_usage(self) -> UsageSnapshot:
        if not self._token:
            raise NotConfigured()

        r = self.http.post(USAGE_URL, {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
            "Accept": "application/json, text/plain, */*",
            "Origin": "https://www.kimi.com",
            "Referer": "https://www.kimi.com/code/console",
            "User-Agent": USER_AGENT,
        }, json_body={})
        if is_auth_failure(r):
            self.auth_state = AuthState.failed("Invalid or expired token")
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

    def _parse(self, data: dict) -> UsageSnapshot:
        quotas = []
        for usage in as_list(data.get("usages")):
            if not isinstance(usage, dict) or usage.get("scope") != CODING_SCOPE:
                continue
            if isinstance(usage.get("detail"), dict):
                quotas.append(_detail_quota(usage["detail"], "weekly", "Weekly"))
            for limit in as_list(usage.get("limits")):
                if not isinstance(limit, dict) or not isinstance(limit.get("detail"), dict):
                    continue
                window = as_dict(limit.get("window"))
                if (window.get("timeUnit") == "TIME_UNIT_MINUTE"
                        and to_float(window.get("duration")) == 300):
                    quotas.append(_detail_quota(limit["detail"], "rateLimit", "Rate Limit (5h)"))

        if not quotas:
            log.warning("kimi: no coding usage in response (keys: %s)", list(data))
            quotas.append(QuotaMetric(id="weekly", name="Weekly (unknown)", unit="requests"))
        log.debug("kimi: parsed %d quotas", len(quotas))
        return UsageSnapshot(provider_id=self.id, quotas=quotas)


def _detail_quota(detail: dict, quota_id: str, label: str) -> QuotaMetric:
    limit = to_float(detail.get("limit")) or 0.0
    used = to_float(detail.get("used"))
    if used is None:
        remaining = to_float(detail.get("remaining"))
        used = limit - remaining if remaining is not None and limit > 0 else 0.0
    return QuotaMetric(
        id=quota_id,
        name=label,
        percentage=used / limit * 100 if limit > 0 else 0.0,
        used=used,
        limit=limit,
        unit="requests",
        reset_time=parse_timestamp(detail.get("resetTime")),
    )
