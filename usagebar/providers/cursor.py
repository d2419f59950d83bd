"""
Cursor IDE usage via cursor.com's dashboard endpoints (WorkOS session cookie).

Three calls per refresh:
  /api/usage-summary   plan / on-demand spend, in cents       (required)
  /api/auth/me         user info, for the user id ("sub")     (required)
  /api/usage?user=...  legacy per-model request counts        (best effort)
"""

import json
import logging
from decimal import Decimal
from urllib.parse import quote

from ..errors import InvalidCredentials, NotConfigured, ProviderError
from ..http import HttpClient, USER_AGENT, decode_json, is_auth_failure, raise_for_status
from ..models import AuthMethod, AuthState, Credentials, QuotaMetric, UsageSnapshot
from ..parsing import as_dict, parse_timestamp, to_float
from .base import confirm_configuration, forget_credentials, require_secret, validate_by_fetching

log = logging.getLogger(__name__)

BASE_URL = "https://cursor.com"

_SESSION_COOKIE_NAMES = (
    "WorkosCursorSessionToken",
    "__Secure-next-auth.session-token",
    "next-auth.session-token",
)


def build_cookie_header(raw: str) -> str:
    """Pass a full cookie header through; wrap a bare token value."""
    trimmed = raw.strip()
    for name in _SESSION_COOKIE_NAMES:
        if f"{name}=" in trimmed:
            return trimmed
    return f"WorkosCursorSessionToken={trimmed}"


def _cents(value) -> float:
    return (to_float(value) or 0.0) / 100


def _as_percent(value) -> float | None:
    """Cursor reports some percentages as 0-1 fractions and some as 0-100."""
    pct = to_float(value)
    if pct is None:
        return None
    return pct * 100 if pct <= 1.0 else pct


class CursorProvider:
    id = "cursor"
    display_name = "Cursor"
    auth_method = AuthMethod.COOKIE
    credential_instructions = [
        "1. Open cursor.com in your browser and sign in",
        "2. Press F12 (or Cmd+Option+I) to open DevTools",
        "3. Go to Application tab, then Cookies",
        "4. Find the cookie named WorkosCursorSessionToken",
        "5. Copy the full cookie value",
        "6. If not found, try __Secure-next-auth.session-token",
    ]

    def __init__(self, store, http: HttpClient | None = None):
        self.store = store
        self.http = http or HttpClient()
        self.auth_state = AuthState.not_configured()
        self.latest_usage: UsageSnapshot | None = None
        self._cookie = ""
        self._user_id: str | None = None
        self._load_credentials()

    @property
    def is_authenticated(self) -> bool:
        return self.auth_state.is_authenticated

    def _load_credentials(self):
        creds = self.store.load(self.id)
        if creds is None:
            return
        self._cookie = (creds.cookie or "").strip()
        if self._cookie:
            self.auth_state = AuthState.authenticated()
            log.info("cursor: loaded credentials from store")

    def configure(self, credentials: Credentials):
        cookie = require_secret(credentials.cookie)
        self._cookie = cookie
        self._user_id = None
        self.store.save(Credentials(provider_id=self.id, cookie=cookie))
        confirm_configuration(self)

    def fetch_usage(self) -> UsageSnapshot:
        if not self._cookie:
            raise NotConfigured()

        summary = self._fetch_summary()
        user = self._fetch_user_info()
        sub = user.get("sub")
        if isinstance(sub, str) and sub:
            self._user_id = sub
        legacy = self._fetch_legacy_usage(self._user_id) if self._user_id else None

        snapshot = self._parse(summary, legacy)
        self.latest_usage = snapshot
        self.auth_state = AuthState.authenticated()
        return snapshot

    def clear_credentials(self):
        self._cookie = ""
        self._user_id = None
        forget_credentials(self, self.store)

    def validate_credentials(self) -> bool:
        if not self._cookie:
            return False
        return validate_by_fetching(self)

    # ── requests ─────────────────────────────────────────────────────────────

    def _headers(self, referer: str | None = None) -> dict:
        h = {
            "Cookie": build_cookie_header(self._cookie),
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        if referer:
            h["Origin"] = BASE_URL
            h["Referer"] = referer
        return h

    def _fetch_summary(self) -> dict:
        r = self.http.get(
            f"{BASE_URL}/api/usage-summary",
            self._headers(referer=f"{BASE_URL}/dashboard?tab=usage"),
        )
        if is_auth_failure(r):
            self.auth_state = AuthState.failed("Session expired")
            raise InvalidCredentials()
        raise_for_status(r)
        return decode_json(r)

    def _fetch_user_info(self) -> dict:
        r = self.http.get(f"{BASE_URL}/api/auth/me", self._headers())
        if is_auth_failure(r):
            self.auth_state = AuthState.failed("Session expired")
            raise InvalidCredentials()
        raise_for_status(r)
        try:
            data = json.loads(r.text)
        except (json.JSONDecodeError, TypeError):
            log.debug("cursor: /api/auth/me body not JSON, continuing without user info")
            return {}
        return data if isinstance(data, dict) else {}

    def _fetch_legacy_usage(self, user_id: str) -> dict | None:
        try:
            r = self.http.get(
                f"{BASE_URL}/api/usage?user={quote(user_id)}", self._headers()
            )
            if r.status_code != 200:
                log.debug("cursor: legacy usage returned %s", r.status_code)
                return None
            return decode_json(r)
        except ProviderError as e:
            log.debug("cursor: legacy usage unavailable: %s", e)
            return None

    # ── parsing ──────────────────────────────────────────────────────────────

    def _parse(self, summary: dict, legacy: dict | None) -> UsageSnapshot:
        reset = parse_timestamp(summary.get("billingCycleEnd"))
        individual = as_dict(summary.get("individualUsage"))
        quotas = []
        total_cost = None

        gpt4 = as_dict(as_dict(legacy).get("gpt-4"))
        max_requests = to_float(gpt4.get("maxRequestUsage"))
        if max_requests and max_requests > 0:
            used = to_float(gpt4.get("numRequests")) or 0.0
            quotas.append(QuotaMetric(
                id="requests", name="GPT-4 Requests",
                percentage=used / max_requests * 100,
                used=used, limit=max_requests, unit="requests", reset_time=reset,
            ))

        plan = individual.get("plan")
        if isinstance(plan, dict) and plan.get("enabled") is not False:
            quotas.extend(self._plan_quotas(plan, summary.get("membershipType"), reset))

        on_demand = individual.get("onDemand")
        if isinstance(on_demand, dict) and on_demand.get("enabled") is True:
            row = _spend_quota(on_demand, "on_demand", "On-Demand", reset)
            total_cost = Decimal(str(row.used))
            quotas.append(row)

        team_on_demand = as_dict(summary.get("teamUsage")).get("onDemand")
        if isinstance(team_on_demand, dict) and team_on_demand.get("enabled") is True:
            quotas.append(_spend_quota(team_on_demand, "team_on_demand", "Team On-Demand", reset))

        if not quotas:
            log.warning("cursor: no usage data in summary (keys: %s)", list(summary))
            quotas.append(QuotaMetric(id="plan", name="Plan Usage (unknown)", unit="%"))
        log.debug("cursor: parsed %d quotas", len(quotas))
        return UsageSnapshot(provider_id=self.id, quotas=quotas, total_cost=total_cost)

    @staticmethod
    def _plan_quotas(plan: dict, membership: str | None, reset) -> list[QuotaMetric]:
        used_usd = _cents(plan.get("used"))
        limit_usd = _cents(plan.get("limit"))

        if limit_usd > 0:
            pct = used_usd / limit_usd * 100
        else:
            pct = _as_percent(plan.get("totalPercentUsed"))
            if pct is None:
                pct = _as_percent(plan.get("autoPercentUsed")) or 0.0

        rows = [QuotaMetric(
            id="plan",
            name=f"{membership} Plan" if membership else "Plan Usage",
            percentage=pct,
            used=used_usd if limit_usd > 0 else None,
            limit=limit_usd if limit_usd > 0 else None,
            unit="USD" if limit_usd > 0 else "%",
            reset_time=reset,
        )]

        for key, quota_id, label in (
            ("autoPercentUsed", "auto", "Auto"),
            ("apiPercentUsed",  "api",  "API"),
        ):
            share = to_float(plan.get(key))
            if share is not None:
                rows.append(QuotaMetric(
                    id=quota_id, name=label, percentage=min(100.0, share),
                    unit="%", reset_time=reset,
                ))

        bonus = to_float(as_dict(plan.get("breakdown")).get("bonus"))
        if bonus and bonus > 0:
            rows.append(QuotaMetric(
                id="bonus", name="Bonus Credits", used=bonus / 100,
                unit="USD", reset_time=reset,
            ))
        return rows


def _spend_quota(block: dict, quota_id: str, label: str, reset) -> QuotaMetric:
    used_cents = to_float(block.get("used")) or 0.0
    limit_cents = to_float(block.get("limit"))
    pct = None
    limit_usd = None
    if limit_cents and limit_cents > 0:
        pct = used_cents / limit_cents * 100
        limit_usd = limit_cents / 100
    return QuotaMetric(
        id=quota_id, name=label, percentage=pct,
        used=used_cents / 100, limit=limit_usd, unit="USD", reset_time=reset,
    )
