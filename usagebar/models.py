"""
Value types shared by providers, the usage manager and the notification tracker.

A provider turns whatever its upstream returns into a UsageSnapshot made of
QuotaMetric rows; everything downstream only ever looks at these.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum


class AuthMethod(Enum):
    COOKIE = "cookie"
    API_KEY = "apiKey"
    BEARER_TOKEN = "bearerToken"
    NONE = "none"


class AuthStatus(Enum):
    NOT_CONFIGURED = "not_configured"
    VALIDATING = "validating"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass(frozen=True)
class AuthState:
    status: AuthStatus
    reason: str | None = None   # only set for FAILED

    @classmethod
    def not_configured(cls) -> "AuthState":
        return cls(AuthStatus.NOT_CONFIGURED)

    @classmethod
    def validating(cls) -> "AuthState":
        return cls(AuthStatus.VALIDATING)

    @classmethod
    def authenticated(cls) -> "AuthState":
        return cls(AuthStatus.AUTHENTICATED)

    @classmethod
    def failed(cls, reason: str) -> "AuthState":
        return cls(AuthStatus.FAILED, reason)

    @property
    def is_authenticated(self) -> bool:
        return self.status is AuthStatus.AUTHENTICATED

    def __str__(self) -> str:
        if self.status is AuthStatus.FAILED:
            return f"failed: {self.reason}"
        return self.status.value.replace("_", " ")


@dataclass(frozen=True)
class QuotaMetric:
    id: str
    name: str
    percentage: float | None = None   # 0–100 when the upstream reports it
    used: float | None = None
    limit: float | None = None
    unit: str = "%"                   # "%", "tokens", "USD", "requests", ...
    reset_time: datetime | None = None

    @property
    def computed_percentage(self) -> float:
        """Reported percentage, else used/limit, else 0."""
        if self.percentage is not None:
            return self.percentage
        if self.used is None or self.limit is None or self.limit <= 0:
            return 0.0
        return self.used / self.limit * 100


@dataclass(frozen=True)
class UsageSnapshot:
    provider_id: str
    quotas: tuple[QuotaMetric, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_cost: Decimal | None = None   # USD

    def __post_init__(self):
        # accept any iterable of quotas but keep the snapshot immutable
        object.__setattr__(self, "quotas", tuple(self.quotas))

    @property
    def primary_quota(self) -> QuotaMetric | None:
        """Quota with the highest usage; the first one wins a tie."""
        best = None
        for quota in self.quotas:
            if best is None or quota.computed_percentage > best.computed_percentage:
                best = quota
        return best

    @property
    def max_usage_percentage(self) -> float:
        return max((q.computed_percentage for q in self.quotas), default=0.0)

    def preferred_quota(self, quota_id: str | None = None) -> QuotaMetric | None:
        if quota_id is None or quota_id == "auto":
            return self.primary_quota
        for quota in self.quotas:
            if quota.id == quota_id:
                return quota
        return self.primary_quota


@dataclass
class Credentials:
    """Secrets for one provider. Only the field matching its AuthMethod is set."""
    provider_id: str
    cookie: str | None = None
    api_key: str | None = None
    bearer_token: str | None = None
    organization_id: str | None = None
    additional_data: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "providerId": self.provider_id,
            "cookie": self.cookie,
            "apiKey": self.api_key,
            "bearerToken": self.bearer_token,
            "organizationId": self.organization_id,
            "additionalData": dict(self.additional_data),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Credentials":
        return cls(
            provider_id=data["providerId"],
            cookie=data.get("cookie"),
            api_key=data.get("apiKey"),
            bearer_token=data.get("bearerToken"),
            organization_id=data.get("organizationId"),
            additional_data=dict(data.get("additionalData") or {}),
        )
