"""
Tests for the Codex provider: token handshake, device id, single retry.
"""

import pytest

from conftest import FakeResponse
from usagebar.errors import InvalidCredentials, RateLimited
from usagebar.models import AuthState, Credentials
from usagebar.providers.codex import CodexProvider

SESSION = "/api/auth/session"
USAGE = "/backend-api/wham/usage"

WHAM = {
    "rate_limit": {
        "primary_window": {"used_percent": 64, "reset_at": 1770091506},
        "secondary_window": {"used_percent": 20, "reset_at": 1770500000},
    },
    "code_review_rate_limit": {"primary_window": {"used_percent": 5, "reset_at": 1770500000}},
}


def token(value):
    return FakeResponse(200, {"accessToken": value})


def configured(store, http, cookie="oai-did=dev-1; __Secure-next-auth.session-token=s"):
    store.save(Credentials(provider_id="codex", cookie=cookie))
    return CodexProvider(store, http=http)


class TestCodexHandshake:
    def test_fetch_attaches_token_and_device_id(self, store, http):
        http.add(SESSION, token("tok-1"))
        http.add(USAGE, FakeResponse(200, WHAM))
        snap = configured(store, http).fetch_usage()

        headers = http.calls[1][2]
        assert headers["Authorization"] == "Bearer tok-1"
        assert headers["oai-device-id"] == "dev-1"
        assert headers["Referer"] == "https://chatgpt.com/codex"
        assert [q.id for q in snap.quotas] == ["primary", "weekly", "code_review"]
        assert snap.quotas[0].percentage == 64
        assert snap.quotas[0].reset_time.year == 2026

    def test_token_is_cached(self, store, http):
        http.add(SESSION, token("tok-1"))
        http.add(USAGE, FakeResponse(200, WHAM))
        provider = configured(store, http)
        provider.fetch_usage()
        provider.fetch_usage()
        assert http.urls().count("https://chatgpt.com/api/auth/session") == 1

    def test_generated_device_id_is_persisted(self, store, http):
        provider = configured(store, http, cookie="__Secure-next-auth.session-token=s")
        device_id = store.load("codex").additional_data["deviceId"]
        assert device_id
        # a restart reuses it
        again = CodexProvider(store, http=http)
        assert again._device_id == device_id == provider._device_id

    def test_configure_stores_device_id(self, store, http):
        http.add(SESSION, token("t"))
        http.add(USAGE, FakeResponse(200, WHAM))
        provider = CodexProvider(store, http=http)
        provider.configure(Credentials(provider_id="codex", cookie="oai-did=abc; x=1"))
        assert store.load("codex").additional_data == {"deviceId": "abc"}
        assert provider.is_authenticated

    def test_logged_out_session(self, store, http):
        http.add(SESSION, FakeResponse(200, {}))
        provider = configured(store, http)
        with pytest.raises(InvalidCredentials):
            provider.fetch_usage()
        assert provider.auth_state == AuthState.failed("Session expired")

    def test_rejected_session_cookie(self, store, http):
        http.add(SESSION, FakeResponse(401))
        provider = configured(store, http)
        with pytest.raises(InvalidCredentials):
            provider.fetch_usage()
        assert provider.auth_state == AuthState.failed("Session expired")
        assert not any(USAGE in u for u in http.urls())


class TestCodexRetry:
    def test_refresh_then_success(self, store, http):
        http.add(SESSION, token("old"), token("new"))
        http.add(USAGE, FakeResponse(401), FakeResponse(200, WHAM))
        provider = configured(store, http)
        snap = provider.fetch_usage()

        assert provider.auth_state == AuthState.authenticated()
        assert provider.latest_usage is snap
        assert http.calls[-1][2]["Authorization"] == "Bearer new"
        assert len([u for u in http.urls() if USAGE in u]) == 2

    def test_second_rejection_is_terminal(self, store, http):
        http.add(SESSION, token("old"), token("new"))
        http.add(USAGE, FakeResponse(401), FakeResponse(401))
        provider = configured(store, http)
        with pytest.raises(InvalidCredentials):
            provider.fetch_usage()
        assert provider.auth_state == AuthState.failed("Session expired")
        # exactly one retry
        assert len([u for u in http.urls() if USAGE in u]) == 2

    def test_refresh_failure_is_terminal(self, store, http):
        http.add(SESSION, token("old"), FakeResponse(403))
        http.add(USAGE, FakeResponse(403))
        provider = configured(store, http)
        with pytest.raises(InvalidCredentials):
            provider.fetch_usage()
        assert provider.auth_state == AuthState.failed("Session expired")
        assert len([u for u in http.urls() if USAGE in u]) == 1

    def test_other_status_on_retry_keeps_its_type(self, store, http):
        http.add(SESSION, token("old"), token("new"))
        http.add(USAGE, FakeResponse(401), FakeResponse(429))
        with pytest.raises(RateLimited):
            configured(store, http).fetch_usage()


class TestCodexParsing:
    def test_placeholder_for_unknown_shape(self, store, http):
        http.add(SESSION, token("t"))
        http.add(USAGE, FakeResponse(200, {"plan_type": "plus"}))
        snap = configured(store, http).fetch_usage()
        assert [q.name for q in snap.quotas] == ["Rate limit (unknown)"]

    def test_additional_rate_limits(self, store, http):
        http.add(SESSION, token("t"))
        http.add(USAGE, FakeResponse(200, {
            "additional_rate_limits": [
                {"name": "deep_research", "primary_window": {"used_percent": 150}},
            ],
        }))
        snap = configured(store, http).fetch_usage()
        assert snap.quotas[0].id == "deep_research"
        assert snap.quotas[0].name == "Deep Research"
        assert snap.quotas[0].percentage == 100.0

    def test_weekly_window_without_primary(self, store, http):
        http.add(SESSION, token("t"))
        http.add(USAGE, FakeResponse(200, {
            "rate_limit": {"secondary_window": {"used_percent": 33}},
        }))
        snap = configured(store, http).fetch_usage()
        assert [q.id for q in snap.quotas] == ["weekly"]
        assert snap.quotas[0].percentage == 33

    @pytest.mark.parametrize("extra", [3, "deep_research", {"name": "x"}])
    def test_odd_additional_limits_configure_cleanly(self, store, http, extra):
        http.add(SESSION, token("t"))
        http.add(USAGE, FakeResponse(200, {"additional_rate_limits": extra}))
        provider = CodexProvider(store, http=http)
        provider.configure(Credentials(provider_id="codex", cookie="oai-did=d; x=1"))
        assert provider.is_authenticated
        assert [q.name for q in provider.latest_usage.quotas] == ["Rate limit (unknown)"]

    def test_clear_twice(self, store, http):
        provider = configured(store, http)
        provider.clear_credentials()
        provider.clear_credentials()
        assert provider.auth_state == AuthState.not_configured()
        assert store.load("codex") is None
