"""
Tests for the Kimi Code and Kimi K2 providers.
"""

import pytest

from conftest import FakeResponse
from usagebar.errors import InvalidCredentials, NotConfigured
from usagebar.models import AuthState, Credentials
from usagebar.providers.kimi import KimiProvider
from usagebar.providers.kimi_k2 import KimiK2Provider, build_contexts

USAGES = {
    "usages": [
        {"scope": "FEATURE_OTHER", "detail": {"limit": "10", "used": "10"}},
        {
            "scope": "FEATURE_CODING",
            "detail": {"limit": "2048", "used": "512", "remaining": "1536",
                       "resetTime": "2026-02-09T00:00:00.000Z"},
            "limits": [
                {"window": {"duration": 300, "timeUnit": "TIME_UNIT_MINUTE"},
                 "detail": {"limit": "100", "used": "80"}},
                {"window": {"duration": 1, "timeUnit": "TIME_UNIT_DAY"},
                 "detail": {"limit": "500", "used": "1"}},
            ],
        },
    ],
}


class TestKimiProvider:
    def test_coding_usage(self, store, http):
        http.add("GetUsages", FakeResponse(200, USAGES))
        provider = KimiProvider(store, http=http)
        provider.configure(Credentials(provider_id="kimi", cookie='"eyJtoken"'))

        method, _, headers, body = http.calls[0]
        assert method == "POST"
        assert body == {}
        assert headers["Authorization"] == "Bearer eyJtoken"
        weekly, rate = provider.latest_usage.quotas
        assert (weekly.id, weekly.name) == ("weekly", "Weekly")
        assert weekly.percentage == pytest.approx(25.0)
        assert weekly.unit == "requests"
        assert weekly.reset_time is not None
        assert (rate.id, rate.name) == ("rateLimit", "Rate Limit (5h)")
        assert rate.percentage == pytest.approx(80.0)

    def test_cookie_pair_accepted(self, store, http):
        http.add("GetUsages", FakeResponse(200, USAGES))
        KimiProvider(store, http=http).configure(
            Credentials(provider_id="kimi", cookie="kimi-auth=abc; other=1")
        )
        assert store.load("kimi").cookie == "abc"

    def test_rejected_token(self, store, http):
        store.save(Credentials(provider_id="kimi", cookie="t"))
        http.add("GetUsages", FakeResponse(403))
        provider = KimiProvider(store, http=http)
        with pytest.raises(InvalidCredentials):
            provider.fetch_usage()
        assert provider.auth_state == AuthState.failed("Invalid or expired token")

    def test_no_coding_scope_gives_placeholder(self, store, http):
        store.save(Credentials(provider_id="kimi", cookie="t"))
        http.add("GetUsages", FakeResponse(200, {"usages": []}))
        snap = KimiProvider(store, http=http).fetch_usage()
        assert [q.name for q in snap.quotas] == ["Weekly (unknown)"]

    @pytest.mark.parametrize("usages", [
        {"usages": [{"scope": "FEATURE_CODING", "limits": [
            {"window": "5h", "detail": {"limit": "10", "used": "1"}},
        ]}]},
        {"usages": [{"scope": "FEATURE_CODING", "limits": {"window": {}}}]},
        {"usages": "FEATURE_CODING"},
    ])
    def test_odd_shapes_configure_cleanly(self, store, http, usages):
        http.add("GetUsages", FakeResponse(200, usages))
        provider = KimiProvider(store, http=http)
        provider.configure(Credentials(provider_id="kimi", cookie="tok"))
        assert provider.is_authenticated
        assert [q.name for q in provider.latest_usage.quotas] == ["Weekly (unknown)"]


class TestKimiK2Contexts:
    def test_probe_order(self):
        body = {
            "data": {"usage": {"a": 1}, "credits": {"b": 2}},
            "result": {"usage": {"c": 3}},
            "usage": {"d": 4},
            "credits": {"e": 5},
        }
        contexts = build_contexts(body)
        assert contexts[0] is body
        assert contexts[1:] == [
            body["data"], {"a": 1}, {"b": 2},
            body["result"], {"c": 3},
            {"d": 4}, {"e": 5},
        ]


class TestKimiK2Provider:
    def fetch(self, store, http, response):
        store.save(Credentials(provider_id="kimik2", api_key="sk-k2"))
        http.add("/api/user/credits", response)
        return KimiK2Provider(store, http=http).fetch_usage()

    def test_nested_data(self, store, http):
        snap = self.fetch(store, http, FakeResponse(
            200, {"data": {"creditsConsumed": 120, "creditsRemaining": 380}}
        ))
        assert len(snap.quotas) == 1
        quota = snap.quotas[0]
        assert quota.percentage == pytest.approx(24.0)
        assert quota.used == 120
        assert quota.limit == 500
        assert quota.unit == "credits"

    def test_string_numbers_and_snake_case(self, store, http):
        snap = self.fetch(store, http, FakeResponse(
            200, {"total_credits_consumed": "30", "credits_remaining": "70"}
        ))
        assert snap.quotas[0].percentage == pytest.approx(30.0)

    def test_usage_block(self, store, http):
        snap = self.fetch(store, http, FakeResponse(
            200, {"result": {"usage": {"consumed": 10, "remaining": 30}}}
        ))
        assert snap.quotas[0].percentage == pytest.approx(25.0)

    def test_remaining_from_header(self, store, http):
        snap = self.fetch(store, http, FakeResponse(
            200, {"usedCredits": 25}, headers={"x-credits-remaining": "75"}
        ))
        assert snap.quotas[0].percentage == pytest.approx(25.0)

    def test_nothing_recognised(self, store, http):
        snap = self.fetch(store, http, FakeResponse(200, {"hello": "world"}))
        quota = snap.quotas[0]
        assert quota.name == "Credits (unknown)"
        assert quota.percentage is None
        assert snap.max_usage_percentage == 0.0

    def test_sends_key_as_bearer(self, store, http):
        self.fetch(store, http, FakeResponse(200, {}))
        assert http.calls[0][2]["Authorization"] == "Bearer sk-k2"

    def test_invalid_key(self, store, http):
        store.save(Credentials(provider_id="kimik2", api_key="bad"))
        http.add("/api/user/credits", FakeResponse(401))
        provider = KimiK2Provider(store, http=http)
        with pytest.raises(InvalidCredentials):
            provider.fetch_usage()
        assert provider.auth_state == AuthState.failed("Invalid API key")

    def test_not_configured(self, store, http):
        with pytest.raises(NotConfigured):
            KimiK2Provider(store, http=http).fetch_usage()

    def test_clear_twice(self, store, http):
        store.save(Credentials(provider_id="kimik2", api_key="k"))
        provider = KimiK2Provider(store, http=http)
        provider.clear_credentials()
        provider.clear_credentials()
        assert provider.auth_state == AuthState.not_configured()
