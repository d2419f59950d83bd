"""
Tests for the claude.ai provider.
"""

import pytest

from conftest import FakeResponse
from usagebar.errors import InvalidCredentials, NotConfigured, ParseError
from usagebar.models import AuthState, AuthStatus, Credentials
from usagebar.providers.claude import ClaudeProvider

USAGE = {
    "five_hour": {"utilization": 37.0, "resets_at": "2026-02-03T04:05:06.000Z"},
    "seven_day": {"utilization": 12, "resets_at": None},
    "seven_day_sonnet": None,
}


class TestClaudeProvider:
    def test_fetch_without_credentials(self, store, http):
        provider = ClaudeProvider(store, http=http)
        with pytest.raises(NotConfigured):
            provider.fetch_usage()
        assert http.calls == []

    @pytest.mark.parametrize("cookie", [None, "", "   ", "''"])
    def test_configure_rejects_empty_cookie(self, store, http, cookie):
        provider = ClaudeProvider(store, http=http)
        with pytest.raises(InvalidCredentials):
            provider.configure(Credentials(provider_id="claude", cookie=cookie))
        assert not store.has_credentials("claude")

    def test_configure_with_org_in_cookie(self, store, http):
        http.add("/api/organizations/org-9/usage", FakeResponse(200, USAGE))
        provider = ClaudeProvider(store, http=http)
        provider.configure(Credentials(provider_id="claude", cookie="sessionKey=sk; lastActiveOrg=org-9"))

        assert provider.auth_state == AuthState.authenticated()
        assert http.urls() == ["https://claude.ai/api/organizations/org-9/usage"]
        assert [q.id for q in provider.latest_usage.quotas] == ["session", "weekly"]
        assert provider.latest_usage.quotas[0].percentage == 37.0
        assert provider.latest_usage.quotas[0].reset_time is not None
        assert store.load("claude").cookie == "sessionKey=sk; lastActiveOrg=org-9"

    def test_org_from_bootstrap_is_cached(self, store, http):
        http.add("/usage", FakeResponse(200, USAGE))
        http.add("/api/bootstrap", FakeResponse(200, {"account": {"lastActiveOrgId": "org-b"}}))
        provider = ClaudeProvider(store, http=http)
        provider.configure(Credentials(provider_id="claude", cookie="sessionKey=sk"))
        provider.fetch_usage()
        assert http.urls().count("https://claude.ai/api/bootstrap") == 1
        assert http.urls()[-1] == "https://claude.ai/api/organizations/org-b/usage"

    def test_org_from_organizations_list(self, store, http):
        http.add("/usage", FakeResponse(200, USAGE))
        http.add("/api/bootstrap", FakeResponse(200, {"account": {}}))
        http.add("/api/organizations", FakeResponse(200, [{"uuid": "org-l"}]))
        provider = ClaudeProvider(store, http=http)
        provider.configure(Credentials(provider_id="claude", cookie="sessionKey=sk"))
        assert http.urls()[-1] == "https://claude.ai/api/organizations/org-l/usage"

    def test_no_org_anywhere(self, store, http):
        http.add("/api/bootstrap", FakeResponse(200, {}))
        http.add("/api/organizations", FakeResponse(200, []))
        provider = ClaudeProvider(store, http=http)
        with pytest.raises(ParseError):
            provider.configure(Credentials(provider_id="claude", cookie="sessionKey=sk"))
        assert provider.auth_state.status is AuthStatus.FAILED

    @pytest.mark.parametrize("bootstrap", [
        {"account": "me"},
        {"account": {"memberships": ["org-x"]}},
        {"account": {"memberships": [{"organization": "org-x"}]}},
    ])
    def test_odd_bootstrap_falls_back_to_list(self, store, http, bootstrap):
        http.add("/usage", FakeResponse(200, USAGE))
        http.add("/api/bootstrap", FakeResponse(200, bootstrap))
        http.add("/api/organizations", FakeResponse(200, [{"uuid": 7, "id": "org-l"}]))
        provider = ClaudeProvider(store, http=http)
        provider.configure(Credentials(provider_id="claude", cookie="sessionKey=sk"))
        assert provider.is_authenticated
        assert http.urls()[-1] == "https://claude.ai/api/organizations/org-l/usage"

    def test_bare_cookie_sent_as_session_key(self, store, http):
        http.add("/usage", FakeResponse(200, USAGE))
        provider = ClaudeProvider(store, http=http)
        provider.configure(Credentials(provider_id="claude", cookie="sk-ant-1", organization_id="org-1"))
        assert http.calls[0][2]["Cookie"] == "sessionKey=sk-ant-1"

    def test_expired_session(self, store, http):
        store.save(Credentials(provider_id="claude", cookie="lastActiveOrg=o"))
        http.add("/usage", FakeResponse(401))
        provider = ClaudeProvider(store, http=http)
        assert provider.is_authenticated
        with pytest.raises(InvalidCredentials):
            provider.fetch_usage()
        assert provider.auth_state == AuthState.failed("Session expired")

    def test_unknown_shape_gives_placeholder(self, store, http):
        store.save(Credentials(provider_id="claude", cookie="lastActiveOrg=o"))
        http.add("/usage", FakeResponse(200, {"something_new": {}}))
        snap = ClaudeProvider(store, http=http).fetch_usage()
        assert len(snap.quotas) == 1
        assert "unknown" in snap.quotas[0].name
        assert snap.quotas[0].percentage is None

    def test_clear_twice(self, store, http):
        store.save(Credentials(provider_id="claude", cookie="lastActiveOrg=o"))
        provider = ClaudeProvider(store, http=http)
        provider.clear_credentials()
        provider.clear_credentials()
        assert provider.auth_state == AuthState.not_configured()
        assert provider.latest_usage is None
        assert not store.has_credentials("claude")
        assert provider.validate_credentials() is False
