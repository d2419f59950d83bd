"""
Shared fakes: a scripted HTTP client and an in-memory keyring backend.
"""

import json

import pytest
from keyring.errors import PasswordDeleteError

from usagebar.credentials import CredentialStore
from usagebar.settings import Settings


class FakeResponse:
    def __init__(self, status_code: int = 200, body=None, text: str | None = None,
                 headers: dict | None = None):
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(body if body is not None else {})
        self.headers = headers or {}


class FakeHttp:
    """Hands out queued responses per URL prefix and records every call."""

    def __init__(self):
        self.routes: dict[str, list] = {}
        self.calls: list[tuple[str, str, dict, dict | None]] = []

    def add(self, url_part: str, *responses):
        self.routes.setdefault(url_part, []).extend(responses)
        return self

    def request(self, method, url, headers=None, json_body=None):
        self.calls.append((method, url, headers or {}, json_body))
        for part, queue in self.routes.items():
            if part in url and queue:
                item = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(item, Exception):
                    raise item
                return item
        raise AssertionError(f"unexpected request {method} {url}")

    def get(self, url, headers=None):
        return self.request("GET", url, headers=headers)

    def post(self, url, headers=None, json_body=None):
        return self.request("POST", url, headers=headers, json_body=json_body)

    def urls(self) -> list[str]:
        return [c[1] for c in self.calls]


class MemoryKeyring:
    """The three calls CredentialStore makes, backed by a dict."""

    def __init__(self):
        self.data: dict[tuple[str, str], str] = {}

    def get_password(self, service, username):
        return self.data.get((service, username))

    def set_password(self, service, username, password):
        self.data[(service, username)] = password

    def delete_password(self, service, username):
        if (service, username) not in self.data:
            raise PasswordDeleteError("not found")
        del self.data[(service, username)]


@pytest.fixture
def keyring_backend():
    return MemoryKeyring()


@pytest.fixture
def store(keyring_backend):
    return CredentialStore(service="test-usage-bar", backend=keyring_backend)


@pytest.fixture
def settings():
    return Settings(path=None)


@pytest.fixture
def http():
    return FakeHttp()
