"""
Thin HTTP layer shared by the providers.

Requests go through curl_cffi so they carry a real browser TLS fingerprint;
Cloudflare in front of claude.ai / chatgpt.com rejects plain Python stacks.
Every call is bounded by a fixed timeout and every transport failure comes
back as NetworkError, so a misbehaving upstream can only ever cost one
timeout per request.
"""

import json
import logging

from curl_cffi import requests
from curl_cffi.requests.exceptions import RequestException

from .errors import NetworkError, ParseError, RateLimited, ServerError

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15   # seconds, per request
# Cloudflare fingerprint-checks Chrome aggressively; Safari passes cleanly.
DEFAULT_IMPERSONATE = "safari184"

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class HttpClient:
    def __init__(self, timeout: float = DEFAULT_TIMEOUT,
                 impersonate: str | None = DEFAULT_IMPERSONATE):
        self.timeout = timeout
        self.impersonate = impersonate

    def request(self, method: str, url: str, headers: dict | None = None,
                json_body: dict | None = None):
        try:
            r = requests.request(
                method, url,
                headers=headers or {},
                json=json_body,
                timeout=self.timeout,
                impersonate=self.impersonate,
            )
        except RequestException as e:
            log.debug("%s %s failed: %s", method, url, e)
            raise NetworkError(e) from e
        log.debug("%s %s  status=%s  body=%s", method, url, r.status_code, r.text[:800])
        return r

    def get(self, url: str, headers: dict | None = None):
        return self.request("GET", url, headers=headers)

    def post(self, url: str, headers: dict | None = None, json_body: dict | None = None):
        return self.request("POST", url, headers=headers, json_body=json_body)


def is_auth_failure(response) -> bool:
    return response.status_code in (401, 403)


def raise_for_status(response) -> None:
    """Map a non-2xx status to the shared taxonomy (401/403 are the caller's job)."""
    code = response.status_code
    if 200 <= code < 300:
        return
    if code == 429:
        raise RateLimited()
    raise ServerError(code)


def decode_json(response) -> dict:
    try:
        data = json.loads(response.text)
    except (json.JSONDecodeError, TypeError) as e:
        raise ParseError(f"Invalid JSON ({e})") from e
    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


# ── cookies ───────────────────────────────────────────────────────────────────

def parse_cookie_string(raw: str) -> dict:
    """Parse 'key=val; key2=val2' or just a bare sessionKey value."""
    raw = raw.strip()
    if "=" not in raw:
        return {"sessionKey": raw}
    cookies = {}
    for part in raw.split(";"):
        part = part.strip()
        if "=" in part:
            k, _, v = part.partition("=")
            cookies[k.strip()] = v.strip()
    return cookies


def cookie_value(raw: str, name: str) -> str | None:
    """Value of one named field in a cookie header, or None."""
    return parse_cookie_string(raw).get(name) or None
