"""
Session cookie auto-detection from installed browsers via browser_cookie3.

Reading browser cookie stores can hang on a Keychain prompt or crash on a
locked profile database, so the read always happens in a child process
(`python -m usagebar.cookies DOMAIN COOKIE`) with a hard timeout. The child
prints the chosen cookie header as JSON on stdout.
"""

import json
import logging
import subprocess
import sys

import browser_cookie3

from .http import cookie_value

log = logging.getLogger(__name__)

BROWSERS = [
    "firefox", "librewolf", "chrome", "arc", "brave",
    "edge", "chromium", "opera", "vivaldi", "safari",
]

# provider id → (cookie domain, cookie that proves a logged-in session)
DETECT_TARGETS = {
    "claude": ("claude.ai",   "sessionKey"),
    "codex":  ("chatgpt.com", "__Secure-next-auth.session-token"),
    "cursor": ("cursor.com",  "WorkosCursorSessionToken"),
    "kimi":   ("kimi.com",    "kimi-auth"),
}

DETECT_TIMEOUT = 60


def pick_freshest(candidates: list[tuple[float, str]]) -> str | None:
    """Latest expiry on the target cookie wins; ties go to the richest jar."""
    if not candidates:
        return None
    best = max(candidates, key=lambda c: (c[0], len(c[1])))
    return best[1]


def collect_candidates(domain: str, target: str) -> list[tuple[float, str]]:
    """(target expiry, cookie header) for every browser logged in to domain."""
    candidates = []
    for name in BROWSERS:
        loader = getattr(browser_cookie3, name, None)
        if loader is None:
            continue
        try:
            jar = loader(domain_name=domain)
            cookies = {c.name: c for c in jar}
        except Exception as e:
            # missing profile, locked DB, denied keychain: try the next browser
            log.debug("%s: no cookies for %s (%s)", name, domain, e)
            continue
        if target not in cookies:
            continue
        expires = cookies[target].expires or 0
        header = "; ".join(f"{k}={c.value}" for k, c in cookies.items())
        candidates.append((expires, header))
    return candidates


def detect_cookies(domain: str, target: str) -> str | None:
    """Run detection in an isolated child process; None when nothing is found."""
    try:
        r = subprocess.run(
            [sys.executable, "-m", "usagebar.cookies", domain, target],
            capture_output=True, text=True, timeout=DETECT_TIMEOUT,
        )
    except (OSError, subprocess.SubprocessError) as e:
        log.warning("cookie detection for %s failed: %s", domain, e)
        return None
    log.debug("cookie-detect rc=%d err=%r", r.returncode, r.stderr[:200])
    out = r.stdout.strip()
    if not out:
        return None
    try:
        result = json.loads(out)
    except json.JSONDecodeError:
        log.warning("cookie detection for %s returned garbage", domain)
        return None
    return result if isinstance(result, str) and result else None


def detect_for_provider(provider_id: str) -> str | None:
    target = DETECT_TARGETS.get(provider_id)
    if target is None:
        raise KeyError(provider_id)
    header = detect_cookies(*target)
    if provider_id == "kimi" and header:
        # the kimi provider wants the bare kimi-auth value
        return cookie_value(header, "kimi-auth")
    return header


def _main(argv: list[str]) -> int:
    if len(argv) != 2:
        print("usage: python -m usagebar.cookies DOMAIN COOKIE_NAME", file=sys.stderr)
        return 2
    domain, target = argv
    print(json.dumps(pick_freshest(collect_candidates(domain, target))))
    return 0


if __name__ == "__main__":
    sys.exit(_main(sys.argv[1:]))
