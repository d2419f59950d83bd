"""
Terminal host: `python -m usagebar` (or `ai-usage-bar`).

  (no flags)       refresh on a timer and print a bar per provider
  --once           refresh once, print, exit
  --status         print each provider's auth state without fetching
  --configure ID   paste a secret for provider ID and validate it
  --detect ID      pull ID's session cookie from an installed browser
  --clear ID       forget ID's credentials
  --enable ID / --disable ID
"""

import getpass
import logging
import os
import sys
import time
from datetime import datetime, timezone

from .cookies import DETECT_TARGETS, detect_for_provider
from .credentials import (
    LEGACY_CONFIG_FILE, CredentialStore, migrate_legacy_config_file, migrate_legacy_credentials,
)
from .errors import CredentialStoreError, ProviderError
from .manager import UsageManager
from .models import AuthMethod, Credentials
from .notifications import ThresholdTracker
from .providers import build_registry
from .settings import CONFIG_FILE, Settings

LOG_FILE = os.path.expanduser("~/.ai_usage_bar.log")

log = logging.getLogger("usagebar")

_COLORS = {
    "claude": "\033[38;5;209m",   # orange
    "codex":  "\033[38;5;114m",   # green
    "cursor": "\033[38;5;45m",    # cyan
    "zhipu":  "\033[38;5;33m",    # blue
    "kimi":   "\033[38;5;141m",   # purple
    "kimik2": "\033[38;5;177m",   # pink
}
_RESET = "\033[0m"
_DIM = "\033[2m"
_BOLD = "\033[1m"

_DAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def _setup_logging():
    logging.basicConfig(
        filename=LOG_FILE,
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)s %(message)s",
    )


# ── display helpers ───────────────────────────────────────────────────────────

def _bar(pct: float, width: int = 14) -> str:
    filled = max(0, min(width, round(pct / 100 * width)))
    return "█" * filled + "░" * (width - filled)


def _fmt_reset(dt: datetime | None, now: datetime | None = None) -> str:
    if dt is None:
        return ""
    now = now or datetime.now(timezone.utc)
    secs = (dt - now).total_seconds()
    if secs <= 0:
        return "resets soon"
    if secs < 3600 * 20:
        h, rem = divmod(int(secs), 3600)
        m = rem // 60
        if h > 0:
            return f"resets in {h}h {m}m"
        return f"resets in {m}m"
    local = dt.astimezone()
    return f"resets {_DAYS[local.weekday()]} {local.strftime('%H:%M')}"


def _fmt_amount(quota) -> str:
    if quota.used is None:
        return ""
    if quota.unit == "USD":
        text = f"${quota.used:,.2f}"
        return text + (f" / ${quota.limit:,.2f}" if quota.limit else "")
    text = f"{quota.used:,.0f}"
    if quota.limit:
        text += f" / {quota.limit:,.0f}"
    return f"{text} {quota.unit}"


def _quota_lines(quota) -> list[str]:
    pct = quota.computed_percentage
    line1 = f"    {quota.name}  {round(pct)}%"
    amount = _fmt_amount(quota)
    if amount:
        line1 += f"  {_DIM}{amount}{_RESET}"
    reset = _fmt_reset(quota.reset_time)
    line2 = f"    {_bar(pct)}  {reset}" if reset else f"    {_bar(pct)}"
    return [line1, line2]


def render(manager) -> str:
    settings = manager.settings
    lines = []
    when = manager.last_updated.astimezone().strftime("%H:%M:%S") if manager.last_updated else "never"
    lines.append(f"\n{_BOLD}  AI Usage{_RESET}  {_DIM}updated {when}{_RESET}")
    for provider in manager.registry:
        enabled = settings.is_provider_enabled(provider.id)
        color = _COLORS.get(provider.id, "")
        state = "" if enabled else "  (disabled)"
        lines.append(f"\n  {color}{_BOLD}{provider.display_name}{_RESET}  "
                     f"{_DIM}{provider.auth_state}{state}{_RESET}")
        snap = manager.snapshot(provider.id)
        if snap is None:
            continue
        for quota in snap.quotas:
            lines.extend(_quota_lines(quota))
    if manager.error_message:
        lines.append(f"\n  ! {manager.error_message}")
    return "\n".join(lines) + "\n"


def render_one(provider) -> str:
    snap = provider.latest_usage
    if snap is None:
        return ""
    return "\n".join(line for q in snap.quotas for line in _quota_lines(q))


# ── wiring ────────────────────────────────────────────────────────────────────

def build_manager(settings_path: str | None = CONFIG_FILE, store=None, http=None,
                  legacy_path: str | None = LEGACY_CONFIG_FILE) -> UsageManager:
    settings = Settings(settings_path)
    store = store or CredentialStore()
    migrated = migrate_legacy_credentials(store, settings)
    if legacy_path:
        migrated += migrate_legacy_config_file(store, legacy_path)
    for pid in migrated:
        settings.set_provider_enabled(pid, True)
    registry = build_registry(store, http=http)
    return UsageManager(registry, settings, tracker=ThresholdTracker(settings))


def _secret_credentials(provider, secret: str) -> Credentials:
    if provider.auth_method is AuthMethod.API_KEY:
        return Credentials(provider_id=provider.id, api_key=secret)
    if provider.auth_method is AuthMethod.BEARER_TOKEN:
        return Credentials(provider_id=provider.id, bearer_token=secret)
    return Credentials(provider_id=provider.id, cookie=secret)


def _configure(manager, provider, secret: str | None = None) -> int:
    if secret is None:
        print(f"\n{provider.display_name}: how to find your credentials")
        for step in provider.credential_instructions:
            print(f"  {step}")
        secret = getpass.getpass(f"\nPaste {provider.auth_method.value} (input hidden): ")
    try:
        provider.configure(_secret_credentials(provider, secret))
    except (ProviderError, CredentialStoreError) as e:
        print(f"{provider.display_name}: {e}")
        return 1
    manager.settings.set_provider_enabled(provider.id, True)
    print(f"{provider.display_name}: configured ✓")
    print(render_one(provider))
    return 0


def _run_loop(manager) -> int:
    manager.subscribe(lambda m: print(render(m), flush=True))
    manager.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        manager.stop()
    return 0


def main(argv: list[str] | None = None) -> int:
    _setup_logging()
    args = sys.argv[1:] if argv is None else argv
    log.info("ai-usage-bar started (%s)", " ".join(args) or "loop")
    manager = build_manager()
    registry = manager.registry

    if not args:
        return _run_loop(manager)

    flag = args[0]
    if flag == "--once":
        manager.refresh(wait=True)
        print(render(manager))
        return 0 if manager.error_message is None else 1
    if flag == "--status":
        print(render(manager))
        return 0

    if len(args) < 2 or flag not in (
        "--configure", "--clear", "--detect", "--enable", "--disable",
    ):
        print(__doc__)
        return 2

    provider = registry.get(args[1])
    if provider is None:
        print(f"unknown provider {args[1]!r}; choose from: {', '.join(registry.ids())}")
        return 2

    if flag == "--configure":
        return _configure(manager, provider)
    if flag == "--detect":
        if provider.id not in DETECT_TARGETS:
            print(f"{provider.display_name} has no browser session to detect")
            return 2
        cookie = detect_for_provider(provider.id)
        if not cookie:
            print(f"Could not find a {provider.display_name} session in any browser")
            return 1
        return _configure(manager, provider, cookie)
    if flag == "--clear":
        manager.clear_provider(provider.id)
        print(f"{provider.display_name}: credentials cleared")
        return 0
    manager.settings.set_provider_enabled(provider.id, flag == "--enable")
    print(f"{provider.display_name}: {'enabled' if flag == '--enable' else 'disabled'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
