"""
App settings: which providers are on, notification state, refresh interval.

Stored as a small JSON file next to the log, written atomically. Secrets do
not belong here; older versions kept cookies in this file, which
credentials.migrate_legacy_credentials moves into the OS vault.
"""

import json
import logging
import os
import threading

log = logging.getLogger(__name__)

CONFIG_FILE = os.path.expanduser("~/.ai_usage_bar_config.json")

REFRESH_INTERVALS = {
    "1 min":  60,
    "5 min":  300,
    "15 min": 900,
}
DEFAULT_REFRESH = 300

_DEFAULTS = {
    "enabled_provider_ids": ["claude"],
    "notifications_enabled": True,
    "primary_provider_id": None,
    "preferred_quota_ids": {"claude": "session"},
    "last_notified_thresholds": {},
    "refresh_interval_seconds": DEFAULT_REFRESH,
}


def load_config(path: str) -> dict:
    if os.path.exists(path):
        try:
            with open(path) as f:
                data = json.load(f)
            if isinstance(data, dict):
                return data
            raise ValueError("top-level value is not an object")
        except (json.JSONDecodeError, OSError, ValueError) as e:
            corrupt = path + ".bak"
            log.warning("Config file corrupt (%s), resetting. Backup at %s", e, corrupt)
            try:
                os.replace(path, corrupt)
            except OSError:
                log.debug("could not move corrupt config aside", exc_info=True)
    return {}


def save_config(cfg: dict, path: str):
    tmp = path + ".tmp"
    with open(tmp, "w") as f:
        json.dump(cfg, f, indent=2)
    os.replace(tmp, path)


class Settings:
    """Key-value settings shared by the manager, tracker and host.

    path=None keeps everything in memory.
    """

    def __init__(self, path: str | None = CONFIG_FILE):
        self.path = path
        self._lock = threading.RLock()
        self._cfg = load_config(path) if path else {}

    def _get(self, key: str):
        with self._lock:
            if key in self._cfg:
                return self._cfg[key]
            default = _DEFAULTS.get(key)
            # hand out copies so callers can't mutate the defaults
            return json.loads(json.dumps(default))

    def _set(self, key: str, value):
        with self._lock:
            self._cfg[key] = value
            self._save()

    def _save(self):
        if self.path:
            save_config(self._cfg, self.path)

    # ── raw access (legacy migration) ────────────────────────────────────────

    def get_raw(self, key: str):
        with self._lock:
            return self._cfg.get(key)

    def pop_raw(self, key: str):
        with self._lock:
            value = self._cfg.pop(key, None)
            self._save()
            return value

    # ── providers ────────────────────────────────────────────────────────────

    @property
    def enabled_provider_ids(self) -> set[str]:
        return set(self._get("enabled_provider_ids"))

    def is_provider_enabled(self, provider_id: str) -> bool:
        return provider_id in self.enabled_provider_ids

    def set_provider_enabled(self, provider_id: str, enabled: bool):
        with self._lock:
            ids = self.enabled_provider_ids
            if enabled:
                ids.add(provider_id)
            else:
                ids.discard(provider_id)
            self._set("enabled_provider_ids", sorted(ids))

    @property
    def primary_provider_id(self) -> str | None:
        return self._get("primary_provider_id")

    @primary_provider_id.setter
    def primary_provider_id(self, provider_id: str | None):
        self._set("primary_provider_id", provider_id)

    def get_preferred_quota_id(self, provider_id: str) -> str | None:
        return self._get("preferred_quota_ids").get(provider_id)

    def set_preferred_quota_id(self, provider_id: str, quota_id: str | None):
        with self._lock:
            ids = self._get("preferred_quota_ids")
            if quota_id is None:
                ids.pop(provider_id, None)
            else:
                ids[provider_id] = quota_id
            self._set("preferred_quota_ids", ids)

    # ── notifications ────────────────────────────────────────────────────────

    @property
    def notifications_enabled(self) -> bool:
        return bool(self._get("notifications_enabled"))

    @notifications_enabled.setter
    def notifications_enabled(self, value: bool):
        self._set("notifications_enabled", bool(value))

    def get_last_notified_threshold(self, provider_id: str) -> int:
        return int(self._get("last_notified_thresholds").get(provider_id, 0))

    def set_last_notified_threshold(self, provider_id: str, threshold: int):
        with self._lock:
            thresholds = self._get("last_notified_thresholds")
            thresholds[provider_id] = threshold
            self._set("last_notified_thresholds", thresholds)

    # ── refresh ──────────────────────────────────────────────────────────────

    @property
    def refresh_interval_seconds(self) -> int:
        try:
            secs = int(self._get("refresh_interval_seconds"))
        except (TypeError, ValueError):
            log.warning("Invalid refresh_interval_seconds, using default %d", DEFAULT_REFRESH)
            return DEFAULT_REFRESH
        return secs if secs > 0 else DEFAULT_REFRESH

    @refresh_interval_seconds.setter
    def refresh_interval_seconds(self, secs: int):
        self._set("refresh_interval_seconds", int(secs))
