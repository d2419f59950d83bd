"""
Provider secrets in the OS credential vault (Keychain, Credential Locker,
Secret Service) via keyring.

One record per provider, JSON-encoded Credentials, under the account
"<service>.<provider_id>". keyring cannot enumerate, so an index record
lists which providers have a record; delete_all walks it.
"""

import json
import logging
import os

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from .errors import CredentialStoreError
from .models import Credentials
from .settings import Settings, load_config, save_config

log = logging.getLogger(__name__)

SERVICE = "ai-usage-bar"
_INDEX_ACCOUNT = "__providers__"

# plaintext settings keys written by older versions → provider id
LEGACY_COOKIE_KEYS = {
    "claude_session_cookie": "claude",
    "cookie_str":            "claude",
    "chatgpt_cookies":       "codex",
    "cursor_cookies":        "cursor",
}

# config file of the single-provider menu-bar app this one replaced
LEGACY_CONFIG_FILE = "~/.claude_bar_config.json"


class CredentialStore:
    def __init__(self, service: str = SERVICE, backend=None):
        self.service = service
        self._backend = backend

    @property
    def backend(self):
        return self._backend if self._backend is not None else keyring.get_keyring()

    def _account(self, provider_id: str) -> str:
        return f"{self.service}.{provider_id}"

    # ── index ────────────────────────────────────────────────────────────────

    def _read_index(self) -> list[str]:
        try:
            raw = self.backend.get_password(self.service, _INDEX_ACCOUNT)
        except KeyringError as e:
            log.warning("credential index unreadable: %s", e)
            return []
        if not raw:
            return []
        try:
            ids = json.loads(raw)
        except json.JSONDecodeError:
            log.warning("credential index corrupt, ignoring")
            return []
        return [i for i in ids if isinstance(i, str)]

    def _write_index(self, ids: list[str]):
        self.backend.set_password(self.service, _INDEX_ACCOUNT, json.dumps(sorted(set(ids))))

    # ── public API ───────────────────────────────────────────────────────────

    def save(self, credentials: Credentials):
        """Overwrite the record for credentials.provider_id in place."""
        pid = credentials.provider_id
        payload = json.dumps(credentials.to_dict())
        try:
            self.backend.set_password(self.service, self._account(pid), payload)
        except KeyringError as e:
            raise CredentialStoreError("save", pid, e) from e
        # record first, index second: a failure here still leaves the
        # record loadable by id
        ids = self._read_index()
        if pid not in ids:
            try:
                self._write_index(ids + [pid])
            except KeyringError as e:
                log.warning("saved %s but could not update credential index: %s", pid, e)
        log.info("Saved credentials for %s", pid)

    def load(self, provider_id: str) -> Credentials | None:
        try:
            raw = self.backend.get_password(self.service, self._account(provider_id))
        except KeyringError as e:
            log.warning("could not read credentials for %s: %s", provider_id, e)
            return None
        if not raw:
            return None
        try:
            return Credentials.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            log.warning("stored credentials for %s are unreadable: %s", provider_id, e)
            return None

    def delete(self, provider_id: str):
        try:
            self.backend.delete_password(self.service, self._account(provider_id))
        except PasswordDeleteError:
            pass   # nothing stored
        except KeyringError as e:
            raise CredentialStoreError("delete", provider_id, e) from e
        ids = self._read_index()
        if provider_id in ids:
            ids.remove(provider_id)
            try:
                self._write_index(ids)
            except KeyringError as e:
                log.warning("could not update credential index: %s", e)
        log.info("Deleted credentials for %s", provider_id)

    def has_credentials(self, provider_id: str) -> bool:
        return self.load(provider_id) is not None

    def delete_all(self):
        for pid in self._read_index():
            self.delete(pid)
        try:
            self.backend.delete_password(self.service, _INDEX_ACCOUNT)
        except PasswordDeleteError:
            pass
        except KeyringError as e:
            raise CredentialStoreError("delete", "*", e) from e
        log.info("Deleted all credentials")


# ── legacy migration ──────────────────────────────────────────────────────────

def migrate_legacy_credentials(store: CredentialStore, settings: Settings) -> list[str]:
    """Move plaintext cookies from the settings file into the vault.

    Only providers without a vault record are touched, so running this
    again after a migration (or after the user configured the provider by
    hand) changes nothing. Returns the ids that were imported.
    """
    return _import_cookies(store, settings.get_raw, settings.pop_raw)


def migrate_legacy_config_file(store: CredentialStore, path: str = LEGACY_CONFIG_FILE) -> list[str]:
    """Same as migrate_legacy_credentials, reading the old app's config file.

    Imported keys are removed from that file; everything else in it is left
    alone. A missing file is not an error.
    """
    path = os.path.expanduser(path)
    if not os.path.exists(path):
        return []
    cfg = load_config(path)
    migrated = _import_cookies(store, cfg.get, lambda key: cfg.pop(key, None))
    if migrated:
        save_config(cfg, path)
        log.info("Removed plaintext cookies from %s", path)
    return migrated


def _import_cookies(store: CredentialStore, get, pop) -> list[str]:
    migrated = []
    for key, pid in LEGACY_COOKIE_KEYS.items():
        legacy = get(key)
        if not isinstance(legacy, str) or not legacy.strip():
            continue
        if store.has_credentials(pid):
            continue
        try:
            store.save(Credentials(provider_id=pid, cookie=legacy.strip()))
        except CredentialStoreError as e:
            log.error("Failed to migrate legacy %s: %s", key, e)
            continue   # plaintext copy stays, nothing is lost
        pop(key)
        migrated.append(pid)
        log.info("Migrated legacy %s into the credential store", key)
    return migrated
