"""
Aggregation engine: fan out one fetch per provider, merge the results.

Every enabled and authenticated provider is fetched concurrently on a
worker pool. Nothing shared is written while the fetches run; results are
collected after all tasks resolve (or the cycle timeout passes) and merged
into the snapshot map at a single point. A provider that fails keeps its
previous snapshot.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait as wait_for
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .errors import NetworkError, NoProvidersConfigured, ProviderError, UnknownError
from .models import QuotaMetric, UsageSnapshot

log = logging.getLogger(__name__)

DEFAULT_PROVIDER_ID = "claude"


@dataclass
class RefreshResult:
    succeeded: list[str] = field(default_factory=list)
    errors: dict[str, ProviderError] = field(default_factory=dict)   # registry order

    @property
    def ok(self) -> bool:
        return bool(self.succeeded)


class UsageManager:
    def __init__(self, registry, settings, tracker=None, max_workers: int = 4,
                 default_provider_id: str = DEFAULT_PROVIDER_ID,
                 cycle_timeout: float | None = None):
        self.registry = registry
        self.settings = settings
        self.tracker = tracker
        self.max_workers = max_workers
        self.default_provider_id = default_provider_id
        self.cycle_timeout = cycle_timeout

        self._lock = threading.Lock()
        self._snapshots: dict[str, UsageSnapshot] = {}
        self._in_flight: set[str] = set()
        self._loading = False
        self._listeners = []
        self._stop = threading.Event()
        self._timer: threading.Thread | None = None

        self.error_message: str | None = None
        self.last_updated: datetime | None = None

    # ── observable state ─────────────────────────────────────────────────────

    @property
    def snapshots(self) -> dict[str, UsageSnapshot]:
        with self._lock:
            return dict(self._snapshots)

    def snapshot(self, provider_id: str) -> UsageSnapshot | None:
        with self._lock:
            return self._snapshots.get(provider_id)

    @property
    def is_loading(self) -> bool:
        return self._loading

    def subscribe(self, callback):
        """callback(manager) runs after every refresh cycle. Returns an unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)
        return unsubscribe

    def _publish(self):
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception:
                log.exception("usage listener failed")

    # ── fetch ────────────────────────────────────────────────────────────────

    def _qualifying(self) -> tuple[list, list[str]]:
        enabled = self.settings.enabled_provider_ids
        candidates = [p for p in self.registry.enabled(enabled) if p.is_authenticated]
        with self._lock:
            busy = [p.id for p in candidates if p.id in self._in_flight]
            ready = [p for p in candidates if p.id not in self._in_flight]
            self._in_flight.update(p.id for p in ready)
        if not candidates:
            raise NoProvidersConfigured()
        return ready, busy

    def _release(self, provider_id: str):
        with self._lock:
            self._in_flight.discard(provider_id)

    def fetch_all(self) -> RefreshResult:
        """One aggregation cycle.

        Raises NoProvidersConfigured when nothing is enabled and
        authenticated, and the last provider error (registry order) when
        every fetch failed.
        """
        providers, busy = self._qualifying()
        if busy:
            log.debug("skipping providers still in flight: %s", ", ".join(busy))
        result = RefreshResult()
        if not providers:
            return result

        log.debug("fetching %s", ", ".join(p.id for p in providers))
        pool = ThreadPoolExecutor(
            max_workers=max(1, min(self.max_workers, len(providers))),
            thread_name_prefix="usage-fetch",
        )
        futures = {}
        try:
            for p in providers:
                future = pool.submit(p.fetch_usage)
                future.add_done_callback(lambda _f, pid=p.id: self._release(pid))
                futures[p.id] = future
            wait_for(futures.values(), timeout=self.cycle_timeout)
        finally:
            pool.shutdown(wait=False)

        fresh = {}
        for pid, future in futures.items():
            if not future.done():
                log.warning("%s: no result within %ss", pid, self.cycle_timeout)
                result.errors[pid] = NetworkError(f"timed out after {self.cycle_timeout}s")
                continue
            try:
                fresh[pid] = future.result()
            except ProviderError as e:
                log.warning("%s: fetch failed: %s", pid, e)
                result.errors[pid] = e
            except Exception as e:
                log.exception("%s: unexpected error during fetch", pid)
                result.errors[pid] = UnknownError(str(e) or type(e).__name__)
            else:
                result.succeeded.append(pid)

        if not fresh:
            raise list(result.errors.values())[-1]

        with self._lock:
            self._snapshots.update(fresh)
        log.info("refreshed %d/%d providers", len(fresh), len(futures))

        if self.tracker is not None:
            self.tracker.evaluate(self)
        return result

    def refresh(self, wait: bool = False) -> bool:
        """Start a cycle unless one is already running. Returns whether it started."""
        with self._lock:
            if self._loading:
                log.debug("refresh skipped, a cycle is already running")
                return False
            self._loading = True
        if wait:
            self._run_cycle()
        else:
            threading.Thread(target=self._run_cycle, daemon=True, name="usage-refresh").start()
        return True

    def _run_cycle(self):
        try:
            self.fetch_all()
        except ProviderError as e:
            log.warning("refresh failed: %s", e)
            self.error_message = str(e)
        except Exception as e:
            log.exception("refresh failed")
            self.error_message = str(e) or type(e).__name__
        else:
            self.error_message = None
        finally:
            self.last_updated = datetime.now(timezone.utc)
            self._loading = False
        self._publish()

    # ── timer ────────────────────────────────────────────────────────────────

    def start(self, interval: float | None = None):
        """Refresh now and then every interval (default: the settings' value)."""
        if self._timer is not None and self._timer.is_alive():
            return
        self._stop.clear()
        self._timer = threading.Thread(
            target=self._timer_loop, args=(interval,), daemon=True, name="usage-timer"
        )
        self._timer.start()

    def stop(self):
        self._stop.set()

    def _timer_loop(self, interval):
        while not self._stop.is_set():
            self.refresh(wait=True)
            self._stop.wait(interval or self.settings.refresh_interval_seconds)

    # ── selection ────────────────────────────────────────────────────────────

    def _active_ids(self) -> list[str]:
        enabled = self.settings.enabled_provider_ids
        return [p.id for p in self.registry.enabled(enabled) if p.is_authenticated]

    @property
    def primary_snapshot(self) -> UsageSnapshot | None:
        snapshots = self.snapshots
        configured = self.settings.primary_provider_id
        if configured and configured in snapshots:
            return snapshots[configured]

        active = self._active_ids()
        if self.default_provider_id in active and self.default_provider_id in snapshots:
            return snapshots[self.default_provider_id]

        for pid in active:
            if pid in snapshots:
                return snapshots[pid]
        return None

    @property
    def max_usage_percentage(self) -> float:
        snapshots = self.snapshots
        return max(
            (snapshots[pid].max_usage_percentage for pid in self._active_ids() if pid in snapshots),
            default=0.0,
        )

    def preferred_quota(self, provider_id: str) -> QuotaMetric | None:
        snap = self.snapshot(provider_id)
        if snap is None:
            return None
        return snap.preferred_quota(self.settings.get_preferred_quota_id(provider_id))

    # ── settings-screen actions ──────────────────────────────────────────────

    def clear_provider(self, provider_id: str):
        provider = self.registry.get(provider_id)
        if provider is None:
            raise KeyError(provider_id)
        provider.clear_credentials()
        with self._lock:
            self._snapshots.pop(provider_id, None)
        self._publish()
