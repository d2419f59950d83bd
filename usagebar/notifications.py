"""
Usage alerts: fire once per threshold as usage climbs, re-arm as it falls.

The last threshold fired for each provider lives in Settings so a restart
doesn't repeat an alert. When usage drops below that value (a limit reset),
it is clamped down to the highest threshold still at or below the current
percentage, so climbing back up fires again.
"""

import logging
import subprocess
import sys

log = logging.getLogger(__name__)

THRESHOLDS = (25, 50, 75, 90)
DEFAULT_KEY = "default"


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def notify(title: str, message: str):
    """Best-effort desktop notification; macOS via osascript, log elsewhere."""
    if sys.platform != "darwin":
        log.info("notification: %s: %s", title, message)
        return
    script = f'display notification "{_escape(message)}" with title "{_escape(title)}"'
    try:
        subprocess.run(["osascript", "-e", script], capture_output=True, timeout=10)
    except (OSError, subprocess.SubprocessError) as e:
        log.debug("notification suppressed: %s", e)


class ThresholdTracker:
    def __init__(self, settings, notifier=notify, thresholds=THRESHOLDS):
        self.settings = settings
        self.notifier = notifier
        self.thresholds = tuple(sorted(thresholds))

    def check(self, percentage: float, provider_id: str,
              provider_name: str | None = None) -> list[int]:
        """Run one step of the state machine; returns the thresholds fired."""
        pct = int(percentage)
        last = self.settings.get_last_notified_threshold(provider_id)
        fired = []
        for threshold in self.thresholds:
            if pct >= threshold and last < threshold:
                self._send(provider_name, pct, threshold)
                self.settings.set_last_notified_threshold(provider_id, threshold)
                fired.append(threshold)

        if pct < last:
            rearmed = max((t for t in self.thresholds if t <= pct), default=0)
            log.debug("%s: usage fell to %d%%, re-arming from %d", provider_id, pct, rearmed)
            self.settings.set_last_notified_threshold(provider_id, rearmed)
        return fired

    def evaluate(self, manager) -> list[int]:
        """Check the percentage the menu bar would show after a refresh."""
        if not self.settings.notifications_enabled:
            return []
        primary = manager.primary_snapshot
        if primary is not None:
            provider = manager.registry.get(primary.provider_id)
            name = provider.display_name if provider else None
            return self.check(primary.max_usage_percentage, primary.provider_id, name)
        return self.check(manager.max_usage_percentage, DEFAULT_KEY)

    def _send(self, provider_name: str | None, pct: int, threshold: int):
        title = f"{provider_name or 'Usage'} Alert"
        message = f"You've reached {pct}% of your usage limit"
        log.info("Threshold %d%% crossed (%s at %d%%)", threshold, provider_name or "usage", pct)
        try:
            self.notifier(title, message)
        except Exception:
            log.exception("notifier failed for %d%% threshold", threshold)
