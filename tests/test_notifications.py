"""
Tests for the notification threshold tracker.
"""

from unittest.mock import MagicMock, patch

from usagebar.notifications import DEFAULT_KEY, ThresholdTracker, notify


class TestThresholdTracker:
    def test_sequence_with_rollback(self, settings):
        notifier = MagicMock()
        tracker = ThresholdTracker(settings, notifier=notifier)
        fired = []
        for pct in [10, 30, 60, 40, 70, 95, 20]:
            fired.extend(tracker.check(pct, "claude", "Claude"))
        # 40 clamps the state back to 25, so 70 crosses 50 a second time
        assert fired == [25, 50, 50, 75, 90]
        assert notifier.call_count == 5
        assert settings.get_last_notified_threshold("claude") == 0

    def test_clamp_to_highest_threshold_at_or_below(self, settings):
        tracker = ThresholdTracker(settings, notifier=MagicMock())
        tracker.check(92, "codex")
        assert settings.get_last_notified_threshold("codex") == 90
        tracker.check(60, "codex")
        assert settings.get_last_notified_threshold("codex") == 50

    def test_no_repeat_while_above(self, settings):
        tracker = ThresholdTracker(settings, notifier=MagicMock())
        assert tracker.check(55, "a") == [25, 50]
        assert tracker.check(58, "a") == []
        assert tracker.check(50, "a") == []

    def test_state_is_per_provider(self, settings):
        tracker = ThresholdTracker(settings, notifier=MagicMock())
        tracker.check(80, "a")
        assert tracker.check(30, "b") == [25]

    def test_fractional_percent_truncated(self, settings):
        tracker = ThresholdTracker(settings, notifier=MagicMock())
        assert tracker.check(24.9, "a") == []

    def test_notifier_failure_is_logged(self, settings):
        tracker = ThresholdTracker(settings, notifier=MagicMock(side_effect=RuntimeError("x")))
        assert tracker.check(30, "a") == [25]
        assert settings.get_last_notified_threshold("a") == 25

    def test_message_names_provider(self, settings):
        notifier = MagicMock()
        ThresholdTracker(settings, notifier=notifier).check(77, "a", "Cursor")
        title, message = notifier.call_args[0]
        assert title == "Cursor Alert"
        assert "77%" in message


class TestEvaluate:
    def manager(self, primary=None, max_pct=0.0):
        m = MagicMock()
        m.primary_snapshot = primary
        m.max_usage_percentage = max_pct
        m.registry.get.return_value = MagicMock(display_name="Claude")
        return m

    def test_uses_primary_snapshot(self, settings):
        tracker = ThresholdTracker(settings, notifier=MagicMock())
        primary = MagicMock(provider_id="claude", max_usage_percentage=60.0)
        assert tracker.evaluate(self.manager(primary, max_pct=99)) == [25, 50]
        assert settings.get_last_notified_threshold("claude") == 50

    def test_falls_back_to_overall_max(self, settings):
        tracker = ThresholdTracker(settings, notifier=MagicMock())
        assert tracker.evaluate(self.manager(None, max_pct=26)) == [25]
        assert settings.get_last_notified_threshold(DEFAULT_KEY) == 25

    def test_disabled(self, settings):
        settings.notifications_enabled = False
        notifier = MagicMock()
        tracker = ThresholdTracker(settings, notifier=notifier)
        assert tracker.evaluate(self.manager(None, max_pct=99)) == []
        notifier.assert_not_called()


class TestNotify:
    def test_osascript_on_macos(self):
        with patch("usagebar.notifications.sys.platform", "darwin"), \
                patch("usagebar.notifications.subprocess.run") as run:
            notify('Say "hi"', "75% used")
        args = run.call_args[0][0]
        assert args[:2] == ["osascript", "-e"]
        assert '\\"hi\\"' in args[2]

    def test_logs_elsewhere(self):
        with patch("usagebar.notifications.sys.platform", "linux"), \
                patch("usagebar.notifications.subprocess.run") as run:
            notify("t", "m")
        run.assert_not_called()
