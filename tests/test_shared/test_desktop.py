"""
Tests for desktop notification display.

These tests verify that the logging notifier tracks permission and displays,
and that failures are reported rather than raised.
"""

from shared.desktop import LoggingNotifier, NullNotifier


class TestLoggingNotifier:
    """Tests for the logging notifier."""

    def test_show_after_permission(self, notifier: LoggingNotifier):
        """Test a successful display."""
        assert notifier.request_permission() is True

        result = notifier.show("Order Update", "Your order is out for delivery")

        assert result.success is True
        assert result.title == "Order Update"
        assert result.body == "Your order is out for delivery"
        assert result.error is None
        assert notifier.get_shown_count() == 1

    def test_show_without_permission(self, notifier: LoggingNotifier):
        """Test that nothing is shown before permission is granted."""
        result = notifier.show("Title", "Body")

        assert result.success is False
        assert result.error == "permission not granted"

    def test_permission_denied(self):
        notifier = LoggingNotifier(grant_permission=False)

        assert notifier.request_permission() is False
        assert notifier.show("Title", "Body").success is False
        assert notifier.permission_requests == 1

    def test_simulated_failure(self):
        """Test that a failing display reports the error."""
        notifier = LoggingNotifier(fail=True)
        notifier.request_permission()

        result = notifier.show("Title", "Body")

        assert result.success is False
        assert result.error == "Simulated display failure"
        assert len(notifier.shown) == 1
        assert notifier.get_shown_count() == 0

    def test_clear_history(self, notifier: LoggingNotifier):
        notifier.request_permission()
        notifier.show("Title", "Body")

        notifier.clear_history()

        assert notifier.shown == []

    def test_result_str(self, notifier: LoggingNotifier):
        notifier.request_permission()

        assert str(notifier.show("Paid", "Thanks")) == "✓ DESKTOP: Paid"


class TestNullNotifier:
    """Tests for environments without desktop notifications."""

    def test_never_grants_permission(self):
        notifier = NullNotifier()

        assert notifier.request_permission() is False
        assert notifier.show("Title", "Body").error == "unsupported"
