"""Tests for DiscordNotifier."""
import time

import requests

from coin_trader.monitoring.alerting import MAX_CONTENT_LENGTH, DiscordNotifier


class TestDelivery:
    def test_posts_content_to_webhook(self, notifier, mock_http):
        assert notifier.send("BUY KRW-BTC filled") is True

        mock_http.post.assert_called_once_with(
            "https://discord.test/api/webhooks/1/abc",
            json={"content": "BUY KRW-BTC filled"},
            timeout=10.0,
        )

    def test_long_messages_truncated(self, notifier, mock_http):
        notifier.send("x" * (MAX_CONTENT_LENGTH + 50))

        content = mock_http.post.call_args.kwargs["json"]["content"]
        assert len(content) == MAX_CONTENT_LENGTH
        assert content.endswith("...")

    def test_http_error_returns_false(self, notifier, mock_http):
        mock_http.post.return_value.raise_for_status.side_effect = requests.HTTPError("429")

        assert notifier.send("hello") is False

    def test_network_error_returns_false(self, notifier, mock_http):
        mock_http.post.side_effect = requests.ConnectionError("unreachable")

        assert notifier.send("hello") is False

    def test_unconfigured_drops_message(self, mock_http):
        notifier = DiscordNotifier(webhook_url=None, _http=mock_http)

        assert notifier.is_configured is False
        assert notifier.send("hello") is False
        mock_http.post.assert_not_called()


class TestDeduplication:
    def test_repeated_key_suppressed(self, notifier, mock_http):
        assert notifier.send("exchange down", dedup_key="exchange") is True
        assert notifier.send("exchange down", dedup_key="exchange") is False

        assert mock_http.post.call_count == 1

    def test_different_keys_sent(self, notifier, mock_http):
        notifier.send("a", dedup_key="one")
        notifier.send("b", dedup_key="two")

        assert mock_http.post.call_count == 2

    def test_no_key_never_deduplicated(self, notifier, mock_http):
        notifier.send("same")
        notifier.send("same")

        assert mock_http.post.call_count == 2

    def test_cooldown_expires(self, notifier, mock_http):
        notifier.send("x", dedup_key="k", cooldown_seconds=60)
        notifier._sent["k"].last_sent = time.time() - 61

        assert notifier.send("x", dedup_key="k", cooldown_seconds=60) is True

    def test_failed_send_not_recorded(self, notifier, mock_http):
        mock_http.post.side_effect = requests.ConnectionError("down")
        notifier.send("x", dedup_key="k")

        mock_http.post.side_effect = None
        assert notifier.send("x", dedup_key="k") is True

    def test_stats_and_clear(self, notifier):
        notifier.send("x", dedup_key="k")
        notifier.send("y", dedup_key="j")

        assert notifier.get_alert_stats() == {"unique_alerts": 2, "total_sent": 2}
        notifier.clear_dedup_cache()
        assert notifier.get_alert_stats() == {"unique_alerts": 0, "total_sent": 0}
