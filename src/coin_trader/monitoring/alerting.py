"""
Discord webhook notifier.

Delivers operator messages with deduplication so a repeating failure does not
flood the channel.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

# Discord rejects message content longer than this
MAX_CONTENT_LENGTH = 2000


@dataclass
class AlertRecord:
    """Tracks when a message was last sent."""

    key: str
    last_sent: float  # Unix timestamp
    count: int = 1


class DiscordNotifier:
    """
    Sends messages to a Discord webhook.

    Usage:
        notifier = DiscordNotifier(webhook_url="https://discord.com/api/webhooks/...")
        notifier.send("Trade executed")
        notifier.send("Exchange unreachable", dedup_key="exchange_down")
    """

    DEFAULT_COOLDOWN = 300  # 5 minutes

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        default_cooldown: int = DEFAULT_COOLDOWN,
        timeout: float = 10.0,
        _http: Optional[Any] = None,  # For testing
    ) -> None:
        self._webhook_url = webhook_url
        self._default_cooldown = default_cooldown
        self._timeout = timeout
        self._http = _http or requests
        self._sent: Dict[str, AlertRecord] = {}

    @property
    def is_configured(self) -> bool:
        return bool(self._webhook_url)

    def send(
        self,
        message: str,
        dedup_key: Optional[str] = None,
        cooldown_seconds: Optional[int] = None,
    ) -> bool:
        """
        Send a message. Returns True if delivered, False if deduplicated,
        unconfigured or rejected. Never raises.
        """
        if dedup_key:
            cooldown = cooldown_seconds or self._default_cooldown
            if not self._should_send(dedup_key, cooldown):
                logger.debug(f"Deduplicated message: {dedup_key}")
                return False

        if not self._webhook_url:
            logger.warning(f"Discord webhook not configured, dropping: {message[:80]}")
            return False

        content = message if len(message) <= MAX_CONTENT_LENGTH else message[: MAX_CONTENT_LENGTH - 3] + "..."
        try:
            response = self._http.post(
                self._webhook_url, json={"content": content}, timeout=self._timeout
            )
            response.raise_for_status()
        except Exception as e:
            logger.error(f"Failed to send Discord message: {e}")
            return False

        logger.info(f"Sent Discord message: {content[:50]}...")
        if dedup_key:
            self._record_sent(dedup_key)
        return True

    def _should_send(self, key: str, cooldown: int) -> bool:
        """Check if a message should be sent based on cooldown."""
        record = self._sent.get(key)
        if record is None:
            return True
        return (time.time() - record.last_sent) >= cooldown

    def _record_sent(self, key: str) -> None:
        now = time.time()
        if key in self._sent:
            self._sent[key].last_sent = now
            self._sent[key].count += 1
        else:
            self._sent[key] = AlertRecord(key=key, last_sent=now)

    def clear_dedup_cache(self) -> None:
        self._sent.clear()

    def get_alert_stats(self) -> Dict[str, int]:
        return {
            "unique_alerts": len(self._sent),
            "total_sent": sum(r.count for r in self._sent.values()),
        }
