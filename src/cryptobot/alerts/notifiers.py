# src/cryptobot/alerts/notifiers.py
from __future__ import annotations

from typing import Callable, Optional, Protocol

import structlog

from cryptobot.alerts.formatting import format_alert_reply, format_alert_text
from cryptobot.slack.web import SlackWebClient
from cryptobot.utils.types import Notification

log = structlog.get_logger("notifier")


class Notifier(Protocol):
    async def send(self, n: Notification) -> None: ...


class ConsoleNotifier:
    def __init__(self, format_fn: Optional[Callable[[Notification], str]] = None):
        self._format_fn = format_fn or format_alert_text

    async def send(self, n: Notification) -> None:
        try:
            text = self._format_fn(n)
        except Exception as e:
            log.warning("console_format_failed", err=str(e))
            text = f"{n.asset} {n.direction} {n.threshold} price={n.price}"
        print(f"[ALERT] {n.owner}: {text}", flush=True)


class SlackNotifier:
    """
    Posts a closed-rule message to the alerts channel, tagging the owner.
    Errors propagate to the engine, which logs them.
    """
    def __init__(self, client: SlackWebClient, channel: str):
        self.client = client
        self.channel = channel

    async def send(self, n: Notification) -> None:
        await self.client.post_message(self.channel, format_alert_reply(n))
