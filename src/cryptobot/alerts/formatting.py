from __future__ import annotations

from cryptobot.utils.types import Notification, Reply

ALERT_COLOR = "#3aa030"

def _fmt_price(px: float) -> str:
    # keep cents for big coins, more digits for sub-dollar ones
    return f"{px:,.2f}" if px >= 1.0 else f"{px:.6f}"

def format_alert_text(n: Notification) -> str:
    """
    e.g. "BTC is Above 50,000.00 (now 51,000.00)"
    """
    return (
        f"{n.asset} is {n.direction} {_fmt_price(n.threshold)} "
        f"(now {_fmt_price(n.price)})"
    )

def format_alert_reply(n: Notification) -> Reply:
    return Reply(
        text=f"<@{n.owner}> {format_alert_text(n)}",
        pretext="As you requested!",
        color=ALERT_COLOR,
        fields=[
            {"title": "Date", "value": n.created_at, "short": True},
            {"title": "Initializer", "value": n.owner, "short": True},
        ],
    )
