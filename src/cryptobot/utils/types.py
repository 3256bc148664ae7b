from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, TypedDict

# ---- inbound (messaging platform) ----

@dataclass(slots=True)
class MentionEvent:
    user: str          # platform user id of whoever mentioned the bot
    text: str
    channel: str
    ts: Optional[str] = None

# ---- outbound ----

class AttachmentField(TypedDict):
    title: str
    value: str
    short: bool

@dataclass(slots=True)
class Reply:
    """
    One formatted message (rendered as a single Slack attachment).
    """
    text: str
    pretext: str = ""
    color: str = "#3d3d3d"
    fields: list[AttachmentField] = field(default_factory=list)
    image_url: Optional[str] = None

@dataclass(slots=True)
class Notification:
    """Emitted once when a rule closes."""
    owner: str
    asset: str
    threshold: float
    direction: str          # "Above" | "Below"
    price: float            # price that crossed the threshold
    created_at: str
