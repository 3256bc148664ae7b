from __future__ import annotations

from datetime import datetime, timedelta, timezone

# --- clock helpers ---

def utc_dt(ts: float | int) -> datetime:
    """Epoch seconds -> timezone-aware UTC datetime."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)

def formatted_now(now: datetime | None = None) -> str:
    """Local wall-clock stamp stored with each rule, e.g. 2024-01-01 09:30:00."""
    now = now or datetime.now()
    return now.strftime("%Y-%m-%d %H:%M:%S")

# --- chart ranges ---

DATE_LAYOUT = "%d-%m-%Y"   # DD-MM-YYYY as typed by users

RANGE_PRESETS: dict[str, timedelta] = {
    "24h": timedelta(days=1),
    "30d": timedelta(days=30),
    "1y": timedelta(days=365),
}

def preset_range(name: str, now: datetime | None = None) -> tuple[datetime, datetime]:
    """'24h' | '30d' | '1y' -> (start, end) ending now. KeyError on unknown preset."""
    delta = RANGE_PRESETS[name.lower()]
    end = now or datetime.now(tz=timezone.utc)
    return end - delta, end

def parse_day(text: str) -> datetime:
    """DD-MM-YYYY -> midnight UTC of that day. ValueError on bad input."""
    return datetime.strptime(text, DATE_LAYOUT).replace(tzinfo=timezone.utc)

def display_time(ts_s: float) -> str:
    """Chart label, e.g. '1 Jan 2024 00:00:00'."""
    dt = utc_dt(ts_s)
    return f"{dt.day} {dt.strftime('%b %Y %H:%M:%S')}"
