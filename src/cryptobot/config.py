from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv


def _flag(v: Optional[str], default: bool) -> bool:
    if v is None or v == "":
        return default
    return v.strip().lower() in ("1", "true", "yes", "on")


@dataclass(slots=True)
class Settings:
    slack_bot_token: Optional[str] = None
    slack_app_token: Optional[str] = None
    slack_channel_id: Optional[str] = None

    alerts_file: str = "alarms.txt"
    check_interval_s: float = 10.0
    quote_currency: str = "USD"

    price_api_url: str = "https://cex.io/api"
    coingecko_url: str = "https://api.coingecko.com/api/v3"
    quickchart_url: str = "https://quickchart.io"
    http_timeout_s: float = 10.0

    log_level: str = "INFO"
    startup_ping: bool = True

    @property
    def slack_enabled(self) -> bool:
        return bool(self.slack_bot_token and self.slack_app_token and self.slack_channel_id)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Reads the process environment (after .env) unless `env` is given.
        ValueError on malformed numbers.
        """
        if env is None:
            load_dotenv()
            env = os.environ
        interval = float(env.get("ALERT_CHECK_INTERVAL_S", "10"))
        if interval <= 0:
            raise ValueError("ALERT_CHECK_INTERVAL_S must be > 0")
        return cls(
            slack_bot_token=env.get("SLACK_BOT_TOKEN") or env.get("SLACK_AUTH_TOKEN"),
            slack_app_token=env.get("SLACK_APP_TOKEN"),
            slack_channel_id=env.get("SLACK_CHANNEL_ID"),
            alerts_file=env.get("ALERTS_FILE", "alarms.txt"),
            check_interval_s=interval,
            quote_currency=env.get("QUOTE_CURRENCY", "USD").upper(),
            price_api_url=env.get("PRICE_API_URL", "https://cex.io/api"),
            coingecko_url=env.get("COINGECKO_BASE_URL", "https://api.coingecko.com/api/v3"),
            quickchart_url=env.get("QUICKCHART_URL", "https://quickchart.io"),
            http_timeout_s=float(env.get("HTTP_TIMEOUT_S", "10")),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            startup_ping=_flag(env.get("STARTUP_PING"), True),
        )
