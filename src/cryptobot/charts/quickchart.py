from __future__ import annotations

import json
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence
from urllib.parse import unquote

import aiohttp
import numpy as np
import structlog

from cryptobot.errors import ChartError
from cryptobot.utils.time import display_time

log = structlog.get_logger("charts")

MAX_POINTS = 250


@dataclass(slots=True)
class ChartConfig:
    coingecko_url: str = "https://api.coingecko.com/api/v3"
    quickchart_url: str = "https://quickchart.io"
    width: int = 800
    height: int = 600
    device_pixel_ratio: float = 1.0
    fmt: str = "png"
    background: str = "#ffffff"
    timeout_s: float = 10.0


def sample_series(prices: Sequence[Sequence[float]], max_points: int = MAX_POINTS) -> np.ndarray:
    """
    [[ts_ms, price], ...] -> every k-th row with k = ceil(n / max_points),
    so at most `max_points` rows survive and the first point is kept.
    """
    arr = np.asarray(prices, dtype=float)
    if arr.size == 0:
        return np.empty((0, 2))
    if arr.ndim != 2 or arr.shape[1] < 2:
        raise ChartError("unexpected price series shape")
    stride = max(1, math.ceil(len(arr) / max_points))
    return arr[::stride, :2]


def build_chart_config(points: np.ndarray, label: str) -> dict[str, Any]:
    """Chart.js line chart over sampled (ts_ms, price) rows."""
    return {
        "type": "line",
        "data": {
            "labels": [display_time(ts_ms / 1000.0) for ts_ms in points[:, 0]],
            "datasets": [{
                "label": label,
                "data": [round(float(px), 3) for px in points[:, 1]],
                "fill": False,
                "pointRadius": 0,
            }],
        },
    }


class ChartService:
    """
    Historical price chart for an asset over [start, end):
      1) CoinGecko market_chart/range -> [[ts_ms, price], ...]
      2) down-sample to <= 250 points
      3) POST the Chart.js config to QuickChart /chart/create -> short URL
    """
    def __init__(self, cfg: Optional[ChartConfig] = None, session: Optional[aiohttp.ClientSession] = None):
        self.cfg = cfg or ChartConfig()
        self._session = session
        self._owns_session = session is None

    async def start(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def stop(self) -> None:
        if self._session and self._owns_session:
            await self._session.close()
            self._session = None

    async def chart_url(self, coin_id: str, start: datetime, end: datetime) -> str:
        t0, t1 = int(start.timestamp()), int(end.timestamp())
        if t0 >= t1:
            raise ChartError("Data range is not valid")

        prices = await self._fetch_range(coin_id, t0, t1)
        points = sample_series(prices)
        if len(points) == 0:
            raise ChartError("No price data for that range")
        log.info("chart_points", coin=coin_id, raw=len(prices), sampled=len(points))
        return await self._short_url(build_chart_config(points, coin_id))

    async def _fetch_range(self, coin_id: str, t0: int, t1: int) -> list:
        if self._session is None:
            await self.start()
        assert self._session is not None
        url = f"{self.cfg.coingecko_url.rstrip('/')}/coins/{coin_id}/market_chart/range"
        params = {"vs_currency": "usd", "from": str(t0), "to": str(t1)}
        try:
            async with self._session.get(url, params=params) as resp:
                if resp.status != 200:
                    log.warning("coingecko_bad_status", status=resp.status, coin=coin_id)
                    raise ChartError("Unexpected error, please try again")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            log.warning("coingecko_request_failed", err=str(e), coin=coin_id)
            raise ChartError("Unexpected error, please try again") from e
        if not isinstance(data, dict):
            raise ChartError("Unexpected error, please try again")
        return data.get("prices") or []

    async def _short_url(self, chart: dict[str, Any]) -> str:
        assert self._session is not None
        body = {
            "width": self.cfg.width,
            "height": self.cfg.height,
            "devicePixelRatio": self.cfg.device_pixel_ratio,
            "format": self.cfg.fmt,
            "backgroundColor": self.cfg.background,
            "chart": json.dumps(chart),
        }
        url = f"{self.cfg.quickchart_url.rstrip('/')}/chart/create"
        try:
            async with self._session.post(url, json=body) as resp:
                if resp.status != 200:
                    log.warning("quickchart_bad_status", status=resp.status,
                                detail=resp.headers.get("X-quickchart-error"))
                    raise ChartError("Unexpected error, please try again")
                raw = await resp.text()
        except (aiohttp.ClientError, TimeoutError) as e:
            log.warning("quickchart_request_failed", err=str(e))
            raise ChartError("Unexpected error, please try again") from e
        try:
            short = json.loads(unquote(raw)).get("url")
        except (ValueError, AttributeError):
            short = None
        if not short:
            raise ChartError("Unexpected error, please try again")
        return short
