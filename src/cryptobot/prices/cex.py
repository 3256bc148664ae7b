from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import aiohttp
import structlog

from cryptobot.errors import PriceFetchError

log = structlog.get_logger("prices")


class PriceSource(Protocol):
    async def get_price(self, symbol: str, quote: str = "USD") -> float: ...


@dataclass(slots=True)
class CexConfig:
    base_url: str = "https://cex.io/api"
    timeout_s: float = 10.0


class CexPriceSource:
    """
    Last traded price from CEX.IO:

        GET {base_url}/last_price/BTC/USD -> {"lprice": "51000.5", "curr1": "BTC", "curr2": "USD"}

    One GET per call, no retries; callers decide what a failure means.
    """
    def __init__(self, cfg: Optional[CexConfig] = None, session: Optional[aiohttp.ClientSession] = None):
        self.cfg = cfg or CexConfig()
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

    async def get_price(self, symbol: str, quote: str = "USD") -> float:
        if self._session is None:
            await self.start()
        assert self._session is not None
        url = f"{self.cfg.base_url.rstrip('/')}/last_price/{symbol.upper()}/{quote.upper()}"
        try:
            async with self._session.get(url) as resp:
                if resp.status != 200:
                    raise PriceFetchError(symbol, f"http {resp.status}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError) as e:
            raise PriceFetchError(symbol, str(e) or type(e).__name__) from e
        except ValueError as e:  # body was not JSON
            raise PriceFetchError(symbol, f"bad json: {e}") from e
        return parse_last_price(symbol, data)


def parse_last_price(symbol: str, data: object) -> float:
    if not isinstance(data, dict):
        raise PriceFetchError(symbol, "unexpected payload")
    if data.get("error"):
        raise PriceFetchError(symbol, str(data["error"]))
    raw = data.get("lprice")
    if raw in (None, ""):
        raise PriceFetchError(symbol, "no lprice in response")
    try:
        px = float(raw)
    except (TypeError, ValueError):
        raise PriceFetchError(symbol, f"bad lprice {raw!r}") from None
    if px != px or px <= 0.0:  # NaN / non-positive
        raise PriceFetchError(symbol, f"bad lprice {raw!r}")
    return px
