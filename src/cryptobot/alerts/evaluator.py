from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional, Sequence

import structlog

from cryptobot.alerts.notifiers import Notifier
from cryptobot.alerts.rules import RuleRecord
from cryptobot.errors import PriceFetchError
from cryptobot.prices.cex import PriceSource
from cryptobot.utils.types import Notification
from storage.rule_store import RuleStore

log = structlog.get_logger("rule_engine")


@dataclass(slots=True)
class EngineConfig:
    quote: str = "USD"


@dataclass(slots=True)
class PassReport:
    visited: int = 0
    active: int = 0                 # still active after the pass
    closed: int = 0                 # closed during this pass
    price_calls: int = 0
    skipped_assets: list[str] = field(default_factory=list)
    notified: int = 0
    failed_notifications: int = 0


class _Pass:
    """
    State for a single evaluation pass. Prices are memoized as tasks so that
    concurrent visits of the same asset share one fetch.
    """
    def __init__(self, prices: PriceSource, quote: str):
        self._prices = prices
        self._quote = quote
        self._memo: dict[str, asyncio.Task] = {}
        self.report = PassReport()
        self.pending: list[Notification] = []

    def price_of(self, asset: str) -> asyncio.Task:
        t = self._memo.get(asset)
        if t is None:
            t = asyncio.ensure_future(self._fetch(asset))
            self._memo[asset] = t
        return t

    async def _fetch(self, asset: str) -> Optional[float]:
        self.report.price_calls += 1
        try:
            return await self._prices.get_price(asset, self._quote)
        except PriceFetchError as e:
            log.warning("price_fetch_failed", asset=asset, err=e.reason)
        except Exception as e:
            log.warning("price_fetch_failed", asset=asset, err=repr(e))
        self.report.skipped_assets.append(asset)
        return None

    async def visit(self, rec: RuleRecord) -> RuleRecord:
        self.report.visited += 1
        if not rec.active:
            return rec

        price = await self.price_of(rec.asset)
        if price is None or not rec.matches(price):
            self.report.active += 1
            return rec

        self.report.closed += 1
        self.pending.append(Notification(
            owner=rec.owner,
            asset=rec.asset,
            threshold=rec.threshold,
            direction=rec.direction.value,
            price=price,
            created_at=rec.created_at,
        ))
        return rec.close()


class RuleEngine:
    """
    One evaluation pass over the RuleStore:

      1) scan every record (store lock held for the whole scan + rewrite)
      2) fetch each Active record's asset price at most once per pass
      3) close records whose price strictly crossed the barrier
      4) rewrite the store in original order
      5) only then deliver notifications

    A failed price fetch leaves all of that asset's records Active until the
    next pass. A failed notification is logged; the rule stays Closed.
    Parse/IO errors from the store propagate and nothing is notified.
    """
    def __init__(
        self,
        store: RuleStore,
        prices: PriceSource,
        notifiers: Sequence[Notifier],
        cfg: Optional[EngineConfig] = None,
    ):
        self.store = store
        self.prices = prices
        self.notifiers = list(notifiers)
        self.cfg = cfg or EngineConfig()

    async def evaluate_pass(self) -> PassReport:
        p = _Pass(self.prices, self.cfg.quote)
        await self.store.scan_and_rewrite(p.visit)

        for n in p.pending:
            if await self._deliver(n):
                p.report.notified += 1
            else:
                p.report.failed_notifications += 1
        return p.report

    async def _deliver(self, n: Notification) -> bool:
        ok = True
        for notifier in self.notifiers:
            try:
                await notifier.send(n)
            except Exception as e:
                ok = False
                log.error("notify_failed", notifier=type(notifier).__name__,
                          owner=n.owner, asset=n.asset, err=str(e))
        return ok
