from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog

from cryptobot.alerts.rules import Direction, RuleRecord
from cryptobot.assets.catalog import SymbolCatalog
from cryptobot.charts.quickchart import ChartService
from cryptobot.commands import replies
from cryptobot.errors import ChartError, CommandError, PriceFetchError, RuleParseError, RuleStoreError
from cryptobot.prices.cex import PriceSource
from cryptobot.utils.time import formatted_now, parse_day, preset_range
from cryptobot.utils.types import MentionEvent, Reply
from storage.rule_store import RuleStore

log = structlog.get_logger("commands")

UserNameFn = Callable[[str], Awaitable[str]]


@dataclass(slots=True)
class ParsedCommand:
    action: str
    args: list[str]


def parse_command(text: str) -> ParsedCommand:
    """
    "<@U0BOT> setHigh BTC 50000" -> ParsedCommand("sethigh", ["btc", "50000"])
    Mentions are dropped wherever they appear; matching is case-insensitive.
    """
    tokens = [t for t in text.lower().split() if not t.startswith("<@")]
    if not tokens:
        return ParsedCommand(action="", args=[])
    return ParsedCommand(action=tokens[0], args=tokens[1:])


class CommandRouter:
    """
    Maps a mention to a Reply. Every handler returns a Reply; user errors
    are raised as CommandError and rendered as an apology.
    """
    def __init__(
        self,
        store: RuleStore,
        catalog: SymbolCatalog,
        prices: PriceSource,
        charts: Optional[ChartService] = None,
        user_name: Optional[UserNameFn] = None,
        quote: str = "USD",
        now_fn: Callable[[], str] = formatted_now,
    ):
        self.store = store
        self.catalog = catalog
        self.prices = prices
        self.charts = charts
        self.quote = quote
        self._user_name = user_name
        self._now = now_fn
        self._handlers = {
            "hello": self._hello,
            "help": self._help,
            "cryptolist": self._crypto_list,
            "price": self._price,
            "sethigh": self._set_high,
            "setlow": self._set_low,
            "chart": self._chart,
            "myrules": self._my_rules,
        }

    async def handle(self, evt: MentionEvent) -> Reply:
        cmd = parse_command(evt.text)
        name = await self._name_of(evt.user)
        date = self._now()
        fields = replies.context_fields(date, name)

        handler = self._handlers.get(cmd.action)
        if handler is None:
            return replies.unknown_command(name, fields)
        try:
            reply = await handler(evt, cmd.args, name, date)
        except CommandError as e:
            return replies.sorry(str(e), fields, pretext=e.pretext)
        log.info("command_handled", action=cmd.action, user=evt.user)
        if not reply.fields:
            reply.fields = fields
        return reply

    async def _name_of(self, user_id: str) -> str:
        if self._user_name is None:
            return user_id
        return await self._user_name(user_id)

    # ------------------------------ handlers ---------------------------- #

    async def _hello(self, evt, args, name, date) -> Reply:
        return replies.hello(name)

    async def _help(self, evt, args, name, date) -> Reply:
        return replies.help_text()

    async def _crypto_list(self, evt, args, name, date) -> Reply:
        return replies.crypto_list(self.catalog)

    async def _price(self, evt, args, name, date) -> Reply:
        if not args:
            raise CommandError("You didn't enter any crypto id")
        symbol = self._symbol(args[0])
        try:
            px = await self.prices.get_price(symbol, self.quote)
        except PriceFetchError as e:
            log.warning("price_command_failed", asset=symbol, err=e.reason)
            raise CommandError("I couldn't get that price right now, please try again") from e
        return replies.price(symbol, px, self.quote)

    async def _set_high(self, evt, args, name, date) -> Reply:
        return await self._set_limit(evt, args, date, Direction.ABOVE)

    async def _set_low(self, evt, args, name, date) -> Reply:
        return await self._set_limit(evt, args, date, Direction.BELOW)

    async def _set_limit(self, evt: MentionEvent, args: list[str], date: str, direction: Direction) -> Reply:
        if len(args) < 2:
            raise CommandError("Please try again", pretext="Command error")
        symbol = self._symbol(args[0])
        try:
            threshold = float(args[1])
        except ValueError:
            raise CommandError(f"{args[1]!r} is not a number") from None
        try:
            # also rejects values that round to zero at stored precision
            rec = RuleRecord.new(owner=evt.user, created_at=date, asset=symbol,
                                 threshold=threshold, direction=direction)
        except ValueError:
            raise CommandError("That's not a valid value! It must be a positive number",
                               pretext="Try again!") from None
        try:
            await self.store.append(rec)
        except RuleStoreError as e:
            raise CommandError("Please try again") from e
        return replies.rule_saved(rec)

    async def _chart(self, evt, args, name, date) -> Reply:
        if len(args) < 2:
            raise CommandError("Please try again", pretext="Command error")
        if self.charts is None:
            raise CommandError("Charts are not available right now")
        coin_id = self.catalog.to_id(args[0])
        if coin_id is None:
            raise CommandError(replies.UNSUPPORTED)

        try:
            if len(args) == 2:
                start, end = preset_range(args[1])
            else:
                start, end = parse_day(args[1]), parse_day(args[2])
        except (KeyError, ValueError):
            raise CommandError("That's not a true command!") from None

        try:
            url = await self.charts.chart_url(coin_id, start, end)
        except ChartError as e:
            raise CommandError(str(e)) from e
        return replies.chart(url)

    async def _my_rules(self, evt, args, name, date) -> Reply:
        try:
            mine = await self.store.records(owner=evt.user)
        except (RuleStoreError, RuleParseError) as e:
            raise CommandError("Please try again") from e
        return replies.rule_list([r for r in mine if r.active])

    # ------------------------------ helpers ----------------------------- #

    def _symbol(self, name: str) -> str:
        sym = self.catalog.to_symbol(name)
        if sym is None:
            raise CommandError(replies.UNSUPPORTED)
        return sym
