from __future__ import annotations

from cryptobot.alerts.rules import Direction, RuleRecord
from cryptobot.assets.catalog import SymbolCatalog
from cryptobot.utils.types import AttachmentField, Reply

RED = "#ff0000"
ORANGE = "#ff8000"
BLUE = "#0000ff"
GREEN = "#4af030"
GREY = "#3d3d3d"

UNSUPPORTED = "I don't support that crypto ID or it doesn't exist (yet)"

HELP = """Available commands just for you
- @CryptoBot hello -> Greet me!
- @CryptoBot cryptoList -> Lists crypto names to show data or set rules
- @CryptoBot price any_crypto_name -> Gets the current price of the crypto (if it exists)
- @CryptoBot chart any_crypto_name DD-MM-YYYY DD-MM-YYYY -> Historical market price within a range of dates
- @CryptoBot chart any_crypto_name 24h/30d/1y -> Historical market price for the last 24 hours, 30 days or 1 year
- @CryptoBot setHigh any_crypto_name high_value -> I'll tell you when the crypto goes above that value
- @CryptoBot setLow any_crypto_name low_value -> I'll tell you when the crypto goes below that value
- @CryptoBot myRules -> Lists your active alerts
More to come!"""


def context_fields(date: str, name: str) -> list[AttachmentField]:
    return [
        {"title": "Date", "value": date, "short": True},
        {"title": "Initializer", "value": name, "short": True},
    ]


def sorry(text: str, fields: list[AttachmentField], pretext: str = "I'm Sorry") -> Reply:
    return Reply(text=text, pretext=pretext, color=RED, fields=fields)


def unknown_command(name: str, fields: list[AttachmentField]) -> Reply:
    return Reply(
        text=f"How can I help you {name}? Type 'help' after tagging me to know what I can do",
        pretext="That's not a true command!",
        color=GREY,
        fields=fields,
    )


def hello(name: str) -> Reply:
    return Reply(text=f"Hello {name}", pretext="Greetings", color=GREEN)


def help_text() -> Reply:
    return Reply(text=HELP, pretext="Here is all I can do!", color=BLUE)


def crypto_list(catalog: SymbolCatalog) -> Reply:
    lines = [f"{a.symbol} - {a.id}" for a in catalog]
    return Reply(
        text="Feel free to use either the full name or the abbreviation!\n" + "\n".join(lines),
        pretext="Here goes a list of cryptos you might be interested in",
        color=BLUE,
    )


def price(symbol: str, px: float, quote: str) -> Reply:
    return Reply(text=f"1 {symbol} equals to {px:,.2f} {quote}", pretext="As you wanted", color=ORANGE)


def rule_saved(rec: RuleRecord) -> Reply:
    word = "above" if rec.direction is Direction.ABOVE else "below"
    return Reply(
        text=f"I'll let you know when {rec.asset} goes {word} {rec.threshold:,.2f}",
        pretext="Good work!",
        color=ORANGE,
    )


def chart(url: str) -> Reply:
    return Reply(
        text="Here is the historical market price for that data range",
        pretext="As you wanted",
        color=BLUE,
        image_url=url,
    )


def rule_list(records: list[RuleRecord]) -> Reply:
    if not records:
        return Reply(text="You have no active alerts", pretext="Your rules", color=BLUE)
    lines = [
        f"{r.asset} {r.direction.value.lower()} {r.threshold:,.2f} (since {r.created_at})"
        for r in records
    ]
    return Reply(text="\n".join(lines), pretext=f"Your rules ({len(records)} active)", color=BLUE)
