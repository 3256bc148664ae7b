from __future__ import annotations


class CryptoBotError(Exception):
    """Base class for everything this bot raises on purpose."""


class RuleParseError(CryptoBotError):
    """A stored rule line could not be decoded."""

    def __init__(self, message: str, line: str | None = None, lineno: int | None = None):
        super().__init__(message)
        self.line = line
        self.lineno = lineno

    def __str__(self) -> str:
        base = super().__str__()
        if self.lineno is not None:
            return f"{base} (line {self.lineno})"
        return base


class RuleStoreError(CryptoBotError):
    """The rules file could not be read or written."""


class PriceFetchError(CryptoBotError):
    def __init__(self, symbol: str, reason: str):
        super().__init__(f"price fetch failed for {symbol}: {reason}")
        self.symbol = symbol
        self.reason = reason


class ChartError(CryptoBotError):
    pass


class CommandError(CryptoBotError):
    """
    Raised by command handlers; `str(err)` is shown to the user as-is,
    `pretext` is the attachment header.
    """

    def __init__(self, message: str, pretext: str = "I'm Sorry"):
        super().__init__(message)
        self.pretext = pretext
