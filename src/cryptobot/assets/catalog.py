from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Mapping, Optional

# ticker -> CoinGecko id
DEFAULT_ASSETS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "ADA": "cardano",
    "DOT": "polkadot",
    "UNI": "uniswap",
    "AAVE": "aave",
}

@dataclass(frozen=True, slots=True)
class Asset:
    symbol: str   # canonical ticker, stored in the rules file
    id: str       # price/chart API identifier

class SymbolCatalog:
    """
    Bidirectional ticker <-> id vocabulary. Users may type either form in
    any case; everything downstream sees the canonical ticker.
    """
    def __init__(self, assets: Optional[Mapping[str, str]] = None):
        src = assets if assets is not None else DEFAULT_ASSETS
        self._by_symbol: dict[str, Asset] = {}
        self._by_id: dict[str, Asset] = {}
        for sym, ident in src.items():
            a = Asset(symbol=sym.upper(), id=ident.lower())
            self._by_symbol[a.symbol] = a
            self._by_id[a.id] = a

    def resolve(self, name: str) -> Optional[Asset]:
        key = name.strip()
        return self._by_symbol.get(key.upper()) or self._by_id.get(key.lower())

    def to_symbol(self, name: str) -> Optional[str]:
        a = self.resolve(name)
        return a.symbol if a else None

    def to_id(self, name: str) -> Optional[str]:
        a = self.resolve(name)
        return a.id if a else None

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.resolve(name) is not None

    def __iter__(self) -> Iterator[Asset]:
        return iter(self._by_symbol.values())

    def __len__(self) -> int:
        return len(self._by_symbol)
