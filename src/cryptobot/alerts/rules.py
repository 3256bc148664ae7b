# src/cryptobot/alerts/rules.py
from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass
from enum import Enum

from cryptobot.errors import RuleParseError

SEP = "|"
FIELD_COUNT = 6   # state|owner|created_at|asset|threshold|direction
THRESHOLD_DECIMALS = 6


class Direction(str, Enum):
    ABOVE = "Above"    # notify when price rises past threshold
    BELOW = "Below"    # notify when price falls past threshold

    @classmethod
    def parse(cls, token: str) -> "Direction":
        d = _DIRECTION_TOKENS.get(token.strip().lower())
        if d is None:
            raise RuleParseError(f"unknown direction {token!r}")
        return d


# older files wrote highLimit/lowLimit
_DIRECTION_TOKENS: dict[str, Direction] = {
    "above": Direction.ABOVE,
    "highlimit": Direction.ABOVE,
    "below": Direction.BELOW,
    "lowlimit": Direction.BELOW,
}


class RuleState(str, Enum):
    ACTIVE = "Active"
    CLOSED = "Closed"

    @classmethod
    def parse(cls, token: str) -> "RuleState":
        for s in cls:
            if s.value == token:
                return s
        raise RuleParseError(f"unknown state tag {token!r}")


@dataclass(frozen=True, slots=True)
class RuleRecord:
    """
    One barrier rule: notify `owner` when `asset` crosses `threshold`
    in `direction`. ACTIVE -> CLOSED is one-way.

    On disk (one line):
        Active|alice|2024-01-01 10:00:00|BTC|50000.000000|Above
    """
    owner: str
    created_at: str
    asset: str
    threshold: float
    direction: Direction
    state: RuleState = RuleState.ACTIVE

    # ---- construction ----

    @classmethod
    def new(cls, owner: str, created_at: str, asset: str, threshold: float,
            direction: Direction) -> "RuleRecord":
        """
        Validated constructor used by the create-rule command. The threshold
        is rounded to the precision it is stored with before the positivity
        check, so what is validated is what lands on disk.
        """
        threshold = float(threshold)
        if not math.isfinite(threshold):
            raise ValueError("threshold must be a finite number")
        threshold = round(threshold, THRESHOLD_DECIMALS)
        if not threshold > 0:
            raise ValueError("threshold must be a positive number")
        rec = cls(owner=owner, created_at=created_at, asset=asset,
                  threshold=threshold, direction=direction)
        rec.check_fields()
        return rec

    @classmethod
    def parse(cls, line: str) -> "RuleRecord":
        parts = line.rstrip("\r\n").split(SEP)
        if len(parts) != FIELD_COUNT:
            raise RuleParseError(f"expected {FIELD_COUNT} fields, got {len(parts)}", line=line)
        state_tok, owner, created_at, asset, threshold_tok, direction_tok = parts
        try:
            threshold = float(threshold_tok)
        except ValueError:
            raise RuleParseError(f"bad threshold {threshold_tok!r}", line=line) from None
        try:
            state = RuleState.parse(state_tok)
            direction = Direction.parse(direction_tok)
        except RuleParseError as e:
            e.line = line
            raise
        rec = cls(owner=owner, created_at=created_at, asset=asset,
                  threshold=threshold, direction=direction, state=state)
        try:
            rec.check_fields()
        except ValueError as e:
            raise RuleParseError(str(e), line=line) from None
        return rec

    # ---- behaviour ----

    def check_fields(self) -> None:
        """Raises ValueError if a text field would break the line format."""
        for name, value in (("owner", self.owner), ("created_at", self.created_at), ("asset", self.asset)):
            if not value or SEP in value or "\n" in value or "\r" in value:
                raise ValueError(f"invalid {name}: {value!r}")

    def serialize(self) -> str:
        self.check_fields()
        return SEP.join((
            self.state.value,
            self.owner,
            self.created_at,
            self.asset,
            f"{self.threshold:.{THRESHOLD_DECIMALS}f}",
            self.direction.value,
        )) + "\n"

    def matches(self, price: float) -> bool:
        # strict both ways: sitting exactly on the barrier is not a cross
        if self.direction is Direction.ABOVE:
            return price > self.threshold
        return price < self.threshold

    @property
    def active(self) -> bool:
        return self.state is RuleState.ACTIVE

    def close(self) -> "RuleRecord":
        return dataclasses.replace(self, state=RuleState.CLOSED)

    def as_active(self) -> "RuleRecord":
        return dataclasses.replace(self, state=RuleState.ACTIVE)
