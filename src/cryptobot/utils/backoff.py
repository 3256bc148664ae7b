from __future__ import annotations

import random
from dataclasses import dataclass, field

def next_backoff(prev: float, cap: float) -> float:
    return min(prev * 2.0, cap)

def jitter(v: float, *, ratio: float = 0.2) -> float:
    """
    Add ±ratio jitter. ratio=0.2 -> multiply by [0.8, 1.2].
    """
    return v * (1.0 - ratio + 2.0 * ratio * random.random())

@dataclass(slots=True)
class Backoff:
    """
    Doubling delay with a cap, shared by the socket-mode reconnect loop
    and the Slack retry loop.

        b = Backoff(initial=0.5, cap=8.0)
        b.next()  # 0.5, then 1.0, 2.0, 4.0, 8.0, 8.0 ...
        b.reset()
    """
    initial: float = 0.25
    cap: float = 30.0
    _current: float = field(default=0.0, init=False)

    def next(self) -> float:
        if self._current <= 0.0:
            self._current = self.initial
        else:
            self._current = next_backoff(self._current, self.cap)
        return self._current

    def next_jittered(self, ratio: float = 0.2) -> float:
        return jitter(self.next(), ratio=ratio)

    def reset(self) -> None:
        self._current = 0.0
