# src/storage/rule_store.py
from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Awaitable, Callable, Optional

import structlog

from cryptobot.alerts.rules import RuleRecord
from cryptobot.errors import RuleParseError, RuleStoreError

log = structlog.get_logger("rule_store")

Visitor = Callable[[RuleRecord], Awaitable[RuleRecord]]


class RuleStore:
    """
    Flat-file store of barrier rules, one pipe-delimited record per line:

        <State>|<owner>|<createdAt>|<asset>|<threshold>|<direction>

    Two mutating operations, both serialised by one asyncio.Lock held for
    their whole duration:
      - append(record)            new rule, always written as Active
      - scan_and_rewrite(visit)   read all -> visit each -> atomic replace

    A rewrite goes to `<path>.tmp` and is moved over the store with
    os.replace(), so readers never observe a half-written file. If any line
    fails to parse nothing is written.

    Share one instance between the command handler and the scheduler.
    """

    def __init__(self, path: str | os.PathLike[str], *, fsync: bool = True):
        self.path = Path(path)
        self.fsync = fsync
        self._lock = asyncio.Lock()

    @property
    def tmp_path(self) -> Path:
        return self.path.with_name(self.path.name + ".tmp")

    # ---------------------------- public API ---------------------------- #

    async def append(self, record: RuleRecord) -> None:
        try:
            line = record.as_active().serialize()
        except ValueError as e:
            raise RuleStoreError(f"refusing to save malformed rule: {e}") from e
        async with self._lock:
            try:
                await _finish_in_thread(self._append_sync, line)
            except OSError as e:
                log.error("append_failed", path=str(self.path), err=str(e))
                raise RuleStoreError(f"could not save rule: {e}") from e
        log.info("rule_appended", owner=record.owner, asset=record.asset,
                 threshold=record.threshold, direction=record.direction.value)

    async def scan_and_rewrite(self, visit: Visitor) -> int:
        """
        Visit every stored record and rewrite the store with the results, in
        the original order. Returns the number of records visited (0 when the
        file does not exist yet).

        Raises RuleParseError (file untouched) or RuleStoreError.
        """
        async with self._lock:
            records = await self._load()
            if records is None:
                return 0

            results = await asyncio.gather(*(visit(r) for r in records))

            out: list[RuleRecord] = []
            for before, after in zip(records, results):
                if not before.active and after != before:
                    # closed rules are terminal; keep the stored version
                    log.warning("closed_rule_mutation_ignored", owner=before.owner, asset=before.asset)
                    after = before
                out.append(after)

            try:
                text = "".join(r.serialize() for r in out)
            except ValueError as e:
                raise RuleStoreError(f"visit produced a malformed rule: {e}") from e
            try:
                await _finish_in_thread(self._rewrite_sync, text)
            except OSError as e:
                log.error("rewrite_failed", path=str(self.path), err=str(e))
                raise RuleStoreError(f"could not rewrite rules file: {e}") from e
            return len(records)

    async def records(self, owner: Optional[str] = None) -> list[RuleRecord]:
        """Parsed snapshot, optionally filtered by owner."""
        async with self._lock:
            records = await self._load()
        if not records:
            return []
        if owner is None:
            return records
        return [r for r in records if r.owner == owner]

    # --------------------------- internals ------------------------------ #

    async def _load(self) -> Optional[list[RuleRecord]]:
        try:
            text = await asyncio.to_thread(self._read_sync)
        except OSError as e:
            raise RuleStoreError(f"could not read rules file: {e}") from e
        if text is None:
            return None
        return parse_lines(text)

    def _read_sync(self) -> Optional[str]:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _append_sync(self, line: str) -> None:
        prefix = ""
        if self.path.exists() and self.path.stat().st_size > 0:
            with self.path.open("rb") as f:
                f.seek(-1, os.SEEK_END)
                if f.read(1) != b"\n":
                    prefix = "\n"
        with self.path.open("a", encoding="utf-8", newline="\n") as f:
            f.write(prefix + line)
            f.flush()
            if self.fsync:
                os.fsync(f.fileno())

    def _rewrite_sync(self, text: str) -> None:
        tmp = self.tmp_path
        try:
            with tmp.open("w", encoding="utf-8", newline="\n") as f:
                f.write(text)
                f.flush()
                if self.fsync:
                    os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise


async def _finish_in_thread(fn: Callable[..., None], *args) -> None:
    """
    Run a blocking write in a worker thread and wait for it even if the
    caller is cancelled, so the store lock is only released once the file
    is in its final state. The cancellation is re-raised afterwards.
    """
    fut = asyncio.ensure_future(asyncio.to_thread(fn, *args))
    try:
        await asyncio.shield(fut)
    except asyncio.CancelledError:
        log.info("write_finishing_after_cancel")
        await fut
        raise


def parse_lines(text: str) -> list[RuleRecord]:
    """
    Decode a whole rules file. Blank lines are skipped; any other bad line
    aborts with RuleParseError carrying its 1-based line number.
    """
    out: list[RuleRecord] = []
    for lineno, raw in enumerate(text.split("\n"), start=1):
        if not raw.strip():
            continue
        try:
            out.append(RuleRecord.parse(raw))
        except RuleParseError as e:
            e.lineno = lineno
            raise
    return out
