from __future__ import annotations

import logging
from collections.abc import Iterator

from reqguard.cancellation import Aborted, CancellationToken, Outcome
from reqguard.pending import PendingEntry, PendingSet
from reqguard.telemetry import Telemetry

logger = logging.getLogger("reqguard.tracker")


class RequestTracker:
    """Map action keys to their pending calls.

    All mutations are synchronous and run on the event loop thread, so the
    mapping and ``has_pending`` always change together without locking.
    Entries are removed by the settle hook installed in ``register``.
    """

    def __init__(self, name: str = "resource", telemetry: Telemetry | None = None) -> None:
        self._name = name
        self._telemetry = telemetry
        self._pending: dict[str, PendingSet] = {}
        self._entries: dict[CancellationToken, PendingEntry] = {}
        self._has_pending = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def has_pending(self) -> bool:
        return self._has_pending

    def register(self, key: str, token: CancellationToken) -> PendingEntry:
        if token in self._entries:
            raise ValueError(f"token already registered under key {self._entries[token].key!r}")

        entry = PendingEntry(key=key, token=token)
        self._pending.setdefault(key, PendingSet()).add(entry)
        self._entries[token] = entry
        self._refresh()
        logger.debug("%s: registered %r under %r", self._name, token, key)

        def _on_settle(outcome: Outcome) -> None:
            self._complete(entry)

        token.on_settle(_on_settle)
        return entry

    def pending_for(self, key: str) -> tuple[PendingEntry, ...]:
        pending = self._pending.get(key)
        if pending is None:
            return ()
        return pending.snapshot()

    def pending_counts(self) -> dict[str, int]:
        return {key: len(pending) for key, pending in self._pending.items()}

    def entries(self) -> Iterator[PendingEntry]:
        for pending in list(self._pending.values()):
            yield from pending

    def abort_one(
        self,
        key: str,
        token: CancellationToken | None = None,
        reason: str = "aborted",
    ) -> bool:
        """Abort ``token``, or the newest pending call under ``key``.

        Returns whether a settlement actually happened.
        """
        if token is None:
            pending = self._pending.get(key)
            newest = pending.newest() if pending is not None else None
            if newest is None:
                return False
            token = newest.token
        return token.settle(Aborted(reason=reason))

    def abort_all(self, reason: str = "aborted") -> int:
        detached = [entry for pending in self._pending.values() for entry in pending]
        self._pending = {}
        self._entries = {}
        self._refresh()

        aborted = 0
        for entry in detached:
            if entry.token.settle(Aborted(reason=reason)):
                aborted += 1
        logger.info("%s: aborted %d pending request(s)", self._name, aborted)
        if self._telemetry is not None:
            self._telemetry.record_bulk_abort(self._name)
        return aborted

    def _complete(self, entry: PendingEntry) -> None:
        if self._entries.get(entry.token) is not entry:
            return
        del self._entries[entry.token]
        pending = self._pending.get(entry.key)
        if pending is not None:
            pending.remove(entry)
            if not pending:
                del self._pending[entry.key]
        self._refresh()

    def _refresh(self) -> None:
        self._has_pending = bool(self._entries)
        if self._telemetry is not None:
            self._telemetry.set_pending(self._name, len(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
