from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from reqguard.cancellation import CancellationToken


@dataclass(frozen=True, slots=True, eq=False)
class PendingEntry:
    key: str
    token: CancellationToken


class PendingSet:
    """Outstanding entries for one action key, oldest first."""

    def __init__(self) -> None:
        self._entries: list[PendingEntry] = []

    def add(self, entry: PendingEntry) -> None:
        self._entries.append(entry)

    def remove(self, entry: PendingEntry) -> bool:
        for index, candidate in enumerate(self._entries):
            if candidate is entry:
                del self._entries[index]
                return True
        return False

    def newest(self) -> PendingEntry | None:
        return self._entries[-1] if self._entries else None

    def snapshot(self) -> tuple[PendingEntry, ...]:
        return tuple(self._entries)

    def __iter__(self) -> Iterator[PendingEntry]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)
