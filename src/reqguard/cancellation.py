from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger("reqguard.cancellation")


@dataclass(frozen=True, slots=True)
class Completed:
    value: Any


@dataclass(frozen=True, slots=True)
class Failed:
    error: BaseException


@dataclass(frozen=True, slots=True)
class Aborted:
    reason: str = "aborted"


Outcome = Completed | Failed | Aborted
SettleListener = Callable[[Outcome], None]


class CancellationToken:
    """Settle-once signal for one in-flight call.

    The transport's natural completion and an explicit abort race to settle
    the same token; only the first ``settle`` takes effect. Listeners run
    synchronously inside the winning ``settle`` call, so bookkeeping hooked
    onto a token is updated before control returns to the event loop.
    """

    def __init__(self) -> None:
        self._outcome: Outcome | None = None
        self._listeners: list[SettleListener] = []
        self._settled_event = asyncio.Event()

    @property
    def settled(self) -> bool:
        return self._outcome is not None

    @property
    def aborted(self) -> bool:
        return isinstance(self._outcome, Aborted)

    @property
    def outcome(self) -> Outcome | None:
        return self._outcome

    def settle(self, outcome: Outcome) -> bool:
        if self._outcome is not None:
            return False
        self._outcome = outcome
        self._settled_event.set()
        logger.debug("token %x settled as %s", id(self), type(outcome).__name__)

        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener(outcome)
        return True

    def abort(self, reason: str = "aborted") -> bool:
        return self.settle(Aborted(reason=reason))

    def on_settle(self, listener: SettleListener) -> None:
        if self._outcome is not None:
            listener(self._outcome)
            return
        self._listeners.append(listener)

    async def wait(self) -> Outcome:
        await self._settled_event.wait()
        assert self._outcome is not None
        return self._outcome

    def __repr__(self) -> str:
        state = "pending" if self._outcome is None else type(self._outcome).__name__.lower()
        return f"<CancellationToken {id(self):x} {state}>"
