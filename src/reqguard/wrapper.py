from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Generator
from dataclasses import dataclass
from functools import partial
from typing import Any, Protocol

from reqguard.cancellation import Aborted, CancellationToken, Completed, Failed, Outcome
from reqguard.config import ActionPolicy
from reqguard.telemetry import Telemetry
from reqguard.throttle import should_suppress
from reqguard.tracker import RequestTracker

logger = logging.getLogger("reqguard.wrapper")


@dataclass(frozen=True)
class TransportResult:
    """What a transport hands back synchronously: the placeholder it will
    populate in place, and the awaitable that settles the call."""

    value: Any
    awaitable: Awaitable[Any]


class TransportCall(Protocol):
    def __call__(self, *args: Any, cancellation: CancellationToken, **kwargs: Any) -> TransportResult: ...


class Handle:
    def __init__(
        self,
        key: str,
        value: Any,
        completion: asyncio.Future[Any],
        token: CancellationToken,
        abort: Callable[[], bool],
        suppressed: bool = False,
    ) -> None:
        self.key = key
        self.value = value
        self.completion = completion
        self.token = token
        self.suppressed = suppressed
        self._abort = abort

    def abort(self) -> bool:
        return self._abort()

    def __await__(self) -> Generator[Any, None, Any]:
        return self.completion.__await__()

    def __repr__(self) -> str:
        state = "suppressed" if self.suppressed else "admitted"
        return f"<Handle {self.key!r} {state} {self.token!r}>"


def _outcome_label(outcome: Outcome) -> str:
    if isinstance(outcome, Completed):
        return "completed"
    if isinstance(outcome, Failed):
        return "failed"
    return "aborted"


def _resolve_completion(completion: asyncio.Future[Any], outcome: Outcome) -> None:
    if completion.done():
        return
    if isinstance(outcome, Completed):
        completion.set_result(outcome.value)
    elif isinstance(outcome, Failed):
        completion.set_exception(outcome.error)
    else:
        completion.set_result(outcome)


def _abort_when_cancelled(token: CancellationToken, completion: asyncio.Future[Any]) -> None:
    if completion.cancelled():
        token.settle(Aborted(reason="cancelled"))


def _retrieve_error(completion: asyncio.Future[Any]) -> None:
    if not completion.cancelled():
        completion.exception()


def _settle_from_transport(token: CancellationToken, future: asyncio.Future[Any]) -> None:
    if future.cancelled():
        token.settle(Aborted(reason="transport cancelled"))
        return
    error = future.exception()
    if error is not None:
        token.settle(Failed(error=error))
    else:
        token.settle(Completed(value=future.result()))


class RequestWrapper:
    def __init__(
        self,
        tracker: RequestTracker,
        telemetry: Telemetry | None = None,
    ) -> None:
        self._tracker = tracker
        self._telemetry = telemetry
        self._inflight: set[asyncio.Future[Any]] = set()

    @property
    def tracker(self) -> RequestTracker:
        return self._tracker

    def invoke(
        self,
        key: str,
        policy: ActionPolicy,
        transport_call: TransportCall,
        *args: Any,
        **kwargs: Any,
    ) -> Handle:
        loop = asyncio.get_running_loop()
        completion: asyncio.Future[Any] = loop.create_future()
        token = CancellationToken()
        abort = partial(self._tracker.abort_one, key, token)

        pending_for_key = self._tracker.pending_for(key)
        if should_suppress(policy, pending_for_key):
            self._record_invocation(key, "suppressed")
            logger.debug("%s: suppressed %r, %d call(s) pending", self._tracker.name, key, len(pending_for_key))
            token.on_settle(partial(_resolve_completion, completion))
            completion.add_done_callback(partial(_abort_when_cancelled, token))
            if policy.follow_pending:
                # Followers nobody awaits must not log an unretrieved transport error.
                completion.add_done_callback(_retrieve_error)
                pending_for_key[0].token.on_settle(token.settle)
            return Handle(key, policy.empty_value(), completion, token, abort, suppressed=True)

        result = transport_call(*args, cancellation=token, **kwargs)
        future = asyncio.ensure_future(result.awaitable)
        self._record_invocation(key, "admitted")
        self._tracker.register(key, token)
        token.on_settle(partial(_resolve_completion, completion))
        completion.add_done_callback(partial(_abort_when_cancelled, token))
        if self._telemetry is not None:
            token.on_settle(partial(self._record_outcome, key, time.monotonic()))

        self._inflight.add(future)
        future.add_done_callback(self._inflight.discard)
        future.add_done_callback(partial(_settle_from_transport, token))
        return Handle(key, result.value, completion, token, abort)

    def _record_invocation(self, key: str, decision: str) -> None:
        if self._telemetry is not None:
            self._telemetry.record_invocation(self._tracker.name, key, decision)

    def _record_outcome(self, key: str, started_at: float, outcome: Outcome) -> None:
        assert self._telemetry is not None
        self._telemetry.record_outcome(
            resource=self._tracker.name,
            action=key,
            outcome=_outcome_label(outcome),
            duration=time.monotonic() - started_at,
        )
