from __future__ import annotations

import asyncio
import unittest

from transport_stub import StubTransport

from reqguard.cancellation import Aborted
from reqguard.config import ActionPolicy
from reqguard.tracker import RequestTracker
from reqguard.wrapper import RequestWrapper, TransportResult

SINGLE_FLIGHT = ActionPolicy(method="get", is_array=True, allow_concurrent=False)
CONCURRENT = ActionPolicy(method="post")


async def settle_callbacks() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


class RequestWrapperTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.tracker = RequestTracker(name="items")
        self.wrapper = RequestWrapper(tracker=self.tracker)

    async def test_concurrent_calls_are_independent(self) -> None:
        transport = StubTransport()
        handles = [self.wrapper.invoke("create", CONCURRENT, transport, n) for n in range(3)]

        self.assertEqual(len(transport.calls), 3)
        self.assertEqual([call.args for call in transport.calls], [(0,), (1,), (2,)])
        self.assertTrue(handles[1].abort())
        transport.complete(0, {"id": 0})
        transport.complete(2, {"id": 2})

        self.assertEqual(await handles[0], {"id": 0})
        self.assertEqual(await handles[1], Aborted())
        self.assertEqual(await handles[2], {"id": 2})
        self.assertFalse(self.tracker.has_pending)

    async def test_abort_through_first_handle_leaves_second_pending(self) -> None:
        transport = StubTransport()
        first = self.wrapper.invoke("create", CONCURRENT, transport)
        second = self.wrapper.invoke("create", CONCURRENT, transport)

        first.abort()

        self.assertEqual(await first.completion, Aborted())
        self.assertFalse(second.completion.done())
        self.assertTrue(self.tracker.has_pending)

        transport.complete(1, {"id": 7})
        self.assertEqual(await second, {"id": 7})
        self.assertFalse(self.tracker.has_pending)

    async def test_single_flight_suppresses_until_first_settles(self) -> None:
        transport = StubTransport(is_array=True)
        first = self.wrapper.invoke("query", SINGLE_FLIGHT, transport)
        second = self.wrapper.invoke("query", SINGLE_FLIGHT, transport)

        self.assertEqual(len(transport.calls), 1)
        self.assertFalse(first.suppressed)
        self.assertTrue(second.suppressed)
        self.assertEqual(second.value, [])
        self.assertEqual(self.tracker.pending_counts(), {"query": 1})

        transport.complete(0, [{"id": 1}])

        self.assertEqual(await first, [{"id": 1}])
        self.assertFalse(self.tracker.has_pending)
        self.assertFalse(second.completion.done())

        third = self.wrapper.invoke("query", SINGLE_FLIGHT, transport)
        self.assertFalse(third.suppressed)
        self.assertEqual(len(transport.calls), 2)

        self.assertTrue(second.abort())
        self.assertEqual(await second, Aborted())

    async def test_scenario_single_flight_query_resolves_value(self) -> None:
        transport = StubTransport()
        policy = ActionPolicy(allow_concurrent=False)
        call_a = self.wrapper.invoke("query", policy, transport)
        call_b = self.wrapper.invoke("query", policy, transport)

        transport.complete(0, {"id": 1})

        self.assertEqual(await call_a, {"id": 1})
        self.assertIs(call_a.value, transport.calls[0].value)
        self.assertEqual(call_a.value, {"id": 1})
        self.assertFalse(self.tracker.has_pending)
        self.assertEqual(len(transport.calls), 1)
        self.assertFalse(call_b.completion.done())

    async def test_suppressed_calls_do_not_count_as_pending(self) -> None:
        transport = StubTransport()
        first = self.wrapper.invoke("query", SINGLE_FLIGHT, transport)
        second = self.wrapper.invoke("query", SINGLE_FLIGHT, transport)

        first.abort()

        self.assertFalse(self.tracker.has_pending)
        self.assertFalse(second.completion.done())

    async def test_follow_pending_mirrors_serving_call(self) -> None:
        transport = StubTransport()
        policy = ActionPolicy(allow_concurrent=False, follow_pending=True)
        first = self.wrapper.invoke("query", policy, transport)
        second = self.wrapper.invoke("query", policy, transport)

        transport.complete(0, {"id": 3})

        self.assertEqual(await first, {"id": 3})
        self.assertEqual(await second, {"id": 3})
        self.assertEqual(len(transport.calls), 1)

    async def test_abort_is_idempotent(self) -> None:
        transport = StubTransport()
        handle = self.wrapper.invoke("create", CONCURRENT, transport)

        self.assertTrue(handle.abort())
        self.assertFalse(handle.abort())

        self.assertEqual(await handle, Aborted())
        self.assertTrue(transport.calls[0].token.aborted)
        self.assertFalse(self.tracker.has_pending)

    async def test_abort_after_completion_keeps_value(self) -> None:
        transport = StubTransport()
        handle = self.wrapper.invoke("create", CONCURRENT, transport)
        transport.complete(0, {"id": 5})
        self.assertEqual(await handle, {"id": 5})

        self.assertFalse(handle.abort())

        self.assertEqual(handle.completion.result(), {"id": 5})

    async def test_abort_in_same_tick_as_completion_settles_once(self) -> None:
        transport = StubTransport()
        handle = self.wrapper.invoke("create", CONCURRENT, transport)
        outcomes: list[object] = []
        handle.token.on_settle(outcomes.append)

        transport.complete(0, {"id": 9})
        self.assertTrue(handle.abort())
        await settle_callbacks()

        self.assertEqual(outcomes, [Aborted()])
        self.assertEqual(handle.completion.result(), Aborted())
        self.assertFalse(self.tracker.has_pending)

    async def test_transport_failure_rejects_completion_unchanged(self) -> None:
        transport = StubTransport()
        handle = self.wrapper.invoke("create", CONCURRENT, transport)
        error = ConnectionError("server unreachable")

        transport.fail(0, error)

        with self.assertRaises(ConnectionError) as ctx:
            await handle
        self.assertIs(ctx.exception, error)
        self.assertFalse(handle.abort())
        self.assertFalse(self.tracker.has_pending)

    async def test_cancelled_transport_settles_as_aborted(self) -> None:
        transport = StubTransport()
        handle = self.wrapper.invoke("create", CONCURRENT, transport)

        transport.calls[0].future.cancel()

        self.assertEqual(await handle, Aborted(reason="transport cancelled"))

    async def test_synchronous_transport_error_registers_nothing(self) -> None:
        def broken(*args, cancellation, **kwargs):
            raise TypeError("bad arguments")

        with self.assertRaises(TypeError):
            self.wrapper.invoke("create", CONCURRENT, broken)
        self.assertFalse(self.tracker.has_pending)

    async def test_invalid_awaitable_registers_nothing(self) -> None:
        def not_awaitable(*args, cancellation, **kwargs):
            return TransportResult(value={}, awaitable={"not": "awaitable"})

        with self.assertRaises(TypeError):
            self.wrapper.invoke("query", SINGLE_FLIGHT, not_awaitable)
        self.assertFalse(self.tracker.has_pending)
        self.assertEqual(self.tracker.pending_counts(), {})

        transport = StubTransport()
        handle = self.wrapper.invoke("query", SINGLE_FLIGHT, transport)
        self.assertFalse(handle.suppressed)
        self.assertEqual(len(transport.calls), 1)

    async def test_timed_out_completion_aborts_token(self) -> None:
        transport = StubTransport()
        handle = self.wrapper.invoke("create", CONCURRENT, transport)

        with self.assertRaises(asyncio.TimeoutError):
            await asyncio.wait_for(handle.completion, timeout=0.01)
        await settle_callbacks()

        self.assertTrue(handle.completion.cancelled())
        self.assertEqual(transport.calls[0].token.outcome, Aborted(reason="cancelled"))
        self.assertFalse(self.tracker.has_pending)

        transport.complete(0, {"id": 1})
        await settle_callbacks()
        self.assertEqual(handle.token.outcome, Aborted(reason="cancelled"))

    async def test_cancelled_waiter_aborts_suppressed_token(self) -> None:
        transport = StubTransport()
        self.wrapper.invoke("query", SINGLE_FLIGHT, transport)
        suppressed = self.wrapper.invoke("query", SINGLE_FLIGHT, transport)

        async def wait_for_handle() -> object:
            return await suppressed

        waiter = asyncio.create_task(wait_for_handle())
        await settle_callbacks()
        waiter.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await waiter
        await settle_callbacks()

        self.assertTrue(suppressed.token.aborted)
        self.assertFalse(suppressed.abort())

    async def test_follow_pending_propagates_failure(self) -> None:
        transport = StubTransport()
        policy = ActionPolicy(allow_concurrent=False, follow_pending=True)
        first = self.wrapper.invoke("query", policy, transport)
        second = self.wrapper.invoke("query", policy, transport)
        unawaited = self.wrapper.invoke("query", policy, transport)
        error = ConnectionError("server unreachable")

        transport.fail(0, error)

        with self.assertRaises(ConnectionError):
            await first
        with self.assertRaises(ConnectionError) as ctx:
            await second
        self.assertIs(ctx.exception, error)
        await settle_callbacks()
        self.assertIs(unawaited.completion.exception(), error)

    async def test_transport_receives_kwargs_and_cancellation(self) -> None:
        transport = StubTransport()
        handle = self.wrapper.invoke("create", CONCURRENT, transport, {"name": "x"}, notify=True)

        call = transport.calls[0]
        self.assertEqual(call.args, ({"name": "x"},))
        self.assertEqual(call.kwargs, {"notify": True})
        self.assertIs(call.token, handle.token)
        self.assertEqual([entry.token for entry in self.tracker.pending_for("create")], [handle.token])

        handle.abort()
        self.assertEqual(await call.token.wait(), Aborted())
