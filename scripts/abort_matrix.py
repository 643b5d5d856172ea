#!/usr/bin/env python3
"""Drive a live REST resource through reqguard with random aborts and throttling."""

from __future__ import annotations

import argparse
import asyncio
import json
import random
import statistics
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from reqguard.cancellation import Aborted, CancellationToken
from reqguard.config import ActionPolicy, ResourceConfig
from reqguard.resource import Resource
from reqguard.telemetry import Telemetry
from reqguard.wrapper import TransportCall, TransportResult


@dataclass
class MatrixStats:
    sent: int = 0
    suppressed: int = 0
    completed: int = 0
    aborted: int = 0
    failed: int = 0
    latencies: list[float] = field(default_factory=list)

    def merge(self, other: "MatrixStats") -> None:
        self.sent += other.sent
        self.suppressed += other.suppressed
        self.completed += other.completed
        self.aborted += other.aborted
        self.failed += other.failed
        self.latencies.extend(other.latencies)


SCENARIOS: dict[str, dict[str, ActionPolicy]] = {
    "concurrent": {
        "query": ActionPolicy(method="get", is_array=True),
    },
    "single-flight": {
        "query": ActionPolicy(method="get", is_array=True, allow_concurrent=False),
    },
}


def percentile(values: list[float], quantile: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    index = min(len(ordered) - 1, int(round((len(ordered) - 1) * quantile)))
    return ordered[index]


def bind_httpx_transport(client: httpx.AsyncClient, base_url: str):
    def bind(key: str, policy: ActionPolicy) -> TransportCall:
        url = policy.options.get("url", base_url)

        def transport(
            payload: dict[str, Any] | None = None,
            *,
            cancellation: CancellationToken,
            params: dict[str, Any] | None = None,
        ) -> TransportResult:
            value = policy.empty_value()

            async def send() -> Any:
                request = asyncio.ensure_future(client.request(policy.method, url, params=params, json=payload))
                waiter = asyncio.ensure_future(cancellation.wait())
                done, _ = await asyncio.wait({request, waiter}, return_when=asyncio.FIRST_COMPLETED)
                if request not in done:
                    request.cancel()
                    return None
                waiter.cancel()
                response = request.result()
                response.raise_for_status()
                body = response.json()
                if isinstance(value, list):
                    value.extend(body)
                else:
                    value.update(body)
                return value

            return TransportResult(value=value, awaitable=send())

        return transport

    return bind


async def worker(
    worker_id: int,
    resource: Resource,
    duration_seconds: int,
    abort_ratio: float,
    target_rps: float,
) -> MatrixStats:
    rng = random.Random(worker_id * 7919 + int(time.time()))
    stats = MatrixStats()
    started = time.monotonic()

    while time.monotonic() - started < duration_seconds:
        stats.sent += 1
        req_started = time.monotonic()
        handle = resource.query()
        if handle.suppressed:
            stats.suppressed += 1
            handle.abort()
        elif rng.random() < abort_ratio:
            handle.abort()

        try:
            result = await handle
        except httpx.HTTPError:
            stats.failed += 1
        else:
            if isinstance(result, Aborted):
                if not handle.suppressed:
                    stats.aborted += 1
            else:
                stats.completed += 1
                stats.latencies.append(time.monotonic() - req_started)

        if target_rps > 0:
            await asyncio.sleep(min(1.0, rng.expovariate(target_rps)))

    return stats


async def run_matrix(
    base_url: str,
    scenario: str,
    workers: int,
    duration_seconds: int,
    abort_ratio: float,
    target_rps: float,
) -> MatrixStats:
    async with httpx.AsyncClient(timeout=60.0) as client:
        resource = Resource(
            ResourceConfig(name=f"matrix-{scenario}", actions=SCENARIOS[scenario]),
            bind_transport=bind_httpx_transport(client, base_url),
            telemetry=Telemetry(),
        )
        tasks = [
            asyncio.create_task(
                worker(
                    worker_id=i,
                    resource=resource,
                    duration_seconds=duration_seconds,
                    abort_ratio=abort_ratio,
                    target_rps=target_rps,
                )
            )
            for i in range(workers)
        ]
        try:
            results = await asyncio.gather(*tasks)
        finally:
            resource.abort_all()

    merged = MatrixStats()
    for result in results:
        merged.merge(result)
    return merged


def main() -> None:
    parser = argparse.ArgumentParser(description="Exercise throttling and aborts against a REST endpoint.")
    parser.add_argument("--base-url", default="http://127.0.0.1:8000/api/items")
    parser.add_argument("--scenario", choices=sorted(SCENARIOS), default="single-flight")
    parser.add_argument("--workers", type=int, default=8)
    parser.add_argument("--duration-seconds", type=int, default=30)
    parser.add_argument("--abort-ratio", type=float, default=0.2)
    parser.add_argument(
        "--target-rps",
        type=float,
        default=2.0,
        help="Approximate request rate per worker",
    )
    args = parser.parse_args()

    stats = asyncio.run(
        run_matrix(
            base_url=args.base_url,
            scenario=args.scenario,
            workers=args.workers,
            duration_seconds=args.duration_seconds,
            abort_ratio=args.abort_ratio,
            target_rps=args.target_rps,
        )
    )

    report = {
        "scenario": args.scenario,
        "workers": args.workers,
        "duration_seconds": args.duration_seconds,
        "sent": stats.sent,
        "suppressed": stats.suppressed,
        "completed": stats.completed,
        "aborted": stats.aborted,
        "failed": stats.failed,
        "suppression_rate": (stats.suppressed / stats.sent) if stats.sent else 0.0,
        "latency_p50_ms": percentile(stats.latencies, 0.50) * 1000,
        "latency_p95_ms": percentile(stats.latencies, 0.95) * 1000,
        "latency_avg_ms": statistics.mean(stats.latencies) * 1000 if stats.latencies else 0.0,
    }
    print(json.dumps(report, indent=2))


if __name__ == "__main__":
    main()
