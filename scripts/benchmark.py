#!/usr/bin/env python3
"""
fluxatom Scheduler Benchmarks

Measures how many updates per second an atom commits under each concurrency
policy and how many of the submitted requests actually reach the stream.

Usage:
    python scripts/benchmark.py                 # Run all benchmarks
    python scripts/benchmark.py --updates 5000  # Change the burst size
    python scripts/benchmark.py --config        # Show benchmark configuration

Requires the ``bench`` extra (rich).
"""

import argparse
import asyncio
import time
from dataclasses import dataclass
from typing import List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table, box

from fluxatom import Atom, MemoryStorage

# Benchmark parameters
DEFAULT_UPDATES = 1000
DEFAULT_REDUCER_DELAY = 0.0
POLICIES = ("queue", "throttle", "debounce")


@dataclass
class BenchmarkResult:
    """Outcome of one policy run."""

    policy: str
    persisted: bool
    submitted: int
    committed: int
    elapsed_s: float

    @property
    def updates_per_second(self) -> float:
        return self.submitted / self.elapsed_s if self.elapsed_s else float("inf")


async def run_policy(
    policy: str, updates: int, delay: float, persisted: bool
) -> BenchmarkResult:
    async def reducer(state, action):
        if delay:
            await asyncio.sleep(delay)
        return state + action

    options = {}
    if persisted:
        options = {"persist_key": "bench", "app_version": "1", "storage": MemoryStorage()}
    a = Atom(0, reducer=reducer, concurrency=policy, **options)

    commits = []
    a.subscribe(commits.append)

    start = time.perf_counter()
    await asyncio.gather(*(a.update(1) for _ in range(updates)))
    await a.settle()
    elapsed = time.perf_counter() - start

    # The first entry is the replay of the initial value
    return BenchmarkResult(policy, persisted, updates, len(commits) - 1, elapsed)


def run_all(updates: int, delay: float) -> List[BenchmarkResult]:
    results = []
    for persisted in (False, True):
        for policy in POLICIES:
            results.append(asyncio.run(run_policy(policy, updates, delay, persisted)))
    return results


def render(console: Console, results: List[BenchmarkResult]) -> None:
    table = Table(title="Scheduler throughput", box=box.ROUNDED)
    table.add_column("Policy", style="cyan")
    table.add_column("Persisted", justify="center")
    table.add_column("Submitted", justify="right")
    table.add_column("Committed", justify="right")
    table.add_column("Time (ms)", justify="right")
    table.add_column("Updates/s", justify="right", style="green")

    for result in results:
        table.add_row(
            result.policy,
            "yes" if result.persisted else "no",
            f"{result.submitted:,}",
            f"{result.committed:,}",
            f"{result.elapsed_s * 1000:.1f}",
            f"{result.updates_per_second:,.0f}",
        )
    console.print(table)


def main() -> None:
    parser = argparse.ArgumentParser(description="fluxatom scheduler benchmarks")
    parser.add_argument("--updates", type=int, default=DEFAULT_UPDATES)
    parser.add_argument("--delay", type=float, default=DEFAULT_REDUCER_DELAY)
    parser.add_argument("--config", action="store_true")
    args = parser.parse_args()

    console = Console()
    if args.config:
        console.print(
            Panel(
                f"updates per run: {args.updates}\n"
                f"reducer delay:   {args.delay}s\n"
                f"policies:        {', '.join(POLICIES)}",
                title="Benchmark configuration",
            )
        )
        return

    render(console, run_all(args.updates, args.delay))


if __name__ == "__main__":
    main()
