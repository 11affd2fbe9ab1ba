#!/usr/bin/env python3
"""
Resilience performance benchmarks.

Measures the overhead the executor and its parts add to a successful call.
"""

import asyncio
import random
import time
from typing import Any

from resilient_ops.errors import ErrorClassifier
from resilient_ops.resilience import (
    BackoffPolicy,
    CircuitBreakerRegistry,
    OperationContext,
    ResilientExecutor,
    RetryConfig,
)


async def noop_operation() -> str:
    """No-op operation for overhead measurement."""
    return "result"


def _result(name: str, iterations: int, elapsed: float) -> dict[str, Any]:
    return {
        "name": name,
        "iterations": iterations,
        "elapsed_seconds": elapsed,
        "throughput_ops": iterations / elapsed,
        "latency_us": (elapsed / iterations) * 1_000_000,
    }


async def benchmark_baseline(iterations: int = 10000) -> dict[str, Any]:
    """Benchmark baseline async operation."""
    start = time.perf_counter()
    for _ in range(iterations):
        await noop_operation()
    return _result("Baseline (no resilience)", iterations, time.perf_counter() - start)


async def benchmark_circuit_breaker(iterations: int = 10000) -> dict[str, Any]:
    """Benchmark breaker bookkeeping around a call."""
    registry = CircuitBreakerRegistry()

    start = time.perf_counter()
    for _ in range(iterations):
        if registry.is_allowed("bench"):
            await noop_operation()
            registry.record_success("bench")
    return _result("CircuitBreakerRegistry", iterations, time.perf_counter() - start)


async def benchmark_classifier(iterations: int = 10000) -> dict[str, Any]:
    """Benchmark classifying a message-only failure (worst case: full pattern scan)."""
    classifier = ErrorClassifier()
    error = RuntimeError("something odd happened")

    start = time.perf_counter()
    for _ in range(iterations):
        classifier.classify(error)
        await noop_operation()
    return _result("ErrorClassifier (no match)", iterations, time.perf_counter() - start)


async def benchmark_backoff(iterations: int = 10000) -> dict[str, Any]:
    """Benchmark jittered delay computation."""
    policy = BackoffPolicy(rng=random.Random(0))
    config = RetryConfig()

    start = time.perf_counter()
    for i in range(iterations):
        policy.compute_delay(i % 5, config)
        await noop_operation()
    return _result("BackoffPolicy", iterations, time.perf_counter() - start)


async def benchmark_executor(iterations: int = 10000) -> dict[str, Any]:
    """Benchmark the executor on the success path."""
    executor = ResilientExecutor()
    ctx = OperationContext("bench", namespace="benchmarks")

    start = time.perf_counter()
    for _ in range(iterations):
        await executor.run(noop_operation, ctx)
    return _result("ResilientExecutor (success path)", iterations, time.perf_counter() - start)


async def benchmark_concurrent_execution(
    concurrency: int = 100, iterations_per_task: int = 100
) -> dict[str, Any]:
    """Benchmark concurrent runs sharing one registry."""
    executor = ResilientExecutor()

    async def task(index: int) -> None:
        ctx = OperationContext("bench", namespace=f"task{index % 10}")
        for _ in range(iterations_per_task):
            await executor.run(noop_operation, ctx)

    start = time.perf_counter()
    await asyncio.gather(*(task(i) for i in range(concurrency)))
    return _result(
        f"Concurrent ({concurrency})",
        concurrency * iterations_per_task,
        time.perf_counter() - start,
    )


async def run_benchmarks() -> None:
    """Run all benchmarks and print results."""
    print("=" * 60)
    print("Resilience Benchmarks")
    print("=" * 60)
    print()

    benchmarks = [
        benchmark_baseline,
        benchmark_circuit_breaker,
        benchmark_classifier,
        benchmark_backoff,
        benchmark_executor,
    ]

    baseline_latency = 0.0

    for bench in benchmarks:
        result = await bench()
        if result["name"].startswith("Baseline"):
            baseline_latency = result["latency_us"]

        overhead = ""
        if baseline_latency > 0 and not result["name"].startswith("Baseline"):
            overhead_us = result["latency_us"] - baseline_latency
            overhead_pct = (overhead_us / baseline_latency) * 100
            overhead = f" (+{overhead_us:.2f}µs, +{overhead_pct:.1f}%)"

        print(f"{result['name']}:")
        print(f"  Throughput: {result['throughput_ops']:.0f} ops/sec")
        print(f"  Latency: {result['latency_us']:.2f} µs/op{overhead}")
        print()

    print("Concurrent Execution:")
    for concurrency in [10, 50, 100]:
        result = await benchmark_concurrent_execution(concurrency=concurrency)
        print(f"  {concurrency} parallel: {result['throughput_ops']:.0f} ops/sec")


if __name__ == "__main__":
    asyncio.run(run_benchmarks())
