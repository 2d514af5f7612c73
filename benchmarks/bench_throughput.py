"""Benchmark: dependency ordering and end-to-end processing throughput.

Measures how many graph orderings and full ``ProcessorFactory.process``
runs complete per second on a synthetic layered codebase.
"""
from __future__ import annotations

import json
import random
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from markgen.core.context import ProcessingContext
from markgen.core.declarations import Declaration
from markgen.core.graph import DependencyGraph
from markgen.core.handler import FunctionHandler
from markgen.core.identity import ElementKind, UnitKey
from markgen.core.markers import Marker
from markgen.core.processor import ProcessorFactory
from markgen.core.unit import Unit
from markgen.scanning import StaticScanner

_UNITS: int = 500
_ORDER_ITERATIONS: int = 200
_PROCESS_ITERATIONS: int = 50


class Component(Marker):
    targets = (ElementKind.TYPE,)


def _layered_edges(size: int, seed: int = 1729) -> dict[str, list[str]]:
    rng = random.Random(seed)
    names = [f"bench.C{i}" for i in range(size)]
    edges = {
        name: [names[j] for j in rng.sample(range(i), min(i, 3))] for i, name in enumerate(names)
    }
    shuffled = list(edges.items())
    rng.shuffle(shuffled)
    return dict(shuffled)


def _report(operation: str, iterations: int, total: float) -> dict[str, object]:
    result: dict[str, object] = {
        "operation": operation,
        "iterations": iterations,
        "total_seconds": round(total, 4),
        "ops_per_second": round(iterations / total, 1),
        "avg_latency_ms": round(total / iterations * 1000, 4),
    }
    print(
        f"[bench_throughput] {result['operation']}: "
        f"{result['ops_per_second']:,.0f} ops/sec  "
        f"avg {result['avg_latency_ms']:.4f} ms"
    )
    return result


def bench_order_throughput(
    size: int = _UNITS, iterations: int = _ORDER_ITERATIONS
) -> dict[str, object]:
    """Benchmark best-effort ordering of a dependency graph.

    Returns
    -------
    dict with keys: operation, iterations, total_seconds, ops_per_second,
    avg_latency_ms.
    """
    units = [
        Unit(UnitKey(name), [name], [UnitKey(d) for d in deps])
        for name, deps in _layered_edges(size).items()
    ]
    start = time.perf_counter()
    for _ in range(iterations):
        DependencyGraph(units).best_effort_order()
    return _report("graph_order_throughput", iterations, time.perf_counter() - start)


def bench_process_throughput(
    size: int = _UNITS, iterations: int = _PROCESS_ITERATIONS
) -> dict[str, object]:
    """Benchmark a full discover, order and process run.

    Returns
    -------
    dict with keys: operation, iterations, total_seconds, ops_per_second,
    avg_latency_ms.
    """
    scanner = StaticScanner(
        Declaration(ElementKind.TYPE, name, markers=(Component(requires=deps),))
        for name, deps in _layered_edges(size).items()
    )
    handler = FunctionHandler(
        lambda view, marker, context: True,
        lambda control, view, marker, context: marker.requires,
    )
    start = time.perf_counter()
    for _ in range(iterations):
        factory = ProcessorFactory()
        factory.register_handler(Component, handler)
        factory.process(scanner, ProcessingContext(test_mode=False))
    return _report("process_throughput", iterations, time.perf_counter() - start)


def run_benchmark() -> dict[str, object]:
    """Run all throughput benchmarks and return combined results."""
    return {
        "order": bench_order_throughput(),
        "process": bench_process_throughput(),
    }


if __name__ == "__main__":
    print("Running throughput benchmarks...")
    results = run_benchmark()
    output_path = Path(__file__).parent / "results" / "throughput.json"
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w") as fh:
        json.dump(results, fh, indent=2)
    print(f"\nResults saved to {output_path}")
