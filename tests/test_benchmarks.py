"""Structural tests for the markgen benchmark module."""
from __future__ import annotations

import importlib
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "benchmarks"))


def test_bench_throughput_importable() -> None:
    """Verify bench_throughput module can be imported."""
    mod = importlib.import_module("bench_throughput")
    assert hasattr(mod, "bench_order_throughput")
    assert hasattr(mod, "bench_process_throughput")


def test_order_throughput_returns_expected_keys() -> None:
    """Verify bench_order_throughput returns expected result keys."""
    from bench_throughput import bench_order_throughput

    result = bench_order_throughput(size=50, iterations=2)
    assert result["operation"] == "graph_order_throughput"
    assert result["iterations"] == 2
    assert "ops_per_second" in result


def test_process_throughput_returns_expected_keys() -> None:
    """Verify bench_process_throughput returns expected result keys."""
    from bench_throughput import bench_process_throughput

    result = bench_process_throughput(size=50, iterations=1)
    assert result["operation"] == "process_throughput"
    assert "avg_latency_ms" in result
