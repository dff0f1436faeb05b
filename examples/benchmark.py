#!/usr/bin/env python3
"""GachaEngine Benchmark — per-sample classification latency and throughput.

Feeds synthetic sensor streams straight through each mode's classifier
bank and a full session. No phone required.

Usage:
    python examples/benchmark.py
    python examples/benchmark.py --seconds 120 --modes grab both
"""

from __future__ import annotations

import argparse
import time

import numpy as np

from gacha_engine.classifiers import ClassifierBank
from gacha_engine.config import get_profile
from gacha_engine.drivers import ManualAudioDriver, ManualSensorDriver
from gacha_engine.recorder import synthesize
from gacha_engine.session import GestureSession


def bench_bank(mode: str, seconds: float) -> dict:
    profile = get_profile(mode)
    readings = list(synthesize(profile, seconds, seed=0).play())
    bank = ClassifierBank(profile)

    times = np.empty(len(readings))
    fires = 0
    for i, reading in enumerate(readings):
        t0 = time.perf_counter()
        fires += len(bank.process(reading))
        times[i] = time.perf_counter() - t0

    return {
        "samples": len(readings),
        "fires": fires,
        "avg_us": float(times.mean() * 1e6),
        "p95_us": float(np.percentile(times, 95) * 1e6),
        "rejections": dict(bank.rejections),
    }


def bench_session(mode: str, seconds: float) -> dict:
    profile = get_profile(mode)
    player = synthesize(profile, seconds, seed=0)
    session = GestureSession(profile, ManualSensorDriver(), ManualAudioDriver())

    t0 = time.perf_counter()
    snapshot = player.replay_into(session)
    elapsed = time.perf_counter() - t0
    session.exit()

    return {
        "samples": player.reading_count,
        "elapsed_ms": elapsed * 1000,
        "phase": snapshot.phase.value,
    }


def main():
    parser = argparse.ArgumentParser(description="GachaEngine benchmark")
    parser.add_argument("--seconds", type=float, default=60.0, help="Synthetic stream length")
    parser.add_argument("--modes", nargs="+", default=["shake", "grab", "blow", "both"])
    args = parser.parse_args()

    print(f"⚡ Benchmarking {len(args.modes)} modes on {args.seconds:.0f}s of synthetic input\n")
    print(f"{'mode':10s} {'samples':>8s} {'fires':>6s} {'avg µs':>8s} {'p95 µs':>8s}  rejections")
    for mode in args.modes:
        r = bench_bank(mode, args.seconds)
        print(f"{mode:10s} {r['samples']:8d} {r['fires']:6d} {r['avg_us']:8.1f} {r['p95_us']:8.1f}  {r['rejections']}")

    print("\n📈 Full session replay:")
    for mode in args.modes:
        r = bench_session(mode, args.seconds)
        rate = r["samples"] / (r["elapsed_ms"] / 1000) if r["elapsed_ms"] > 0 else 0
        print(f"   {mode:10s} {r['elapsed_ms']:8.1f} ms  ({rate:,.0f} samples/s, ended {r['phase']})")


if __name__ == "__main__":
    main()
