# tests/conftest.py
from __future__ import annotations

import sys
import types
from collections.abc import Iterator
from pathlib import Path

import pytest

# Ensure project root importable
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def fake_clock(monkeypatch: pytest.MonkeyPatch) -> Iterator[types.SimpleNamespace]:
    """
    Freeze time and capture sleeps.

    - Overrides time.monotonic()/perf_counter()/time.time so the limiter, robots
      guard and cache all see our clock.
    - Overrides time.sleep(dt) to *advance* the frozen clock by dt and accumulate
      total slept time.

    threading.Event.wait() is untouched, so cancel-aware sleeps still use real time.

    Exposes:
      now() -> float            current monotonic time
      advance(dt)               manually advance without calling sleep()
      slept() -> float          total seconds 'slept'
      sleeps -> list[float]     every individual sleep, in order
      reset_slept()             zero the sleep accumulator
    """
    t = {"now": 1_000_000.0, "slept": 0.0}
    sleeps: list[float] = []
    epoch0 = 1_700_000_000.0

    def monotonic():
        return t["now"]

    def time_time():
        # derive a wall-clock from our monotonic base
        return epoch0 + (t["now"] - 1_000_000.0)

    def sleep(dt):
        dt = float(dt)
        if dt <= 0:
            return
        sleeps.append(dt)
        t["slept"] += dt
        # advance our monotonic clock as real sleep would
        t["now"] += dt

    monkeypatch.setattr("time.monotonic", monotonic)
    monkeypatch.setattr("time.perf_counter", monotonic)
    monkeypatch.setattr("time.time", time_time)
    monkeypatch.setattr("time.sleep", sleep)

    def reset_slept():
        t["slept"] = 0.0
        sleeps.clear()

    yield types.SimpleNamespace(
        now=lambda: t["now"],
        advance=lambda dt: t.__setitem__("now", t["now"] + float(dt)),
        slept=lambda: t["slept"],
        sleeps=sleeps,
        reset_slept=reset_slept,
    )


@pytest.fixture
def cache_db(tmp_path: Path) -> str:
    return (tmp_path / "cache.db").as_posix()
