"""
MVCC garbage growth probe.

Writes a burst of rows, then samples box.stat.memtx.tx().mvcc in the
background. Story and retained-tuple bookkeeping should be collected once
the burst settles; if a counter and its memory both keep growing between
the first and the last sample, garbage is leaking.
"""

import threading
import time
from typing import Any, Callable, Dict, List, Optional

from ..network.client import StoreClient
from ..operation import Operation
from .base import ProbeClient, ProbeResults, ProbeVerdict

SPACE = "mvcc_test"

STAT_KEYS = [
    "used_stories_count",
    "used_stories_total",
    "retained_count",
    "retained_total",
]

READ_STATS = """
local t = box.stat.memtx.tx().mvcc.tuples
return {
  used_stories_count = t.used.stories.count,
  used_stories_total = t.used.stories.total,
  retained_count = t.used.retained.count,
  retained_total = t.used.retained.total,
}
"""

INSERT_BATCH = """
local ids = ...
box.atomic(function()
  for _, id in ipairs(ids) do
    box.space.mvcc_test:replace{id, id * 2}
  end
end)
return #ids
"""

# (count, memory) pairs that must not grow together.
GROWTH_PAIRS = [
    ("used_stories_count", "used_stories_total"),
    ("retained_count", "retained_total"),
]


def parse_stats(raw: Any) -> Dict[str, int]:
    """
    Normalize a stats reading.

    Accepts the table READ_STATS returns, or the older
    "key=value;key=value" string form.
    """
    if isinstance(raw, str):
        pairs = [part.split("=", 1) for part in raw.split(";") if part]
        raw = {k.strip(): v for k, v in pairs}
    if not isinstance(raw, dict):
        raise ValueError(f"unexpected MVCC stats {raw!r}")
    return {key: int(raw.get(key, 0)) for key in STAT_KEYS}


class StatsSampler:
    """Collects MVCC stats on a fixed interval for a bounded duration."""

    def __init__(self, sample: Callable[[], Dict[str, int]],
                 interval: float = 5.0, duration: float = 120.0,
                 node: Optional[str] = None):
        self.sample = sample
        self.interval = interval
        self.duration = duration
        self.node = node

        self._samples: List[Dict[str, Any]] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        self._stop.clear()
        self._thread = threading.Thread(target=self._sample_loop, daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=2.0)

    def wait(self, timeout: Optional[float] = None):
        """Block until the sampling window ends."""
        if self._thread:
            self._thread.join(timeout)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def samples(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._samples)

    def _sample_loop(self):
        deadline = time.monotonic() + self.duration
        while not self._stop.is_set() and time.monotonic() < deadline:
            try:
                stats = self.sample()
                with self._lock:
                    self._samples.append({"timestamp": time.time(), "stats": stats})
            except Exception as e:
                print(f"[{self.node}] Error collecting MVCC stats: {e}")
            self._stop.wait(self.interval)


def growth(samples: List[Dict[str, Any]]) -> Dict[str, int]:
    """Difference between the last and the first sample, per counter."""
    first, last = samples[0]["stats"], samples[-1]["stats"]
    return {key: last[key] - first[key] for key in STAT_KEYS}


class GarbageGrowthClient(ProbeClient):
    """
    Ops:
        insert       value is a list of ids, replaced in one transaction
        select-full  full scan of the probe space
        get-stats    one MVCC stats reading
    """

    name = "garbage-growth"
    READ_ONLY = frozenset({"select-full", "get-stats"})

    REPORT_TEMPLATE = "garbage_report.html.j2"
    REPORT_NAME = "mvcc-stats.html"

    def __init__(self, config, results: Optional[ProbeResults] = None,
                 sample_interval: float = 5.0, sample_duration: float = 120.0,
                 **kwargs):
        super().__init__(config, results, **kwargs)
        self.sample_interval = sample_interval
        self.sample_duration = sample_duration
        self.sampler: Optional[StatsSampler] = None

    def create_schema(self, conn: StoreClient):
        conn.eval(
            "local s = box.schema.space.create(..., {if_not_exists = true}); "
            "s:create_index('primary', {if_not_exists = true})",
            SPACE
        )
        self.start_sampler(conn.node)

    def drop_schema(self, conn: StoreClient):
        self.drop_space(conn, SPACE)

    def start_sampler(self, node: str):
        """Sample over a dedicated connection so workers never share one."""
        sample_conn = self.connections.open(node)
        self.sampler = StatsSampler(
            lambda: self.read_stats(sample_conn),
            interval=self.sample_interval,
            duration=self.sample_duration,
            node=node
        )
        self.results.put("sampler", self.sampler)
        print(f"[{node}] Sampling MVCC stats every {self.sample_interval}s "
              f"for {self.sample_duration}s")
        self.sampler.start()

    def read_stats(self, conn: StoreClient) -> Dict[str, int]:
        rows = conn.eval(READ_STATS)
        return parse_stats(rows[0] if rows else None)

    def apply(self, op: Operation) -> Operation:
        if op.f == "insert":
            conn = self.primary_conn()
            conn.eval(INSERT_BATCH, list(op.value or []))
            return op.complete_ok()

        if op.f == "select-full":
            rows = self.read_with_retry(
                lambda conn: conn.eval(
                    "return box.space[...]:select({}, {fullscan = true})", SPACE
                )
            )
            return op.complete_ok(list(rows[0]) if rows else [])

        if op.f == "get-stats":
            return op.complete_ok(self.read_with_retry(self.read_stats))

        raise self.unknown_function(op)

    def samples(self) -> List[Dict[str, Any]]:
        sampler = self.results.get("sampler")
        return sampler.samples() if sampler is not None else []

    def verdict(self) -> ProbeVerdict:
        samples = self.samples()
        details: Dict[str, Any] = {"samples": len(samples)}

        if len(samples) < 2:
            return ProbeVerdict(False, "not enough MVCC stats samples collected", details)

        delta = growth(samples)
        details["growth"] = delta
        for count_key, memory_key in GROWTH_PAIRS:
            if delta[count_key] > 0 and delta[memory_key] > 0:
                return ProbeVerdict(
                    False,
                    f"MVCC garbage not collected: {count_key} grew by "
                    f"{delta[count_key]}, {memory_key} by {delta[memory_key]} bytes",
                    details
                )
        return ProbeVerdict(True, None, details)

    def report_context(self, verdict: ProbeVerdict) -> Dict[str, Any]:
        samples = self.samples()
        return {
            "verdict": verdict,
            "timestamps": [int(s["timestamp"] * 1000) for s in samples],
            "series": {key: [s["stats"][key] for s in samples] for key in STAT_KEYS},
        }

    def wait_for_samples(self):
        sampler = self.results.get("sampler")
        if sampler is not None:
            sampler.wait(self.sample_duration + self.sample_interval)

    def stop_sampler(self):
        sampler = self.results.get("sampler")
        if sampler is not None:
            sampler.stop()

    def teardown(self):
        self.stop_sampler()
        super().teardown()

    def close(self):
        self.stop_sampler()
        super().close()
