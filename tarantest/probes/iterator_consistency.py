"""
Iterator consistency probe.

Opens a pairs() iterator on a memtx space and on a vinyl space holding the
same rows, replaces two rows halfway through the scan and records what the
iterator yields afterwards. Both engines should observe the same sequence.
"""

from typing import Any, Dict, List, Optional

from ..config import Engine
from ..errors import ApplicationRejection
from ..network.client import StoreClient
from ..operation import Operation
from .base import ProbeClient, ProbeVerdict

ENGINES = [Engine.MEMTX.value, Engine.VINYL.value]
SEED_ROWS = 4

CREATE_SPACE = """
local name, engine, rows = ...
local s = box.schema.space.create(name, {engine = engine, if_not_exists = true})
s:create_index('primary', {if_not_exists = true})
for i = 1, rows do
  s:replace{i, i}
end
return true
"""

# Two steps, modify rows 2 and 3, two more steps.
ITERATE_WHILE_WRITING = """
local s = box.space[...]
local seen = {}
local gen, param, state = s:pairs()
local tuple
for step = 1, 2 do
  state, tuple = gen(param, state)
  seen[step] = tuple and tuple[1] or box.NULL
end
s:replace{2, 'x'}
s:replace{3, 'x'}
for step = 3, 4 do
  state, tuple = gen(param, state)
  seen[step] = tuple and tuple[1] or box.NULL
end
return seen
"""


def space_name(engine: str) -> str:
    return f"{engine}_test"


def engine_of(op: Operation) -> str:
    value = op.value
    if isinstance(value, dict):
        value = value.get("engine")
    if value is None:
        value = op.key
    try:
        return Engine(value).value
    except ValueError:
        raise ApplicationRejection(f"unknown engine {value!r}")


class IteratorConsistencyClient(ProbeClient):
    """
    Ops:
        test-pairs       value is the engine name (or {"engine": name})
        compare-results  compares what both engines observed
    """

    name = "iterator-consistency"
    READ_ONLY = frozenset({"compare-results"})

    REPORT_TEMPLATE = "iterator_report.html.j2"
    REPORT_NAME = "index-pairs-comparison.html"

    def create_schema(self, conn: StoreClient):
        for engine in ENGINES:
            print(f"[{self.node}] Creating {space_name(engine)}")
            conn.eval(CREATE_SPACE, space_name(engine), engine, SEED_ROWS)

    def drop_schema(self, conn: StoreClient):
        for engine in ENGINES:
            self.drop_space(conn, space_name(engine))

    def apply(self, op: Operation) -> Operation:
        if op.f == "test-pairs":
            engine = engine_of(op)
            rows = self.conn.eval(ITERATE_WHILE_WRITING, space_name(engine))
            seen = list(rows[0]) if rows else []
            self.results.put(engine, seen)
            print(f"[{self.node}] {engine} iterator observed {seen}")
            return op.complete_ok({"engine": engine, "results": seen})

        if op.f == "compare-results":
            memtx, vinyl = self.observed()
            return op.complete_ok({
                "memtx": memtx,
                "vinyl": vinyl,
                "consistent": memtx is not None and memtx == vinyl
            })

        raise self.unknown_function(op)

    def observed(self) -> List[Optional[List[Any]]]:
        return [self.results.get(engine) for engine in ENGINES]

    def verdict(self) -> ProbeVerdict:
        memtx, vinyl = self.observed()
        details: Dict[str, Any] = {"memtx": memtx, "vinyl": vinyl}

        if memtx is None or vinyl is None:
            missing = [e for e, seen in zip(ENGINES, (memtx, vinyl)) if seen is None]
            return ProbeVerdict(False, f"no iterator results for {', '.join(missing)}", details)
        if memtx != vinyl:
            return ProbeVerdict(
                False,
                "memtx and vinyl pairs() iterators disagree when rows change mid-scan",
                details
            )
        return ProbeVerdict(True, None, details)

    def report_context(self, verdict: ProbeVerdict) -> Dict[str, Any]:
        memtx = verdict.details["memtx"] or []
        vinyl = verdict.details["vinyl"] or []
        steps = []
        for i in range(SEED_ROWS):
            m = memtx[i] if i < len(memtx) else None
            v = vinyl[i] if i < len(vinyl) else None
            steps.append({"step": i + 1, "memtx": m, "vinyl": v, "match": m == v,
                          "after_write": i >= 2})
        return {"verdict": verdict, "steps": steps}
