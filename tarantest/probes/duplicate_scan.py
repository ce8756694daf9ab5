"""
Duplicate scan probe.

Replays a fixed interleaving of concurrent transactions against a space with
a HASH secondary index, then fullscans that index. With MVCC enabled every
tuple must come back exactly once.

Each transaction lives in its own fiber (a transaction proxy) so several can
be open at once on a single connection; statements are handed to the fiber
over a channel and executed inside its transaction.
"""

from collections import Counter
from typing import Any, Dict, List, Tuple

from ..network.client import StoreClient
from ..operation import Operation
from .base import ProbeClient, ProbeVerdict

SPACE = "m"
SCAN_INDEX = "s4"

CREATE_SPACE = """
local name = ...
local s = box.schema.space.create(name, {engine = 'memtx', if_not_exists = true})
s:create_index('p', {parts = {{1, 'uint'}, {2, 'uint'}}, if_not_exists = true})
s:create_index('s1', {parts = {{3, 'uint', exclude_null = true}, {2, 'uint'}},
                      if_not_exists = true})
s:create_index('s2', {parts = {{1, 'uint'}, {4, 'uint', exclude_null = true}},
                      if_not_exists = true})
s:create_index('s3', {parts = {{3, 'uint', exclude_null = true},
                               {4, 'uint', exclude_null = true}},
                      if_not_exists = true})
s:create_index('s4', {type = 'HASH', parts = {{1, 'uint'}, {2, 'uint'}},
                      if_not_exists = true})
return true
"""

# Runs steps of the form {action, txn, args...}. action is begin, commit,
# rollback or a space method name. Returns the index fullscan and the
# errors individual statements raised.
RUN_SCENARIO = """
local fiber = require('fiber')
local space_name, index_name, steps = ...
local space = box.space[space_name]

local function txn_proxy()
  local requests = fiber.channel()
  local replies = fiber.channel()
  fiber.create(function()
    box.begin()
    while true do
      local request = requests:get()
      if request == nil then break end
      replies:put({pcall(request)})
    end
    if box.is_in_txn() then box.rollback() end
  end)
  return {
    run = function(fn) requests:put(fn); return replies:get() end,
    close = function() requests:close() end,
  }
end

space:truncate()

local txns = {}
local errors = {}
for _, step in ipairs(steps) do
  local action, name = step[1], step[2]
  local reply
  if action == 'begin' then
    txns[name] = txn_proxy()
  elseif action == 'commit' or action == 'rollback' then
    reply = txns[name].run(box[action])
    txns[name].close()
    txns[name] = nil
  else
    local args = {unpack(step, 3)}
    reply = txns[name].run(function() return space[action](space, unpack(args)) end)
  end
  if reply ~= nil and not reply[1] then
    table.insert(errors, {action, name, tostring(reply[2])})
  end
end

for _, txn in pairs(txns) do
  txn.run(box.rollback)
  txn.close()
end

return space.index[index_name]:select({}, {fullscan = true}), errors
"""

NULL = None

# Statements run in the most recently begun transaction that is still open.
SCENARIO: List[List[Any]] = [
    ["begin", "tx11"],
    ["begin", "tx22"],
    ["begin", "tx10"],
    ["begin", "tx9"],
    ["upsert", "tx9", [2, 4, 5, 3], [["=", 3, 8], ["=", 4, NULL]]],
    ["begin", "tx19"],
    ["upsert", "tx19", [6, 1, 2, 5], [["=", 3, 4], ["=", 4, NULL]]],
    ["begin", "tx26"],
    ["insert", "tx26", [8, 6, 6, 7]],
    ["begin", "tx31"],
    ["begin", "tx25"],
    ["commit", "tx26"],
    ["begin", "tx24"],
    ["replace", "tx24", [7, 7, 4, 1]],
    ["begin", "tx15"],
    ["replace", "tx15", [5, 5, NULL, 6]],
    ["insert", "tx15", [1, 3, 6, 6]],
    ["begin", "tx16"],
    ["upsert", "tx16", [3, 8, 4, 7], [["=", 3, 1], ["=", 4, 1]]],
    ["insert", "tx16", [2, 1, 3, 5]],
    ["upsert", "tx16", [7, 8, 7, 4], [["=", 3, 8], ["=", 4, 6]]],
    ["commit", "tx24"],
    ["upsert", "tx16", [6, 8, 1, NULL], [["=", 3, 1], ["=", 4, 5]]],
    ["upsert", "tx16", [8, 5, 6, 4], [["=", 3, NULL], ["=", 4, 3]]],
    ["upsert", "tx16", [6, 7, 3, NULL], [["=", 3, 5], ["=", 4, 4]]],
    ["commit", "tx31"],
    ["commit", "tx25"],
    ["rollback", "tx10"],
    ["upsert", "tx16", [1, 8, 5, 2], [["=", 3, 6], ["=", 4, 1]]],
    ["commit", "tx22"],
    ["rollback", "tx15"],
    ["rollback", "tx19"],
    ["rollback", "tx16"],
    ["rollback", "tx9"],
    ["rollback", "tx11"],
]


def tuple_key(row: List[Any]) -> str:
    return ",".join("null" if v is None else str(v) for v in row)


def find_duplicates(rows: List[List[Any]]) -> Dict[str, int]:
    """Tuples that appear more than once, with how many times they appear."""
    counts = Counter(tuple_key(row) for row in rows)
    return {key: n for key, n in counts.items() if n > 1}


class DuplicateScanClient(ProbeClient):
    """
    Ops:
        test-hash-index  replay the scenario and scan the HASH index
    """

    name = "duplicate-scan"

    REPORT_TEMPLATE = "duplicate_report.html.j2"
    REPORT_NAME = "hash-index-duplicates.html"

    def create_schema(self, conn: StoreClient):
        conn.eval(CREATE_SPACE, SPACE)

    def drop_schema(self, conn: StoreClient):
        self.drop_space(conn, SPACE)

    def run_scenario(self, conn: StoreClient) -> Tuple[List[List[Any]], List[Any]]:
        rows = conn.eval(RUN_SCENARIO, SPACE, SCAN_INDEX, SCENARIO)
        scan = [list(row) for row in rows[0]] if rows else []
        errors = list(rows[1]) if len(rows) > 1 else []
        return scan, errors

    def apply(self, op: Operation) -> Operation:
        if op.f == "test-hash-index":
            scan, errors = self.run_scenario(self.conn)
            duplicates = find_duplicates(scan)
            self.results.put("scan", scan)
            self.results.put("duplicates", duplicates)
            self.results.put("errors", errors)
            print(f"[{self.node}] Hash index scan returned {len(scan)} tuples, "
                  f"{len(duplicates)} duplicated")
            return op.complete_ok({
                "found_duplicates": bool(duplicates),
                "scan": scan,
                "duplicates": duplicates
            })

        raise self.unknown_function(op)

    def verdict(self) -> ProbeVerdict:
        scan = self.results.get("scan")
        if scan is None:
            return ProbeVerdict(False, "hash index scan never ran", {})

        duplicates = self.results.get("duplicates", {})
        details = {
            "scan": scan,
            "duplicates": duplicates,
            "errors": self.results.get("errors", [])
        }
        if duplicates:
            return ProbeVerdict(
                False, "HASH index fullscan returned duplicate tuples under MVCC", details
            )
        return ProbeVerdict(True, None, details)

    def report_context(self, verdict: ProbeVerdict) -> Dict[str, Any]:
        duplicates = verdict.details.get("duplicates", {})
        rows = [
            {"index": i + 1, "tuple": tuple_key(row),
             "count": duplicates.get(tuple_key(row), 1)}
            for i, row in enumerate(verdict.details.get("scan", []))
        ]
        return {"verdict": verdict, "rows": rows,
                "errors": verdict.details.get("errors", [])}
