"""
Shared pieces of the one-shot diagnostic probes.
"""

import os
import threading
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..templating import write_report
from ..workloads.base import OperationClient


@dataclass
class ProbeVerdict:
    """Outcome of a probe: a single pass/fail plus a human-readable artifact."""
    valid: bool
    problem: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    report_path: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "valid": self.valid,
            "problem": self.problem,
            "details": self.details,
            "report_path": self.report_path
        }


class ProbeResults:
    """Observations shared by every client of one probe run."""

    def __init__(self):
        self._data: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def put(self, key: str, value: Any):
        with self._lock:
            self._data[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self._data)

    def clear(self):
        with self._lock:
            self._data.clear()


class ProbeClient(OperationClient):
    """
    A probe runs a handful of scripted operations, then check() turns what
    they observed into a ProbeVerdict and writes an HTML report.
    """

    REPORT_TEMPLATE = ""
    REPORT_NAME = ""

    # Probes touch only scratch spaces of their own.
    READ_ONLY = frozenset()

    def __init__(self, config, results: Optional[ProbeResults] = None, **kwargs):
        super().__init__(config, **kwargs)
        self.results = results if results is not None else ProbeResults()

    @abstractmethod
    def verdict(self) -> ProbeVerdict:
        """Judge the observations collected so far."""
        pass

    def report_context(self, verdict: ProbeVerdict) -> Dict[str, Any]:
        return {"verdict": verdict}

    def check(self, report_dir: str) -> ProbeVerdict:
        """Compute the verdict and write the report under report_dir."""
        verdict = self.verdict()
        path = os.path.join(report_dir, self.REPORT_NAME)
        verdict.report_path = write_report(
            path, self.REPORT_TEMPLATE, **self.report_context(verdict)
        )
        status = "valid" if verdict.valid else f"INVALID: {verdict.problem}"
        print(f"[{self.node}] {self.name} probe {status}, report at {path}")
        return verdict

    def drop_space(self, conn, space: str):
        conn.eval("local s = box.space[...]; if s ~= nil then s:drop() end", space)
