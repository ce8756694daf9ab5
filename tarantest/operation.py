"""
Operation records exchanged with the generator and the history sink.
"""

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class OpType(Enum):
    """Lifecycle type of an operation record."""
    INVOKE = "invoke"
    OK = "ok"
    FAIL = "fail"
    INFO = "info"


_UNCHANGED = object()


@dataclass(frozen=True)
class Operation:
    """
    A single operation in the history.

    The generator produces records with type INVOKE; a client completes each
    one into exactly one of OK, FAIL or INFO. Completion returns a new record
    and never touches the invocation.
    """
    type: OpType
    f: str
    value: Any = None
    key: Any = None
    error: Optional[str] = None
    process: Optional[int] = None

    @classmethod
    def invoke(cls, f: str, value: Any = None, key: Any = None,
               process: Optional[int] = None) -> 'Operation':
        return cls(type=OpType.INVOKE, f=f, value=value, key=key, process=process)

    def complete_ok(self, value: Any = _UNCHANGED) -> 'Operation':
        return self._complete(OpType.OK, value, None)

    def complete_fail(self, error: Optional[str] = None,
                      value: Any = _UNCHANGED) -> 'Operation':
        return self._complete(OpType.FAIL, value, error)

    def complete_info(self, error: Optional[str] = None) -> 'Operation':
        return self._complete(OpType.INFO, _UNCHANGED, error)

    def _complete(self, op_type: OpType, value: Any, error: Optional[str]) -> 'Operation':
        if self.type != OpType.INVOKE:
            raise ValueError(f"operation already completed as {self.type.value}")
        changes = {"type": op_type, "error": error}
        if value is not _UNCHANGED:
            changes["value"] = value
        return dataclasses.replace(self, **changes)

    @property
    def is_completed(self) -> bool:
        return self.type != OpType.INVOKE

    def to_dict(self) -> Dict:
        data = {"type": self.type.value, "f": self.f, "value": self.value}
        if self.key is not None:
            data["key"] = self.key
        if self.error is not None:
            data["error"] = self.error
        if self.process is not None:
            data["process"] = self.process
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'Operation':
        return cls(
            type=OpType(data.get("type", "invoke")),
            f=data["f"],
            value=data.get("value"),
            key=data.get("key"),
            error=data.get("error"),
            process=data.get("process")
        )
