"""
Outcome classification for completed operations.

Every invocation resolves to exactly one of:

- OK:   the operation definitely took effect.
- FAIL: the operation definitely did not take effect.
- INFO: the effect is unknown; it may have applied partially or fully.

INFO is never a softer FAIL. Reporting an operation that may have applied
as FAIL lets the checker assume it didn't, which produces false verdicts.
"""

import numbers
from enum import Enum
from typing import Any, List, Optional, Tuple

from .errors import (
    AmbiguousReplicationError, ApplicationRejection, ClusterUnavailableError,
    NodeConnectionError
)
from .operation import Operation, OpType


class Outcome(Enum):
    """Classification of an invocation."""
    OK = "ok"
    FAIL = "fail"
    INFO = "info"

    @property
    def is_definite(self) -> bool:
        """Whether the store's state is known after this outcome."""
        return self is not Outcome.INFO

    @property
    def op_type(self) -> OpType:
        return OpType(self.value)


# Marker for connection-level errors: INFO for writes, FAIL for reads.
# A read can't have mutated anything, so a lost read is a definite non-effect.
_TRANSPORT = "transport"

# Closed table of error message fragments, matched in order.
ERROR_PATTERNS: List[Tuple[str, Any]] = [
    # Synchronous replication didn't gather a quorum in time. The entry may
    # still be committed once the quorum shows up.
    ("Quorum collection for a synchronous transaction is timed out", Outcome.INFO),
    # The leader rolled the limbo back, possibly after some replicas applied it.
    ("A rollback for a synchronous transaction is received", Outcome.INFO),
    ("Couldn't initiate connection", _TRANSPORT),
    ("Connection lost", _TRANSPORT),
    ("Connection refused", _TRANSPORT),
    ("timed out", _TRANSPORT),
    # Writes refused by a follower or by a node that lost the limbo; the
    # request was rejected before touching any space.
    ("Can't modify data on a read-only instance", Outcome.FAIL),
    ("Can't modify data because this instance is in read-only mode", Outcome.FAIL),
    ("The synchronous transaction queue doesn't belong to any instance", Outcome.FAIL),
]


def _message(exc: BaseException) -> str:
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(exc)


def classify_error(exc: BaseException, read_only: bool = False) -> Outcome:
    """
    Map a raised error to an outcome.

    Args:
        exc: The error raised while executing the operation
        read_only: True if the operation cannot mutate the store

    Returns:
        FAIL only when the operation certainly had no effect, INFO otherwise.
    """
    if isinstance(exc, ApplicationRejection):
        return Outcome.FAIL
    # No primary to send the request to, so nothing was sent.
    if isinstance(exc, ClusterUnavailableError):
        return Outcome.FAIL
    if isinstance(exc, AmbiguousReplicationError):
        return Outcome.INFO
    if isinstance(exc, NodeConnectionError):
        return Outcome.FAIL if read_only else Outcome.INFO

    message = _message(exc)
    for pattern, outcome in ERROR_PATTERNS:
        if pattern in message:
            if outcome == _TRANSPORT:
                return Outcome.FAIL if read_only else Outcome.INFO
            return outcome

    # Unknown error: the request may have reached the server.
    return Outcome.FAIL if read_only else Outcome.INFO


def classify_result(result: Any) -> Outcome:
    """
    Map a scalar returned by a stored routine to an outcome.

    False or a negative number is the store's own rejection.
    """
    if result is False:
        return Outcome.FAIL
    if isinstance(result, numbers.Real) and not isinstance(result, bool) and result < 0:
        return Outcome.FAIL
    return Outcome.OK


def complete_with_error(op: Operation, exc: BaseException,
                        read_only: bool = False) -> Operation:
    """Complete an invocation that raised."""
    outcome = classify_error(exc, read_only)
    error = _message(exc) or type(exc).__name__
    if outcome is Outcome.FAIL:
        return op.complete_fail(error)
    return op.complete_info(error)


def complete_with_result(op: Operation, result: Any,
                         value: Any = None, error: Optional[str] = None) -> Operation:
    """Complete an invocation from a routine's scalar result."""
    if classify_result(result) is Outcome.FAIL:
        return op.complete_fail(error)
    if value is None:
        return op.complete_ok()
    return op.complete_ok(value)
