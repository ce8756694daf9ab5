"""
Exceptions raised by the harness.
"""


class HarnessError(Exception):
    """Base error type for all harness exceptions."""


class NodeConnectionError(HarnessError, ConnectionError):
    """
    A node could not be reached, refused authentication, or dropped the
    connection mid-request.

    request_sent tells whether the failure happened after the request left
    the client. Either way the effect on the store is unknown for writes.
    """

    def __init__(self, node: str, message: str, request_sent: bool = False):
        self.node = node
        self.request_sent = request_sent
        super().__init__(message)


class AmbiguousReplicationError(HarnessError):
    """The store reported a synchronous replication outcome it cannot vouch for."""


class ApplicationRejection(HarnessError):
    """The operation was rejected before any mutation, by the client or by the store."""


class SetupError(HarnessError):
    """Schema or space creation failed."""


class TeardownError(HarnessError):
    """Dropping test data failed."""


class ClusterUnavailableError(HarnessError):
    """No primary became reachable within the configured bound."""
