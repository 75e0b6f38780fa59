"""Exception hierarchy for the replica verifier."""

from typing import Optional


class VerifierError(Exception):
    """Base class for all verifier errors."""


class ConfigError(VerifierError):
    """Invalid node list or sharding file."""


class TransportError(VerifierError):
    """A single set/get against one node did not succeed."""

    def __init__(
        self,
        node: str,
        operation: str,
        key: str,
        message: str,
        status_code: Optional[int] = None,
    ):
        self.node = node
        self.operation = operation
        self.key = key
        self.message = message
        self.status_code = status_code
        super().__init__(f"{operation} {key!r} on {node} failed: {message}")


class ParseError(VerifierError):
    """Response body does not match the labelled-field grammar."""

    def __init__(self, body: str, message: str = "body does not match response grammar"):
        self.body = body
        self.message = message
        super().__init__(f"{message}: {body[:120]!r}")


class CellAlreadyWritten(VerifierError):
    """A result matrix cell was written twice."""

    def __init__(self, node: str, key: str):
        self.node = node
        self.key = key
        super().__init__(f"cell ({node}, {key}) already recorded")


class NoReachableNodesError(VerifierError):
    """Every read of the collection phase failed at the transport level."""
