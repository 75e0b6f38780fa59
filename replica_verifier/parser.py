"""
Response Parser - Decodes a node's labelled-field reply.

The store answers a get with a single line:

    Replica shard = 1, coordinator shard = 0, current addr = "127.0.0.1:8081", Value = "value42", error = <nil>

Fields are matched by their literal labels rather than by offset, so a
redirect notice before the line is fine. The store ends the line with " \n";
only that terminator is dropped, so an error text keeps any whitespace of
its own. Values are returned verbatim (quotes included when the store
quotes them).
"""

import re
from dataclasses import dataclass

from .errors import ParseError

# Go renders a nil error as "<nil>"
NIL_ERROR = "<nil>"

RESPONSE_TEMPLATE = (
    "Replica shard = {replica_shard}, coordinator shard = {coordinator_shard}, "
    "current addr = {responding_addr}, Value = {value}, error = {error_text} \n"
)

_RESPONSE_RE = re.compile(
    r"Replica shard = (?P<replica_shard>-?\d+), "
    r"coordinator shard = (?P<coordinator_shard>-?\d+), "
    r"current addr = (?P<responding_addr>.*?), "
    r"Value = (?P<value>.*?), "
    r"error = (?P<error_text>[^\n]*?) ?\r?$",
    re.MULTILINE,
)


@dataclass(frozen=True)
class ParsedResponse:
    """Structured form of one get reply."""
    replica_shard: int
    coordinator_shard: int
    responding_addr: str
    value: str
    error_text: str = ""

    @property
    def store_error(self) -> bool:
        """True when the store itself reported a failure."""
        return self.error_text not in ("", NIL_ERROR)


def parse_response(body: str) -> ParsedResponse:
    """
    Parse a raw response body.

    Raises:
        ParseError: if the labelled fields are missing or malformed.
    """
    if not isinstance(body, str):
        raise ParseError(repr(body), "response body is not text")

    match = _RESPONSE_RE.search(body)
    if match is None:
        raise ParseError(body)

    return ParsedResponse(
        replica_shard=int(match.group("replica_shard")),
        coordinator_shard=int(match.group("coordinator_shard")),
        responding_addr=match.group("responding_addr"),
        value=match.group("value"),
        error_text=match.group("error_text"),
    )


def format_response(parsed: ParsedResponse) -> str:
    """Render a ParsedResponse back into the wire grammar, terminator included."""
    return RESPONSE_TEMPLATE.format(
        replica_shard=parsed.replica_shard,
        coordinator_shard=parsed.coordinator_shard,
        responding_addr=parsed.responding_addr,
        value=parsed.value,
        error_text=parsed.error_text,
    )
