"""
Consistency Checker - Compares the values every node returned for a key.

Only present cells are compared; an absent cell is neither a match nor a
mismatch. A key observed on fewer than two nodes is reported as
unverified rather than as agreement.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Tuple

import structlog

from .metrics import METRICS
from .parser import ParsedResponse
from .reader import ResultMatrix

logger = structlog.get_logger()

CONSISTENT = "consistent"
INCONSISTENT = "inconsistent"
UNVERIFIED = "unverified"


class ErrorPolicy(Enum):
    """How a cell carrying a store-reported error takes part in the comparison."""
    COMPARE = "compare"  # the error text counts as an observed value
    EXCLUDE = "exclude"  # the cell is listed but not compared


@dataclass(frozen=True)
class ConsistencyVerdict:
    key: str
    values: Tuple[Tuple[str, str], ...]  # (node, observed value) in node order
    consistent: bool
    unverified: bool = False
    absent: Tuple[str, ...] = ()
    store_errors: Tuple[str, ...] = ()

    @property
    def status(self) -> str:
        if not self.consistent:
            return INCONSISTENT
        if self.unverified:
            return UNVERIFIED
        return CONSISTENT

    @property
    def distinct_values(self) -> List[str]:
        return sorted({value for _, value in self.values})

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "status": self.status,
            "values": [{"node": node, "value": value} for node, value in self.values],
            "absent": list(self.absent),
            "store_errors": list(self.store_errors),
        }


def observed_value(response: ParsedResponse) -> str:
    """The string a cell contributes to the comparison."""
    if response.store_error:
        return f"error: {response.error_text}"
    return response.value


def check_key(
    matrix: ResultMatrix,
    key: str,
    nodes: Sequence[str],
    error_policy: ErrorPolicy = ErrorPolicy.COMPARE,
) -> ConsistencyVerdict:
    values = []
    absent = []
    store_errors = []

    for node in nodes:
        response = matrix.get(node, key)
        if response is None:
            absent.append(node)
            continue
        if response.store_error:
            store_errors.append(node)
            if error_policy is ErrorPolicy.EXCLUDE:
                continue
        values.append((node, observed_value(response)))

    consistent = len({value for _, value in values}) <= 1
    return ConsistencyVerdict(
        key=key,
        values=tuple(values),
        consistent=consistent,
        unverified=len(values) < 2,
        absent=tuple(absent),
        store_errors=tuple(store_errors),
    )


def check(
    matrix: ResultMatrix,
    keys: Sequence[str],
    nodes: Sequence[str],
    error_policy: ErrorPolicy = ErrorPolicy.COMPARE,
) -> List[ConsistencyVerdict]:
    """One verdict per key, in the order the keys were given."""
    verdicts = [check_key(matrix, key, nodes, error_policy) for key in keys]

    for verdict in verdicts:
        METRICS.verdicts.labels(status=verdict.status).inc()
        if verdict.status == INCONSISTENT:
            logger.warning("Replicas disagree", key=verdict.key,
                           values=[f"{v}@{n}" for n, v in verdict.values])
        elif verdict.status == UNVERIFIED:
            logger.warning("Too few observations to verify key", key=verdict.key,
                           observed=len(verdict.values), absent=list(verdict.absent))

    return verdicts
