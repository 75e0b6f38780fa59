"""
Read Collector - Reads every key from every node into a ResultMatrix.

A failed read never aborts collection: the cell is recorded as absent
with the reason, so the remaining cells can still be checked.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Sequence, Tuple

import structlog

from .client import NodeClient, Operation
from .errors import CellAlreadyWritten, ParseError, TransportError
from .metrics import METRICS
from .parser import ParsedResponse, parse_response

logger = structlog.get_logger()

ABSENT_TRANSPORT = "transport"
ABSENT_PARSE = "parse"


@dataclass(frozen=True)
class Absence:
    """Why a cell holds no observation."""
    kind: str  # transport, parse
    message: str


class ResultMatrix:
    """
    node -> key -> ParsedResponse, written once per cell.

    Usage:
        matrix = ResultMatrix()
        matrix.record("127.0.0.1:8080", "key0", parsed)
        matrix.get("127.0.0.1:8080", "key0")
    """

    def __init__(self):
        self._cells: Dict[str, Dict[str, ParsedResponse]] = {}
        self._absent: Dict[Tuple[str, str], Absence] = {}

    def _claim(self, node: str, key: str):
        if key in self._cells.get(node, {}) or (node, key) in self._absent:
            raise CellAlreadyWritten(node, key)

    def record(self, node: str, key: str, response: ParsedResponse):
        self._claim(node, key)
        self._cells.setdefault(node, {})[key] = response

    def record_absent(self, node: str, key: str, kind: str, message: str):
        self._claim(node, key)
        self._absent[(node, key)] = Absence(kind, message)

    def get(self, node: str, key: str) -> Optional[ParsedResponse]:
        return self._cells.get(node, {}).get(key)

    def absence(self, node: str, key: str) -> Optional[Absence]:
        return self._absent.get((node, key))

    def present(self) -> Iterator[Tuple[str, str, ParsedResponse]]:
        for node, row in self._cells.items():
            for key, response in row.items():
                yield node, key, response

    @property
    def present_count(self) -> int:
        return sum(len(row) for row in self._cells.values())

    def absent_count(self, kind: Optional[str] = None) -> int:
        if kind is None:
            return len(self._absent)
        return sum(1 for a in self._absent.values() if a.kind == kind)

    def __len__(self) -> int:
        return self.present_count + len(self._absent)


class ReadCollector:
    """
    Issues one get per (node, key) pair with bounded parallelism.

    With record_metrics=False absent cells are not counted in METRICS, for
    snapshots that only decide when the store has settled.
    """

    def __init__(self, client: NodeClient, concurrency: int = 10, record_metrics: bool = True):
        self.client = client
        self.concurrency = max(1, concurrency)
        self.record_metrics = record_metrics

    def _count_absent(self, kind: str):
        if self.record_metrics:
            METRICS.absent_cells.labels(kind=kind).inc()

    async def collect(
        self,
        nodes: Sequence[str],
        keys: Sequence[str],
        matrix: Optional[ResultMatrix] = None,
    ) -> ResultMatrix:
        """
        Fill a matrix with the reads of every node for every key.

        Pass ``matrix`` to keep the cells collected so far if the
        surrounding task is cancelled mid-phase.
        """
        matrix = matrix if matrix is not None else ResultMatrix()
        nodes = list(dict.fromkeys(nodes))
        keys = list(dict.fromkeys(keys))
        semaphore = asyncio.Semaphore(self.concurrency)

        async def read(node: str, key: str):
            async with semaphore:
                try:
                    body = await self.client.send(node, Operation.GET, key)
                except TransportError as e:
                    matrix.record_absent(node, key, ABSENT_TRANSPORT, e.message)
                    self._count_absent(ABSENT_TRANSPORT)
                    return

            try:
                matrix.record(node, key, parse_response(body))
            except ParseError as e:
                logger.warning("Unparseable response", node=node, key=key, body=e.body[:120])
                matrix.record_absent(node, key, ABSENT_PARSE, e.message)
                self._count_absent(ABSENT_PARSE)

        await asyncio.gather(*(read(node, key) for node in nodes for key in keys))

        logger.info("Read phase complete", present=matrix.present_count,
                    transport_failures=matrix.absent_count(ABSENT_TRANSPORT),
                    parse_failures=matrix.absent_count(ABSENT_PARSE))
        return matrix
