"""
Consistency report - verdicts plus everything that weakens them.

A run where most cells are absent must not read as a clean pass, so the
report always carries transport/parse failure counts next to the verdicts.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

from .checker import CONSISTENT, INCONSISTENT, UNVERIFIED, ConsistencyVerdict
from .reader import ABSENT_PARSE, ABSENT_TRANSPORT, ResultMatrix
from .workload import WriteSummary

logger = structlog.get_logger()


def format_verdict(verdict: ConsistencyVerdict) -> str:
    """key, [value@node, value@node, ...], status"""
    observed = ", ".join(f"{value}@{node}" for node, value in verdict.values)
    return f"{verdict.key}, [{observed}], {verdict.status}"


@dataclass
class ConsistencyReport:
    verdicts: List[ConsistencyVerdict]
    writes: WriteSummary = field(default_factory=WriteSummary)
    transport_failures: int = 0
    parse_failures: int = 0
    store_errors: int = 0
    settle_seconds: float = 0.0
    cancelled: bool = False
    requests: Dict[str, Any] = field(default_factory=dict)
    config: Optional[Dict[str, Any]] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @classmethod
    def build(
        cls,
        verdicts: List[ConsistencyVerdict],
        matrix: ResultMatrix,
        writes: Optional[WriteSummary] = None,
        **extra,
    ) -> "ConsistencyReport":
        return cls(
            verdicts=verdicts,
            writes=writes or WriteSummary(),
            transport_failures=matrix.absent_count(ABSENT_TRANSPORT),
            parse_failures=matrix.absent_count(ABSENT_PARSE),
            store_errors=sum(1 for _, _, r in matrix.present() if r.store_error),
            **extra,
        )

    def _count(self, status: str) -> int:
        return sum(1 for v in self.verdicts if v.status == status)

    @property
    def consistent_keys(self) -> int:
        return self._count(CONSISTENT)

    @property
    def inconsistent_keys(self) -> int:
        return self._count(INCONSISTENT)

    @property
    def unverified_keys(self) -> int:
        return self._count(UNVERIFIED)

    @property
    def passed(self) -> bool:
        """Every key verified consistent with no missing observations."""
        return (
            not self.cancelled
            and self.inconsistent_keys == 0
            and self.unverified_keys == 0
            and self.transport_failures == 0
            and self.parse_failures == 0
        )

    def lines(self) -> List[str]:
        return [format_verdict(v) for v in self.verdicts]

    def to_dict(self) -> Dict[str, Any]:
        report = {
            "timestamp": self.timestamp,
            "passed": self.passed,
            "summary": {
                "keys": len(self.verdicts),
                "consistent": self.consistent_keys,
                "inconsistent": self.inconsistent_keys,
                "unverified": self.unverified_keys,
                "transport_failures": self.transport_failures,
                "parse_failures": self.parse_failures,
                "store_errors": self.store_errors,
                "settle_seconds": self.settle_seconds,
                "cancelled": self.cancelled,
            },
            "writes": self.writes.to_dict(),
            "verdicts": [v.to_dict() for v in self.verdicts],
            "requests": self.requests,
        }
        if self.config:
            report["config"] = self.config
        return report

    def save(self, filepath: str):
        with open(filepath, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info("Report saved", path=filepath)

    def print_summary(self):
        print("\n" + "=" * 60)
        print("CONSISTENCY VERIFICATION RESULTS")
        print("=" * 60)

        for line in self.lines():
            print(line)

        print(f"\nWrites:             {self.writes.succeeded}/{self.writes.issued} acknowledged")
        print(f"Keys checked:       {len(self.verdicts)}")
        print(f"Consistent:         {self.consistent_keys}")
        print(f"Inconsistent:       {self.inconsistent_keys}")
        print(f"Unverified:         {self.unverified_keys}")
        print(f"Transport failures: {self.transport_failures}")
        print(f"Parse failures:     {self.parse_failures}")
        print(f"Store errors:       {self.store_errors}")

        latency = self.requests.get("latency", {})
        for operation, stats in latency.items():
            print(f"\n{operation.upper()} latency:")
            print(f"  P50:  {stats.get('median', 0) * 1000:.0f}ms")
            print(f"  P95:  {stats.get('p95', 0) * 1000:.0f}ms")
            print(f"  Max:  {stats.get('max', 0) * 1000:.0f}ms")

        print(f"\nResult: {'PASS' if self.passed else 'FAIL'}")
        print("=" * 60)
