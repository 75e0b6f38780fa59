"""
Write Driver - Generates a random key/value/node workload and issues it.

Each virtual user performs a fixed number of writes. Every write picks a
random node, a random key out of a small key space and a random value.
"""

import asyncio
import random
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import structlog

from .client import NodeClient, Operation
from .errors import TransportError

logger = structlog.get_logger()


@dataclass(frozen=True)
class WriteTask:
    node_index: int
    key: str
    value: str


@dataclass
class WriteSummary:
    """Outcome tally of the write phase."""
    issued: int = 0
    succeeded: int = 0
    failed: int = 0
    failures_by_node: Dict[str, int] = field(default_factory=dict)
    # last acknowledged value per key, in completion order
    last_written: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "issued": self.issued,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failures_by_node": dict(self.failures_by_node),
        }


def generate_workload(
    key_count: int,
    value_space_size: int,
    node_count: int,
    writes_per_virtual_user: int,
    virtual_users: int = 1,
    rng: Optional[random.Random] = None,
) -> List[WriteTask]:
    """
    Build the list of writes to issue.

    Args:
        key_count: Keys are drawn from key0 .. key{key_count-1}.
        value_space_size: Values are drawn from value0 .. value{value_space_size-1}.
        node_count: Target node index is uniform in [0, node_count).
        writes_per_virtual_user: Writes each simulated client performs.
        virtual_users: Number of simulated clients.
        rng: Random source, pass a seeded one for reproducible runs.
    """
    for name, amount in (
        ("key_count", key_count),
        ("value_space_size", value_space_size),
        ("node_count", node_count),
    ):
        if amount <= 0:
            raise ValueError(f"{name} must be positive, got {amount}")
    if writes_per_virtual_user < 0 or virtual_users < 0:
        raise ValueError("writes_per_virtual_user and virtual_users must not be negative")

    rng = rng or random.Random()
    return [
        WriteTask(
            node_index=rng.randrange(node_count),
            key=f"key{rng.randrange(key_count)}",
            value=f"value{rng.randrange(value_space_size)}",
        )
        for _ in range(writes_per_virtual_user * virtual_users)
    ]


class WriteDriver:
    """
    Issues write tasks with bounded fan-out.

    Usage:
        driver = WriteDriver(client, nodes, concurrency=10)
        summary = await driver.run(generate_workload(10, 1000, len(nodes), 10, 5))
    """

    def __init__(self, client: NodeClient, nodes: Sequence[str], concurrency: int = 10):
        if not nodes:
            raise ValueError("at least one node is required")
        self.client = client
        self.nodes = list(nodes)
        self.concurrency = max(1, concurrency)

    async def run(self, tasks: Sequence[WriteTask]) -> WriteSummary:
        summary = WriteSummary(issued=len(tasks))
        failures: Dict[str, int] = defaultdict(int)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def write(task: WriteTask):
            node = self.nodes[task.node_index]
            async with semaphore:
                try:
                    await self.client.send(node, Operation.SET, task.key, task.value)
                except TransportError as e:
                    summary.failed += 1
                    failures[node] += 1
                    logger.debug("Write failed", node=node, key=task.key, error=e.message)
                    return
            summary.succeeded += 1
            summary.last_written[task.key] = task.value

        await asyncio.gather(*(write(task) for task in tasks))

        summary.failures_by_node = dict(failures)
        logger.info("Write phase complete", issued=summary.issued,
                    succeeded=summary.succeeded, failed=summary.failed)
        return summary
