"""
Runners - Orchestrate a verification or load run end to end.

ConsistencyRunner walks the phases strictly in order, each one a barrier
for the next:

    WRITE_ISSUING -> SETTLING -> READ_COLLECTING -> CHECKING -> REPORTED

LoadRunner fires a burst of random sets or gets and checks request
latency against a threshold.
"""

import asyncio
import random
import signal
from enum import Enum
from typing import Optional

import httpx
import structlog

from .checker import ErrorPolicy, check, observed_value
from .client import HttpNodeClient, NodeClient, Operation
from .collector import ResultsCollector
from .config import Scenario, VerifierConfig
from .errors import NoReachableNodesError, TransportError
from .metrics import METRICS
from .reader import ABSENT_TRANSPORT, ReadCollector, ResultMatrix
from .report import ConsistencyReport
from .settle import FixedDelaySettle, PollUntilStableSettle, SettleStrategy
from .workload import WriteDriver, WriteSummary, generate_workload

logger = structlog.get_logger()


class Phase(Enum):
    WRITE_ISSUING = 0
    SETTLING = 1
    READ_COLLECTING = 2
    CHECKING = 3
    REPORTED = 4


class _RunnerBase:
    """Client ownership and SIGINT/SIGTERM handling shared by both runners."""

    def __init__(
        self,
        config: VerifierConfig,
        client: Optional[NodeClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rng: Optional[random.Random] = None,
        install_signal_handlers: bool = False,
    ):
        self.config = config
        self.collector = ResultsCollector()
        self.rng = rng or random.Random(config.seed)
        self.install_signal_handlers = install_signal_handlers

        self._owns_client = client is None
        self.client = client or HttpNodeClient(
            request_timeout=config.request_timeout,
            max_connections=max(config.concurrency, 1),
            on_result=self._record_result,
            transport=transport,
        )

        self._interrupted = False
        self._task: Optional[asyncio.Task] = None
        self._quiet = False

    @property
    def interrupted(self) -> bool:
        """A SIGINT/SIGTERM cut the run short."""
        return self._interrupted

    def _record_result(self, result):
        # settle polling reads are not part of the measured run
        if not self._quiet:
            self.collector.add_result(result)

    def _signal_handler(self):
        logger.info("Shutdown signal received")
        self._interrupted = True
        if self._task:
            self._task.cancel()

    async def _supervise(self, coro) -> bool:
        """Run coro as a child task. Returns False if a signal interrupted it."""
        loop = asyncio.get_running_loop()
        if self.install_signal_handlers:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, self._signal_handler)

        self._task = asyncio.create_task(coro)
        try:
            await self._task
            return True
        except asyncio.CancelledError:
            if not self._interrupted:
                raise
            return False
        finally:
            if self.install_signal_handlers:
                for sig in (signal.SIGINT, signal.SIGTERM):
                    loop.remove_signal_handler(sig)
            self._task = None

    async def _close(self):
        if self._owns_client:
            await self.client.close()


class ConsistencyRunner(_RunnerBase):
    """
    Write, settle, read back from every node and compare.

    Usage:
        config = VerifierConfig.from_scenario(Scenario.CONSISTENCY)
        runner = ConsistencyRunner(config)
        report = await runner.run()
        report.print_summary()
    """

    def __init__(
        self,
        config: VerifierConfig,
        client: Optional[NodeClient] = None,
        settle: Optional[SettleStrategy] = None,
        **kwargs,
    ):
        super().__init__(config, client=client, **kwargs)
        self.settle = settle or self._default_settle()
        self.phase: Optional[Phase] = None
        self.matrix = ResultMatrix()
        self.writes = WriteSummary()
        self.settle_seconds = 0.0

    def _default_settle(self) -> SettleStrategy:
        if self.config.poll_settle:
            return PollUntilStableSettle(
                interval=self.config.poll_interval,
                max_wait=max(self.config.settle_seconds, self.config.poll_interval),
            )
        return FixedDelaySettle(self.config.settle_seconds)

    def _enter(self, phase: Phase):
        self.phase = phase
        METRICS.phase.set(phase.value)
        logger.info("Entering phase", phase=phase.name)

    async def run(self) -> ConsistencyReport:
        """
        Run the whole workflow.

        Raises:
            NoReachableNodesError: every verification read failed at the
                transport level.
        """
        self.config.validate()
        logger.info("Starting consistency verification",
                    nodes=self.config.nodes,
                    keys=self.config.key_count,
                    writes=self.config.total_writes,
                    settle_seconds=self.config.settle_seconds)

        self.collector.start()
        try:
            completed = await self._supervise(self._execute())
        finally:
            self.collector.stop()
            await self._close()

        if not completed:
            logger.warning("Verification interrupted, reporting collected cells",
                           phase=self.phase.name if self.phase else None,
                           cells=len(self.matrix))

        if completed and len(self.matrix) and self.matrix.absent_count(ABSENT_TRANSPORT) == len(self.matrix):
            raise NoReachableNodesError(
                f"none of {len(self.config.nodes)} nodes answered any of "
                f"{len(self.matrix)} reads"
            )

        self._enter(Phase.CHECKING)
        verdicts = check(
            self.matrix,
            self.config.keys,
            self.config.nodes,
            ErrorPolicy(self.config.error_policy),
        )

        report = ConsistencyReport.build(
            verdicts,
            self.matrix,
            writes=self.writes,
            settle_seconds=self.settle_seconds,
            cancelled=not completed,
            requests=self.collector.generate_report() if self.collector.results else {},
            config=self.config.to_dict(),
        )
        self._enter(Phase.REPORTED)
        return report

    async def _execute(self):
        nodes = self.config.nodes
        keys = self.config.keys
        reader = ReadCollector(self.client, concurrency=self.config.concurrency)

        self._enter(Phase.WRITE_ISSUING)
        tasks = generate_workload(
            key_count=self.config.key_count,
            value_space_size=self.config.value_space_size,
            node_count=len(nodes),
            writes_per_virtual_user=self.config.writes_per_user,
            virtual_users=self.config.virtual_users,
            rng=self.rng,
        )
        driver = WriteDriver(self.client, nodes, concurrency=self.config.concurrency)
        self.writes = await driver.run(tasks)

        self._enter(Phase.SETTLING)

        poller = ReadCollector(self.client, concurrency=self.config.concurrency,
                               record_metrics=False)

        async def snapshot():
            self._quiet = True
            try:
                matrix = await poller.collect(nodes, keys)
            finally:
                self._quiet = False
            return sorted((n, k, observed_value(r)) for n, k, r in matrix.present())

        self.settle_seconds = await self.settle.wait(snapshot)

        self._enter(Phase.READ_COLLECTING)
        await reader.collect(nodes, keys, matrix=self.matrix)


class LoadRunner(_RunnerBase):
    """
    Random set or get burst against the configured nodes.

    Usage:
        config = VerifierConfig.from_scenario(Scenario.SET_LOAD)
        collector = await LoadRunner(config).run()
    """

    @property
    def operation(self) -> Operation:
        return Operation.GET if self.config.scenario is Scenario.GET_LOAD else Operation.SET

    async def run(self) -> ResultsCollector:
        self.config.validate()
        logger.info("Starting load run", operation=self.operation.value,
                    nodes=self.config.nodes, requests=self.config.total_writes,
                    concurrency=self.config.concurrency)

        self.collector.start()
        try:
            completed = await self._supervise(self._execute())
        finally:
            self.collector.stop()
            await self._close()

        if not completed:
            logger.warning("Load run interrupted", **self.collector.get_live_stats())
        logger.info("Load run complete", **self.collector.get_live_stats())
        return self.collector

    async def _execute(self):
        nodes = self.config.nodes
        tasks = generate_workload(
            key_count=self.config.key_count,
            value_space_size=self.config.value_space_size,
            node_count=len(nodes),
            writes_per_virtual_user=self.config.writes_per_user,
            virtual_users=self.config.virtual_users,
            rng=self.rng,
        )

        if self.operation is Operation.SET:
            await WriteDriver(self.client, nodes, concurrency=self.config.concurrency).run(tasks)
            return

        semaphore = asyncio.Semaphore(self.config.concurrency)

        async def read(node: str, key: str):
            async with semaphore:
                try:
                    await self.client.send(node, Operation.GET, key)
                except TransportError as e:
                    logger.debug("Read failed", node=node, key=key, error=e.message)

        await asyncio.gather(*(read(nodes[t.node_index], t.key) for t in tasks))

    def threshold_passed(self) -> bool:
        """p95 latency of the run's operation is under latency_threshold_ms."""
        stats = self.collector.latency_stats(self.operation.value)
        if stats.count == 0:
            return False
        return stats.p95 * 1000 < self.config.latency_threshold_ms
