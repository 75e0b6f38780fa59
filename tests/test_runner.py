import asyncio
import os
import random
import signal
import unittest

import httpx
from fakes import FakeStore, StallingStore
from prometheus_client import REGISTRY

from replica_verifier.checker import CONSISTENT, INCONSISTENT, UNVERIFIED
from replica_verifier.config import Scenario, VerifierConfig
from replica_verifier.errors import NoReachableNodesError
from replica_verifier.runner import ConsistencyRunner, LoadRunner, Phase
from replica_verifier.settle import FixedDelaySettle, PollUntilStableSettle

NODES = ["127.0.0.1:8080", "127.0.0.1:8081", "127.0.0.1:8082"]


def scenario_config(**overrides) -> VerifierConfig:
    values = {
        "nodes": NODES,
        "key_count": 10,
        "value_space_size": 1000,
        "virtual_users": 5,
        "writes_per_user": 10,
        "settle_seconds": 0,
        "seed": 7,
    }
    values.update(overrides)
    return VerifierConfig.from_scenario(Scenario.CONSISTENCY, **values)


def absent_transport_cells() -> float:
    return REGISTRY.get_sample_value(
        "replica_verifier_absent_cells_total", {"kind": "transport"}) or 0.0


class TestConsistencyRunner(unittest.IsolatedAsyncioTestCase):

    async def test_full_replication_is_consistent(self):
        store = FakeStore(NODES)
        runner = ConsistencyRunner(scenario_config(), client=store)

        report = await runner.run()

        self.assertEqual([v.key for v in report.verdicts], [f"key{i}" for i in range(10)])
        for verdict in report.verdicts:
            self.assertTrue(verdict.consistent, verdict)
            self.assertEqual(len(verdict.values), 3)
        self.assertEqual(runner.phase, Phase.REPORTED)
        self.assertEqual(report.writes.succeeded, 50)
        self.assertFalse(store.closed)

    async def test_values_match_last_acknowledged_write(self):
        store = FakeStore(NODES)
        runner = ConsistencyRunner(scenario_config(), client=store)

        report = await runner.run()

        for key, value in report.writes.last_written.items():
            for node in NODES:
                self.assertEqual(runner.matrix.get(node, key).value, value)

    async def test_dropped_replication_is_detected(self):
        store = FakeStore(NODES, drop_replication_to=[NODES[2]])
        runner = ConsistencyRunner(scenario_config(), client=store)

        report = await runner.run()

        inconsistent = [v for v in report.verdicts if v.status == INCONSISTENT]
        self.assertGreaterEqual(len(inconsistent), 1)
        for verdict in inconsistent:
            self.assertEqual(len(verdict.distinct_values), 2)
            self.assertEqual({node for node, _ in verdict.values}, set(NODES))
        self.assertFalse(report.passed)

    async def test_two_unreachable_nodes_leave_keys_unverified(self):
        store = FakeStore(NODES, unreachable=NODES[1:])
        runner = ConsistencyRunner(scenario_config(), client=store)

        report = await runner.run()

        self.assertTrue(all(v.status == UNVERIFIED for v in report.verdicts))
        self.assertEqual(report.consistent_keys, 0)
        self.assertEqual(report.transport_failures, 20)
        self.assertFalse(report.passed)
        self.assertGreater(report.writes.failed, 0)

    async def test_no_reachable_nodes_aborts(self):
        store = FakeStore(NODES, unreachable=NODES)
        runner = ConsistencyRunner(scenario_config(), client=store)

        with self.assertRaises(NoReachableNodesError):
            await runner.run()

    async def test_reads_only_start_after_settle(self):
        store = FakeStore(NODES)
        order = []

        class RecordingSettle(FixedDelaySettle):
            async def wait(self, sample=None):
                order.append(("settle", len(store.calls)))
                return await super().wait(sample)

        config = scenario_config()
        await ConsistencyRunner(config, client=store, settle=RecordingSettle(0)).run()

        [(_, calls_before_settle)] = order
        self.assertEqual(calls_before_settle, config.total_writes)
        write_calls = [c for c in store.calls[:calls_before_settle]]
        self.assertTrue(all(c[3] is not None for c in write_calls))
        self.assertTrue(all(c[3] is None for c in store.calls[calls_before_settle:]))

    async def test_poll_settle_samples_store(self):
        store = FakeStore(NODES)
        settle = PollUntilStableSettle(interval=0.001, max_wait=1, stable_rounds=1)
        runner = ConsistencyRunner(scenario_config(), client=store, settle=settle)

        report = await runner.run()

        self.assertEqual(report.consistent_keys, 10)
        # write phase + at least two polling rounds + the verification read
        self.assertGreaterEqual(len(store.calls), 50 + 3 * 30)

    async def test_report_over_http_transport(self):
        def handler(request: httpx.Request):
            if request.url.path == "/set":
                return httpx.Response(200, text="Shards = [0 1 2], current shard = 0, error = <nil>, \n")
            return httpx.Response(200, text=(
                f"Replica shard = 0, coordinator shard = 0, current addr = {request.url.host}, "
                f"Value = same, error = <nil> \n"
            ))

        config = scenario_config(writes_per_user=2, virtual_users=2)
        report = await ConsistencyRunner(config, transport=httpx.MockTransport(handler)).run()

        self.assertTrue(report.passed)
        self.assertIn("get", report.requests["latency"])
        self.assertIn("set", report.requests["latency"])
        self.assertEqual(report.to_dict()["summary"]["consistent"], 10)

    async def test_settle_polling_reads_stay_out_of_stats(self):
        def handler(request: httpx.Request):
            if request.url.path == "/set":
                return httpx.Response(200, text="Shards = [0 1 2], current shard = 0, error = <nil>, \n")
            if request.url.port == 8082:
                return httpx.Response(503)
            return httpx.Response(200, text=(
                f"Replica shard = 0, coordinator shard = 0, current addr = {request.url.host}, "
                f"Value = same, error = <nil> \n"
            ))

        config = scenario_config(writes_per_user=2, virtual_users=2)
        settle = PollUntilStableSettle(interval=0.001, max_wait=1, stable_rounds=1)
        absent_before = absent_transport_cells()

        report = await ConsistencyRunner(
            config, transport=httpx.MockTransport(handler), settle=settle,
        ).run()

        # 4 writes and one verification read of 3 nodes x 10 keys
        self.assertEqual(report.requests["summary"]["total_requests"], 4 + 30)
        self.assertEqual(report.transport_failures, 10)
        self.assertEqual(absent_transport_cells() - absent_before, 10)

    async def test_signal_keeps_collected_cells(self):
        store = StallingStore(NODES, stalled=NODES[2])
        runner = ConsistencyRunner(scenario_config(concurrency=30), client=store,
                                   install_signal_handlers=True)
        asyncio.get_running_loop().call_later(0.2, os.kill, os.getpid(), signal.SIGTERM)

        report = await runner.run()

        self.assertTrue(report.cancelled)
        self.assertTrue(runner.interrupted)
        self.assertFalse(report.passed)
        self.assertEqual(runner.matrix.present_count, 20)
        self.assertEqual(len(report.verdicts), 10)
        for verdict in report.verdicts:
            self.assertEqual({node for node, _ in verdict.values}, set(NODES[:2]))


class TestLoadRunner(unittest.IsolatedAsyncioTestCase):

    async def test_get_load_collects_latencies(self):
        def handler(request: httpx.Request):
            return httpx.Response(200, text="ok")

        config = VerifierConfig.from_scenario(
            Scenario.GET_LOAD, nodes=NODES, virtual_users=2, writes_per_user=5,
        )
        runner = LoadRunner(config, transport=httpx.MockTransport(handler),
                            rng=random.Random(0))

        collector = await runner.run()

        self.assertEqual(len(collector.results), 10)
        self.assertTrue(all(r.operation == "get" for r in collector.results))
        self.assertTrue(runner.threshold_passed())

    async def test_set_load_counts_failures(self):
        def handler(request: httpx.Request):
            if request.url.port == 8081:
                return httpx.Response(503)
            return httpx.Response(200, text="ok")

        config = VerifierConfig.from_scenario(
            Scenario.SET_LOAD, nodes=NODES, virtual_users=3, writes_per_user=10, seed=1,
        )
        collector = await LoadRunner(config, transport=httpx.MockTransport(handler)).run()

        report = collector.generate_report()
        self.assertEqual(report["summary"]["total_requests"], 30)
        self.assertEqual(
            report["summary"]["failed_requests"],
            len([r for r in collector.results if r.node == NODES[1]]),
        )
        self.assertEqual(collector.results[0].operation, "set")

    async def test_signal_marks_run_interrupted(self):
        async def handler(request: httpx.Request):
            await asyncio.sleep(0.2)
            return httpx.Response(200, text="ok")

        config = VerifierConfig.from_scenario(
            Scenario.SET_LOAD, nodes=NODES, virtual_users=2, writes_per_user=10,
            concurrency=2, seed=1,
        )
        runner = LoadRunner(config, transport=httpx.MockTransport(handler),
                            install_signal_handlers=True)
        asyncio.get_running_loop().call_later(0.5, os.kill, os.getpid(), signal.SIGTERM)

        collector = await runner.run()

        self.assertTrue(runner.interrupted)
        summary = collector.generate_report()["summary"]
        self.assertLess(summary["total_requests"], 20)
        self.assertGreaterEqual(summary["cancelled_requests"], 1)
        self.assertEqual(collector.get_live_stats()["cancelled_count"], summary["cancelled_requests"])

    async def test_uninterrupted_run(self):
        config = VerifierConfig.from_scenario(
            Scenario.SET_LOAD, nodes=NODES, virtual_users=1, writes_per_user=3,
        )
        runner = LoadRunner(config, client=FakeStore(NODES))

        await runner.run()

        self.assertFalse(runner.interrupted)


if __name__ == '__main__':
    unittest.main()
