import unittest

from replica_verifier.checker import (
    CONSISTENT,
    INCONSISTENT,
    UNVERIFIED,
    ErrorPolicy,
    check,
)
from replica_verifier.parser import ParsedResponse
from replica_verifier.reader import ABSENT_TRANSPORT, ResultMatrix
from replica_verifier.report import ConsistencyReport, format_verdict

NODES = ["n0", "n1", "n2"]


def cell(node: str, value: str, error: str = "<nil>") -> ParsedResponse:
    return ParsedResponse(NODES.index(node), 0, node, value, error)


class TestConsistencyChecker(unittest.TestCase):

    def setUp(self):
        self.matrix = ResultMatrix()

    def test_all_equal_is_consistent(self):
        for node in NODES:
            self.matrix.record(node, "key0", cell(node, "value5"))

        [verdict] = check(self.matrix, ["key0"], NODES)

        self.assertTrue(verdict.consistent)
        self.assertFalse(verdict.unverified)
        self.assertEqual(verdict.status, CONSISTENT)
        self.assertEqual(verdict.distinct_values, ["value5"])

    def test_divergent_values_listed_with_nodes(self):
        self.matrix.record("n0", "key1", cell("n0", "value1"))
        self.matrix.record("n1", "key1", cell("n1", "value1"))
        self.matrix.record("n2", "key1", cell("n2", "value2"))

        [verdict] = check(self.matrix, ["key1"], NODES)

        self.assertFalse(verdict.consistent)
        self.assertEqual(verdict.status, INCONSISTENT)
        self.assertIn(("n0", "value1"), verdict.values)
        self.assertIn(("n2", "value2"), verdict.values)
        self.assertEqual(format_verdict(verdict),
                         "key1, [value1@n0, value1@n1, value2@n2], inconsistent")

    def test_absent_cells_are_skipped_not_empty(self):
        self.matrix.record("n0", "key2", cell("n0", "value3"))
        self.matrix.record("n1", "key2", cell("n1", "value3"))
        self.matrix.record_absent("n2", "key2", ABSENT_TRANSPORT, "connection refused")

        [verdict] = check(self.matrix, ["key2"], NODES)

        self.assertEqual(verdict.status, CONSISTENT)
        self.assertEqual(verdict.absent, ("n2",))
        self.assertEqual(len(verdict.values), 2)

    def test_two_of_three_absent_is_unverified(self):
        self.matrix.record("n0", "key3", cell("n0", "value9"))
        self.matrix.record_absent("n1", "key3", ABSENT_TRANSPORT, "timeout")
        self.matrix.record_absent("n2", "key3", ABSENT_TRANSPORT, "timeout")

        [verdict] = check(self.matrix, ["key3"], NODES)

        self.assertTrue(verdict.unverified)
        self.assertEqual(verdict.status, UNVERIFIED)
        self.assertNotEqual(verdict.status, CONSISTENT)

        report = ConsistencyReport.build([verdict], self.matrix)
        self.assertEqual(report.consistent_keys, 0)
        self.assertEqual(report.unverified_keys, 1)
        self.assertEqual(report.transport_failures, 2)
        self.assertFalse(report.passed)

    def test_never_observed_key_is_unverified(self):
        [verdict] = check(self.matrix, ["key4"], NODES)
        self.assertEqual(verdict.status, UNVERIFIED)
        self.assertEqual(verdict.absent, tuple(NODES))

    def test_store_error_compared_as_value(self):
        self.matrix.record("n0", "key5", cell("n0", "value1"))
        self.matrix.record("n1", "key5", cell("n1", "value1"))
        self.matrix.record("n2", "key5", cell("n2", "", "disk failure"))

        [verdict] = check(self.matrix, ["key5"], NODES, ErrorPolicy.COMPARE)

        self.assertEqual(verdict.status, INCONSISTENT)
        self.assertIn(("n2", "error: disk failure"), verdict.values)
        self.assertEqual(verdict.store_errors, ("n2",))

    def test_store_error_excluded(self):
        self.matrix.record("n0", "key5", cell("n0", "value1"))
        self.matrix.record("n1", "key5", cell("n1", "value1"))
        self.matrix.record("n2", "key5", cell("n2", "", "disk failure"))

        [verdict] = check(self.matrix, ["key5"], NODES, ErrorPolicy.EXCLUDE)

        self.assertEqual(verdict.status, CONSISTENT)
        self.assertEqual(verdict.store_errors, ("n2",))
        self.assertNotIn("n2", [node for node, _ in verdict.values])

    def test_verdicts_follow_key_order(self):
        keys = ["key9", "key0", "key5"]
        for key in keys:
            for node in NODES:
                self.matrix.record(node, key, cell(node, "v"))

        verdicts = check(self.matrix, keys, NODES)

        self.assertEqual([v.key for v in verdicts], keys)


if __name__ == '__main__':
    unittest.main()
