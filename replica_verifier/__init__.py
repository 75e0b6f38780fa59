"""
Replica Consistency Verifier
============================

Test driver for replicated, sharded key-value stores. Issues a random
write workload across nodes, waits for asynchronous replication to
settle, reads every key back from every node and reports whether all
replicas agree.

Architecture:
    ┌─────────────────────────────────────────────────────┐
    │              ConsistencyRunner                       │
    │                                                      │
    │  WriteDriver ──► SettleStrategy ──► ReadCollector    │
    │                                        │             │
    │                                  parse_response      │
    │                                        │             │
    │                         ResultMatrix ──► check()     │
    └──────────────────────┬──────────────────────────────┘
                           │ NodeClient (httpx)
                           ▼
    ┌─────────────────────────────────────────────────────┐
    │     Store nodes  /set?key=&value=   /get?key=        │
    └─────────────────────────────────────────────────────┘

Usage:
    # CLI
    replica-verifier --node 127.0.0.1:8080 --node 127.0.0.1:8081 --settle 10

    # Programmatic
    from replica_verifier import ConsistencyRunner, Scenario, VerifierConfig

    config = VerifierConfig.from_scenario(Scenario.CONSISTENCY)
    report = await ConsistencyRunner(config).run()
    report.print_summary()
"""

from .checker import ConsistencyVerdict, ErrorPolicy, check
from .client import HttpNodeClient, NodeClient, Operation
from .collector import AggregateStats, RequestResult, ResultsCollector
from .config import Scenario, Settings, VerifierConfig, get_settings, load_nodes_from_sharding_file
from .errors import (
    CellAlreadyWritten,
    ConfigError,
    NoReachableNodesError,
    ParseError,
    TransportError,
    VerifierError,
)
from .parser import ParsedResponse, format_response, parse_response
from .reader import ReadCollector, ResultMatrix
from .report import ConsistencyReport, format_verdict
from .runner import ConsistencyRunner, LoadRunner, Phase
from .settle import FixedDelaySettle, PollUntilStableSettle, SettleStrategy
from .workload import WriteDriver, WriteSummary, WriteTask, generate_workload

__version__ = "1.0.0"

__all__ = [
    # Parsing
    "ParsedResponse",
    "parse_response",
    "format_response",
    # Transport
    "NodeClient",
    "HttpNodeClient",
    "Operation",
    # Workflow
    "WriteTask",
    "WriteSummary",
    "WriteDriver",
    "generate_workload",
    "SettleStrategy",
    "FixedDelaySettle",
    "PollUntilStableSettle",
    "ReadCollector",
    "ResultMatrix",
    "ConsistencyVerdict",
    "ErrorPolicy",
    "check",
    "ConsistencyReport",
    "format_verdict",
    # Runners
    "ConsistencyRunner",
    "LoadRunner",
    "Phase",
    # Results
    "ResultsCollector",
    "RequestResult",
    "AggregateStats",
    # Config
    "Settings",
    "VerifierConfig",
    "Scenario",
    "get_settings",
    "load_nodes_from_sharding_file",
    # Errors
    "VerifierError",
    "TransportError",
    "ParseError",
    "CellAlreadyWritten",
    "NoReachableNodesError",
    "ConfigError",
]
