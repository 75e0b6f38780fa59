"""
Verifier configuration.

Defaults come from environment variables (prefix ``VERIFIER_``) through
pydantic-settings; a run is described by a VerifierConfig built from a
scenario plus overrides.
"""

import tomllib
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic_settings import BaseSettings

from .errors import ConfigError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    nodes: list[str] = ["127.0.0.1:8080", "127.0.0.1:8081", "127.0.0.1:8082"]
    sharding_file: Optional[str] = None

    # Workload
    key_count: int = 10
    value_space_size: int = 1000
    virtual_users: int = 5
    writes_per_user: int = 10
    concurrency: int = 10

    # Timing
    settle_seconds: float = 10.0
    request_timeout: float = 10.0
    latency_threshold_ms: float = 500.0

    # Observability
    metrics_port: int = 0
    log_level: str = "INFO"
    json_logs: bool = False

    class Config:
        env_prefix = "VERIFIER_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Settings fields that carry straight over to a VerifierConfig
RUN_FIELDS = (
    "nodes",
    "key_count",
    "value_space_size",
    "virtual_users",
    "writes_per_user",
    "concurrency",
    "settle_seconds",
    "request_timeout",
    "latency_threshold_ms",
)


def explicit_settings(settings: Settings) -> Dict[str, Any]:
    """Run fields that were set in the environment rather than defaulted."""
    return {
        name: getattr(settings, name)
        for name in RUN_FIELDS
        if name in settings.model_fields_set
    }


class Scenario(Enum):
    """Pre-defined runs."""
    CONSISTENCY = "consistency"  # write, settle, read back from every node
    SET_LOAD = "set-load"        # random writes only
    GET_LOAD = "get-load"        # random reads only


@dataclass
class VerifierConfig:
    """Configuration for one verifier run."""

    nodes: List[str] = field(default_factory=lambda: list(get_settings().nodes))
    scenario: Scenario = Scenario.CONSISTENCY

    key_count: int = 10
    value_space_size: int = 1000
    virtual_users: int = 5
    writes_per_user: int = 10
    concurrency: int = 10

    settle_seconds: float = 10.0
    poll_settle: bool = False
    poll_interval: float = 1.0
    request_timeout: float = 10.0
    latency_threshold_ms: float = 500.0

    error_policy: str = "compare"
    seed: Optional[int] = None
    output_file: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides) -> "VerifierConfig":
        settings = settings or get_settings()
        nodes = list(settings.nodes)
        if settings.sharding_file:
            nodes = load_nodes_from_sharding_file(settings.sharding_file)

        values: Dict[str, Any] = {name: getattr(settings, name) for name in RUN_FIELDS}
        values["nodes"] = nodes
        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_scenario(cls, scenario: Scenario, **overrides) -> "VerifierConfig":
        """Create config from a predefined scenario."""

        scenarios = {
            Scenario.CONSISTENCY: {
                "key_count": 10,
                "value_space_size": 1000,
                "virtual_users": 5,
                "writes_per_user": 10,
                "settle_seconds": 10.0,
            },
            Scenario.SET_LOAD: {
                "key_count": 1000,
                "value_space_size": 1000,
                "virtual_users": 50,
                "writes_per_user": 100,
                "settle_seconds": 0.0,
            },
            Scenario.GET_LOAD: {
                "key_count": 1000,
                "virtual_users": 10,
                "writes_per_user": 100,
                "settle_seconds": 0.0,
                "latency_threshold_ms": 300.0,
            },
        }

        config_dict: Dict[str, Any] = {"scenario": scenario}
        config_dict.update(scenarios.get(scenario, {}))
        config_dict.update(overrides)
        return cls(**config_dict)

    @property
    def keys(self) -> List[str]:
        return [f"key{i}" for i in range(self.key_count)]

    @property
    def total_writes(self) -> int:
        return self.virtual_users * self.writes_per_user

    def validate(self):
        if not self.nodes:
            raise ConfigError("at least one node address is required")
        if len(set(self.nodes)) != len(self.nodes):
            raise ConfigError(f"duplicate node addresses: {self.nodes}")
        if self.key_count <= 0 or self.value_space_size <= 0:
            raise ConfigError("key_count and value_space_size must be positive")
        if self.concurrency <= 0:
            raise ConfigError("concurrency must be positive")
        if self.settle_seconds < 0 or self.request_timeout <= 0:
            raise ConfigError("settle_seconds must be >= 0 and request_timeout > 0")
        if self.error_policy not in ("compare", "exclude"):
            raise ConfigError(f"unknown error policy {self.error_policy!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary for serialization."""
        return {
            "nodes": list(self.nodes),
            "scenario": self.scenario.value,
            "key_count": self.key_count,
            "value_space_size": self.value_space_size,
            "virtual_users": self.virtual_users,
            "writes_per_user": self.writes_per_user,
            "total_writes": self.total_writes,
            "concurrency": self.concurrency,
            "settle_seconds": self.settle_seconds,
            "poll_settle": self.poll_settle,
            "request_timeout": self.request_timeout,
            "latency_threshold_ms": self.latency_threshold_ms,
            "error_policy": self.error_policy,
            "seed": self.seed,
        }


def load_nodes_from_sharding_file(path: str) -> List[str]:
    """
    Read node addresses from the store's static sharding file.

    The file lists one ``[[shards]]`` table per node with ``idx``, ``name``
    and ``address``. Indices must be unique and cover 0..n-1; addresses are
    returned ordered by index.
    """
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"cannot read sharding file {path!r}: {e}") from e

    # field names match case-insensitively, as the store's own decoder does
    data = {str(k).lower(): v for k, v in data.items()}
    shards = data.get("shards") or []
    addrs: Dict[int, str] = {}
    for shard in shards:
        try:
            fields = {str(k).lower(): v for k, v in shard.items()}
            idx = int(fields["idx"])
            address = str(fields["address"])
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"malformed shard entry {shard!r}") from e
        if idx in addrs:
            raise ConfigError(f"duplicate shard index: {idx}")
        addrs[idx] = address

    for i in range(len(addrs)):
        if i not in addrs:
            raise ConfigError(f"shard {i} is not found")
    if not addrs:
        raise ConfigError(f"no shards defined in {path!r}")

    return [addrs[i] for i in range(len(addrs))]
