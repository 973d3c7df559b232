"""Registry topology snapshots and priority-queue checks for multi-chain rollup networks."""

from .balances import BalanceAggregator
from .errors import (
    CallReverted,
    DuplicatePriorityIndex,
    EmptyContract,
    InspectorError,
    IntegrityMismatch,
    MalformedEvent,
    MissingCapability,
    TransportError,
)
from .priority import PriorityQueueVerifier, compute_merkle_root
from .scanner import EventLogScanner, window_ranges
from .topology import TopologyResolver

__version__ = "0.1.0"
