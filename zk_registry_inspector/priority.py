"""
Priority queue check.

Every `NewPriorityRequest` ever emitted by a chain's state-transition contract
is decoded and placed at its index in a power-of-two leaf array (empty slots
hold keccak("")). Pairs are hashed bottom-up as keccak(left || right) and the
result must equal the root the contract reports.
"""

import sys
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from eth_abi import decode as abi_decode
from eth_utils import keccak

from . import abi
from .errors import DuplicatePriorityIndex, IntegrityMismatch, MalformedEvent
from .models import PriorityTransaction, StateTransition
from .scanner import EventLogScanner
from .utils import as_bytes, normalize_address

EMPTY_LEAF = keccak(b"")


def next_power_of_two(n: int) -> int:
    size = 1
    while size < n:
        size *= 2
    return size


def _uint_to_address(value: int) -> str:
    if value >> 160:
        raise MalformedEvent(f"value {value:#x} does not fit an address")
    return normalize_address(value.to_bytes(20, "big"))


def decode_priority_transaction(log: Mapping[str, Any]) -> PriorityTransaction:
    data = as_bytes(log.get("data") or b"")
    try:
        index, tx_id, expiration, tx, factory_deps = abi_decode(abi.NEW_PRIORITY_REQUEST_TYPES, data)
    except Exception as e:
        raise MalformedEvent(
            f"undecodable NewPriorityRequest in tx {log.get('transactionHash')!r} at block {log.get('blockNumber')}: {e}"
        ) from e

    envelope = {
        "txType": tx[0],
        "from": _uint_to_address(tx[1]),
        "to": _uint_to_address(tx[2]),
        "gasLimit": tx[3],
        "gasPerPubdataByteLimit": tx[4],
        "maxFeePerGas": tx[5],
        "nonce": tx[8],
        "value": tx[9],
        "dataLength": len(tx[11]),
        "factoryDeps": len(factory_deps),
    }
    return PriorityTransaction(index=index, tx_id=bytes(tx_id), expiration_timestamp=expiration, envelope=envelope)


def build_leaves(
    transactions: Iterable[PriorityTransaction], min_leaves: int = 1, limit: Optional[int] = None
) -> List[bytes]:
    """
    Leaf array for the priority tree. With `limit`, an index at or above it is
    rejected as malformed instead of growing the array.
    """
    by_index: Dict[int, bytes] = {}
    for tx in transactions:
        if limit is not None and tx.index >= limit:
            raise MalformedEvent(f"priority request index {tx.index} is beyond the queue length {limit}")
        seen = by_index.get(tx.index)
        if seen is not None and seen != tx.tx_id:
            raise DuplicatePriorityIndex(tx.index, seen, tx.tx_id)
        by_index[tx.index] = tx.tx_id

    needed = max(by_index) + 1 if by_index else 0
    leaves = [EMPTY_LEAF] * next_power_of_two(max(needed, min_leaves, 1))
    for index, tx_id in by_index.items():
        leaves[index] = tx_id
    return leaves


def merkle_root(leaves: Sequence[bytes]) -> bytes:
    if not leaves or len(leaves) & (len(leaves) - 1):
        raise ValueError(f"leaf count must be a power of two, got {len(leaves)}")
    level = list(leaves)
    while len(level) > 1:
        level = [keccak(level[i] + level[i + 1]) for i in range(0, len(level), 2)]
    return level[0]


def compute_merkle_root(transactions: Iterable[PriorityTransaction], limit: Optional[int] = None) -> bytes:
    return merkle_root(build_leaves(transactions, limit=limit))


@dataclass(frozen=True)
class PriorityQueueVerdict:
    chain_id: int
    address: str
    onchain_root: bytes
    computed_root: bytes
    total: int
    unprocessed: int
    transactions: Tuple[PriorityTransaction, ...]
    missing_indices: Tuple[int, ...] = ()

    @property
    def ok(self) -> bool:
        return self.onchain_root == self.computed_root

    def check(self) -> None:
        if not self.ok:
            raise IntegrityMismatch(self.onchain_root, self.computed_root)


class PriorityQueueVerifier:
    def __init__(self, client: Any, scanner: Optional[EventLogScanner] = None):
        self.client = client
        self.scanner = scanner or EventLogScanner(client)

    async def fetch(self, address: str, head: Optional[int] = None) -> List[PriorityTransaction]:
        logs = await self.scanner.scan(address, abi.NEW_PRIORITY_REQUEST, head=head)
        txs = [decode_priority_transaction(lg) for lg in logs]
        return sorted(txs, key=lambda tx: tx.index)

    async def verify(self, st: StateTransition, head: Optional[int] = None) -> PriorityQueueVerdict:
        txs = await self.fetch(st.address, head=head)
        computed = compute_merkle_root(txs, limit=max(st.total_priority_txs, len(txs)))

        seen = {tx.index for tx in txs}
        missing = tuple(i for i in range(st.total_priority_txs) if i not in seen)
        verdict = PriorityQueueVerdict(
            chain_id=st.chain_id,
            address=st.address,
            onchain_root=st.priority_tree_root,
            computed_root=computed,
            total=st.total_priority_txs,
            unprocessed=st.priority_queue_size,
            transactions=tuple(txs),
            missing_indices=missing,
        )
        if verdict.ok:
            print(f"✅ Chain {st.chain_id}: priority tree root matches {len(txs)} requests", file=sys.stderr)
        else:
            print(
                f"❌ Chain {st.chain_id}: priority tree root mismatch "
                f"(on-chain 0x{st.priority_tree_root.hex()}, computed 0x{computed.hex()})",
                file=sys.stderr,
            )
        return verdict
