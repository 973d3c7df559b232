"""
Snapshot entities.

The registry graph is cyclic (manager -> registry root -> asset router ->
registered asset -> registry root), so entities only hold addresses of each
other. A `Snapshot` owns every entity in a single address -> entity mapping
and resolves those back-references by lookup.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, NamedTuple, Optional, Tuple, Union

from .config import ZERO_ADDRESS


@dataclass(frozen=True)
class BaseLayer:
    kind = "base"


@dataclass(frozen=True)
class RollupLayer:
    l1_chain_id: int
    base_registry_address: str
    kind = "rollup"


Layer = Union[BaseLayer, RollupLayer]


class ProtocolVersion(NamedTuple):
    major: int
    minor: int
    patch: int

    @classmethod
    def from_packed(cls, packed: int) -> "ProtocolVersion":
        mask = (1 << 32) - 1
        return cls(packed >> 64, (packed >> 32) & mask, packed & mask)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class ChainRegistry:
    address: str
    asset_router: str
    deployer: str
    chain_ids: FrozenSet[int]
    managers: Tuple[str, ...]
    # "enumeration", "creation-events" or "migration-events"
    chain_source: str


@dataclass(frozen=True)
class ChainManager:
    address: str
    registry: str
    admin: str
    owner: str
    asset_id: bytes
    validator_timelock: str


@dataclass(frozen=True)
class StateTransition:
    address: str
    chain_id: int
    manager: str
    base_token: str
    verifier: str
    admin: str
    settlement_layer: str
    total_batches_committed: int
    total_batches_verified: int
    total_batches_executed: int
    protocol_version: ProtocolVersion
    priority_tree_root: bytes
    priority_queue_size: int
    total_priority_txs: int
    bootloader_hash: bytes = b""
    default_account_hash: bytes = b""
    system_upgrade_tx_hash: bytes = b""
    reported_chain_id: int = 0

    @property
    def passive(self) -> bool:
        """The chain settles somewhere else; this entry is a leftover."""
        return self.settlement_layer != ZERO_ADDRESS


class HandlerKind(enum.Enum):
    REGISTRY = "registry"
    VAULT = "vault"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RegistryBacked:
    pass


@dataclass(frozen=True)
class VaultBacked:
    token_address: str
    token_name: str
    decimals: int


@dataclass(frozen=True)
class UnknownHandler:
    tracker: str


AssetHandler = Union[RegistryBacked, VaultBacked, UnknownHandler]


@dataclass(frozen=True)
class RegisteredAsset:
    asset_id: bytes
    tracker: str
    handler: AssetHandler


@dataclass(frozen=True)
class AssetRouter:
    address: str
    native_token_vault: str
    registry: str
    assets: Mapping[bytes, RegisteredAsset] = field(default_factory=lambda: MappingProxyType({}))

    def vault_backed(self) -> List[RegisteredAsset]:
        return [a for a in self.assets.values() if isinstance(a.handler, VaultBacked)]


@dataclass(frozen=True)
class RollupAssetRouter:
    address: str

    def vault_backed(self) -> List[RegisteredAsset]:
        return []


@dataclass(frozen=True)
class PriorityTransaction:
    index: int
    tx_id: bytes
    expiration_timestamp: int
    envelope: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PartialField:
    entity: str
    field: str
    reason: str


Entity = Union[ChainRegistry, ChainManager, StateTransition, AssetRouter, RollupAssetRouter]


def index_entities(entities: Iterable[Entity]) -> Mapping[str, Entity]:
    by_address: Dict[str, Entity] = {}
    for entity in entities:
        if entity.address in by_address:
            raise ValueError(f"address {entity.address} appears twice in one snapshot")
        by_address[entity.address] = entity
    return MappingProxyType(by_address)


@dataclass(frozen=True)
class Snapshot:
    layer: Layer
    block: int
    registry_address: str
    asset_router_address: str
    entities: Mapping[str, Entity]
    partial: Tuple[PartialField, ...] = ()

    def get(self, address: str) -> Optional[Entity]:
        return self.entities.get(address)

    @property
    def registry(self) -> ChainRegistry:
        return self.entities[self.registry_address]  # type: ignore[return-value]

    @property
    def asset_router(self) -> Union[AssetRouter, RollupAssetRouter]:
        return self.entities[self.asset_router_address]  # type: ignore[return-value]

    def managers(self) -> List[ChainManager]:
        return [e for e in self.entities.values() if isinstance(e, ChainManager)]

    def state_transitions(self) -> List[StateTransition]:
        sts = [e for e in self.entities.values() if isinstance(e, StateTransition)]
        return sorted(sts, key=lambda st: st.chain_id)

    def state_transition_for(self, chain_id: int) -> Optional[StateTransition]:
        for st in self.state_transitions():
            if st.chain_id == chain_id:
                return st
        return None
