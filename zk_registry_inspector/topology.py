"""
Reconstruct the registry graph of one layer as an immutable `Snapshot`.

registry root -> chain managers -> per-chain state-transition contracts
              -> asset router -> registered assets

Every read of one resolve is pinned to the block number taken when it starts.
Required pointer reads propagate their error; optional compatibility reads
that revert are replaced with the zero address and listed in
`Snapshot.partial`.
"""

import sys
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from . import abi
from .config import (
    DEFAULT_TOKEN_DECIMALS,
    ETH_TOKEN_ADDRESS,
    SLOT_ADMIN,
    SLOT_BOOTLOADER_HASH,
    SLOT_CHAIN_ID,
    SLOT_DEFAULT_ACCOUNT_HASH,
    SLOT_PROTOCOL_VERSION,
    SLOT_SYSTEM_UPGRADE_TX_HASH,
    SLOT_TOTAL_BATCHES_COMMITTED,
    SLOT_TOTAL_BATCHES_EXECUTED,
    SLOT_TOTAL_BATCHES_VERIFIED,
    SLOT_VERIFIER,
    ZERO_ADDRESS,
)
from .errors import CallReverted, EmptyContract
from .models import (
    AssetRouter,
    ChainManager,
    ChainRegistry,
    HandlerKind,
    Layer,
    PartialField,
    ProtocolVersion,
    RegisteredAsset,
    RegistryBacked,
    RollupAssetRouter,
    RollupLayer,
    Snapshot,
    StateTransition,
    UnknownHandler,
    VaultBacked,
    index_entities,
)
from .scanner import EventLogScanner
from .utils import (
    as_bytes,
    join_all,
    normalize_address,
    short_address,
    topic_address,
    topic_bytes,
    topic_int,
    word_to_address,
)


def classify_handler(tracker: str, vault: str, registry: str) -> HandlerKind:
    if tracker == vault:
        return HandlerKind.VAULT
    if tracker == registry:
        return HandlerKind.REGISTRY
    return HandlerKind.UNKNOWN


def _dedupe(addresses: Sequence[str]) -> Tuple[str, ...]:
    seen: Dict[str, None] = {}
    for a in addresses:
        seen.setdefault(a, None)
    return tuple(seen)


class TopologyResolver:
    def __init__(
        self,
        client: Any,
        layer: Layer,
        scanner: Optional[EventLogScanner] = None,
        max_depth: Optional[int] = None,
        use_storage_layout: bool = False,
    ):
        self.client = client
        self.layer = layer
        self.scanner = scanner or EventLogScanner(client)
        self.max_depth = max_depth
        self.use_storage_layout = use_storage_layout

    @property
    def is_rollup(self) -> bool:
        return isinstance(self.layer, RollupLayer)

    async def resolve(self, registry_address: str) -> Snapshot:
        registry = normalize_address(registry_address)
        block = await self.client.get_block_number()
        print(f"🔗 Resolving registry {registry} at block {block} ({self.layer.kind} layer)", file=sys.stderr)

        if not await self.client.get_code(registry, block):
            raise EmptyContract(f"No code at registry address {registry}. Is it the right address on the right chain?")

        partial: List[PartialField] = []

        router_address = await self._asset_router_pointer(registry, block)
        deployer = normalize_address(await self.client.call(registry, "l1CtmDeployer", (), block))
        chain_ids, source = await self._known_chain_ids(registry, block)

        manager_addresses: Tuple[str, ...] = ()
        if not self.is_rollup:
            logs = await self.scanner.scan(registry, abi.CHAIN_TYPE_MANAGER_ADDED, self.max_depth, head=block)
            manager_addresses = _dedupe([topic_address(lg, 1) for lg in logs])

        managers = await join_all(self._resolve_manager(m, registry, block, partial) for m in manager_addresses)
        state_transitions = await join_all(
            self._resolve_state_transition(registry, cid, block, partial) for cid in sorted(chain_ids)
        )
        router = await self._resolve_asset_router(router_address, block, partial)

        registry_entity = ChainRegistry(
            address=registry,
            asset_router=router_address,
            deployer=deployer,
            chain_ids=chain_ids,
            managers=manager_addresses,
            chain_source=source,
        )
        entities = index_entities(
            [registry_entity, *managers, *(st for st in state_transitions if st is not None), router]
        )
        snapshot = Snapshot(
            layer=self.layer,
            block=block,
            registry_address=registry,
            asset_router_address=router_address,
            entities=entities,
            partial=tuple(partial),
        )
        print(
            f"📦 Snapshot at block {block}: {len(chain_ids)} chains ({source}), {len(managers)} managers, "
            f"{len(getattr(router, 'assets', {}))} registered assets, {len(partial)} partial fields",
            file=sys.stderr,
        )
        return snapshot

    async def _optional(self, address: str, function: str, args: Sequence[Any], block: int,
                        partial: List[PartialField], default: Any) -> Any:
        try:
            return await self.client.call(address, function, args, block)
        except CallReverted as e:
            partial.append(PartialField(entity=address, field=function, reason=str(e)))
            print(f"⚠️  {function}() unavailable on {address}; using {default!r}", file=sys.stderr)
            return default

    async def _asset_router_pointer(self, registry: str, block: int) -> str:
        try:
            value = await self.client.call(registry, "assetRouter", (), block)
        except CallReverted:
            value = await self.client.call(registry, "sharedBridge", (), block)
        return normalize_address(value)

    async def _known_chain_ids(self, registry: str, block: int) -> Tuple[FrozenSet[int], str]:
        try:
            ids = await self.client.call(registry, "getAllZKChainChainIDs", (), block)
            return frozenset(int(i) for i in ids), "enumeration"
        except CallReverted:
            pass

        logs = await self.scanner.scan(registry, abi.NEW_CHAIN, self.max_depth, head=block)
        created = {topic_int(lg, 1) for lg in logs}
        if created or not self.is_rollup:
            return frozenset(created), "creation-events"

        # Chains that migrated onto this layer never emit NewChain here.
        migrated = await self.scanner.scan(registry, abi.MIGRATION_FINALIZED, self.max_depth, head=block)
        spawned = await self.scanner.scan(None, abi.NEW_HYPERCHAIN, self.max_depth, head=block)
        ids = {topic_int(lg, 1) for lg in migrated} | {topic_int(lg, 1) for lg in spawned}
        return frozenset(ids), "migration-events"

    async def _resolve_manager(self, address: str, registry: str, block: int,
                               partial: List[PartialField]) -> ChainManager:
        back_ref, admin, owner, asset_id = await join_all([
            self.client.call(address, "BRIDGE_HUB", (), block),
            self.client.call(address, "admin", (), block),
            self.client.call(address, "owner", (), block),
            self.client.call(registry, "ctmAssetIdFromAddress", (address,), block),
        ])
        timelock = await self._optional(address, "validatorTimelock", (), block, partial, ZERO_ADDRESS)
        return ChainManager(
            address=address,
            registry=normalize_address(back_ref),
            admin=normalize_address(admin),
            owner=normalize_address(owner),
            asset_id=as_bytes(asset_id),
            validator_timelock=normalize_address(timelock),
        )

    async def _resolve_state_transition(self, registry: str, chain_id: int, block: int,
                                        partial: List[PartialField]) -> Optional[StateTransition]:
        address = normalize_address(await self.client.call(registry, "getZKChain", (chain_id,), block))
        if address == ZERO_ADDRESS:
            partial.append(PartialField(registry, f"getZKChain({chain_id})", "no state-transition contract registered"))
            print(f"⚠️  Chain {chain_id} has no state-transition contract on {registry}", file=sys.stderr)
            return None

        manager = normalize_address(await self.client.call(registry, "chainTypeManager", (chain_id,), block))
        base_token = await self._optional(registry, "baseToken", (chain_id,), block, partial, ZERO_ADDRESS)

        if self.use_storage_layout:
            fields = await self._read_storage_layout(address, block)
        else:
            fields = await self._read_getters(address, block)

        settlement_layer = await self._settlement_layer(address, block, partial)
        root, queue_size, total = await join_all([
            self.client.call(address, "getPriorityTreeRoot", (), block),
            self.client.call(address, "getPriorityQueueSize", (), block),
            self.client.call(address, "getTotalPriorityTxs", (), block),
        ])
        return StateTransition(
            address=address,
            chain_id=chain_id,
            manager=manager,
            base_token=normalize_address(base_token),
            settlement_layer=normalize_address(settlement_layer),
            priority_tree_root=as_bytes(root),
            priority_queue_size=int(queue_size),
            total_priority_txs=int(total),
            **fields,
        )

    async def _settlement_layer(self, address: str, block: int, partial: List[PartialField]) -> Any:
        # Diamonds that predate the rename only answer getSyncLayer().
        reason = ""
        for function in ("getSettlementLayer", "getSyncLayer"):
            try:
                return await self.client.call(address, function, (), block)
            except CallReverted as e:
                reason = str(e)
        partial.append(PartialField(entity=address, field="getSettlementLayer", reason=reason))
        print(f"⚠️  getSettlementLayer() unavailable on {address}; using {ZERO_ADDRESS!r}", file=sys.stderr)
        return ZERO_ADDRESS

    async def _read_getters(self, address: str, block: int) -> Dict[str, Any]:
        names = [
            "getVerifier",
            "getAdmin",
            "getTotalBatchesCommitted",
            "getTotalBatchesVerified",
            "getTotalBatchesExecuted",
            "getSemverProtocolVersion",
            "getL2BootloaderBytecodeHash",
            "getL2DefaultAccountBytecodeHash",
            "getL2SystemContractsUpgradeTxHash",
            "getChainId",
        ]
        values = dict(zip(names, await join_all(self.client.call(address, n, (), block) for n in names)))
        return {
            "verifier": normalize_address(values["getVerifier"]),
            "admin": normalize_address(values["getAdmin"]),
            "total_batches_committed": int(values["getTotalBatchesCommitted"]),
            "total_batches_verified": int(values["getTotalBatchesVerified"]),
            "total_batches_executed": int(values["getTotalBatchesExecuted"]),
            "protocol_version": ProtocolVersion(*(int(v) for v in values["getSemverProtocolVersion"])),
            "bootloader_hash": as_bytes(values["getL2BootloaderBytecodeHash"]),
            "default_account_hash": as_bytes(values["getL2DefaultAccountBytecodeHash"]),
            "system_upgrade_tx_hash": as_bytes(values["getL2SystemContractsUpgradeTxHash"]),
            "reported_chain_id": int(values["getChainId"]),
        }

    async def _read_storage_layout(self, address: str, block: int) -> Dict[str, Any]:
        slots = {
            "verifier": SLOT_VERIFIER,
            "admin": SLOT_ADMIN,
            "total_batches_committed": SLOT_TOTAL_BATCHES_COMMITTED,
            "total_batches_verified": SLOT_TOTAL_BATCHES_VERIFIED,
            "total_batches_executed": SLOT_TOTAL_BATCHES_EXECUTED,
            "protocol_version": SLOT_PROTOCOL_VERSION,
            "bootloader_hash": SLOT_BOOTLOADER_HASH,
            "default_account_hash": SLOT_DEFAULT_ACCOUNT_HASH,
            "system_upgrade_tx_hash": SLOT_SYSTEM_UPGRADE_TX_HASH,
            "reported_chain_id": SLOT_CHAIN_ID,
        }
        words = dict(zip(
            slots,
            await join_all(self.client.get_storage_at(address, s, block) for s in slots.values()),
        ))

        def uint(name: str) -> int:
            return int.from_bytes(words[name], "big")

        return {
            "verifier": word_to_address(words["verifier"]),
            "admin": word_to_address(words["admin"]),
            "total_batches_committed": uint("total_batches_committed"),
            "total_batches_verified": uint("total_batches_verified"),
            "total_batches_executed": uint("total_batches_executed"),
            "protocol_version": ProtocolVersion.from_packed(uint("protocol_version")),
            "bootloader_hash": words["bootloader_hash"],
            "default_account_hash": words["default_account_hash"],
            "system_upgrade_tx_hash": words["system_upgrade_tx_hash"],
            "reported_chain_id": uint("reported_chain_id"),
        }

    async def _resolve_asset_router(self, address: str, block: int,
                                    partial: List[PartialField]):
        if self.is_rollup:
            return RollupAssetRouter(address=address)

        vault, back_ref = await join_all([
            self.client.call(address, "nativeTokenVault", (), block),
            self.client.call(address, "BRIDGE_HUB", (), block),
        ])
        vault = normalize_address(vault)
        back_ref = normalize_address(back_ref)

        logs = await self.scanner.scan(address, abi.ASSET_HANDLER_REGISTERED, self.max_depth, head=block)
        # Logs are oldest first, so a re-registered asset keeps its latest tracker.
        registrations: Dict[bytes, str] = {}
        for lg in logs:
            registrations[topic_bytes(lg, 1)] = topic_address(lg, 2)

        assets = await join_all(
            self._resolve_asset(aid, tracker, vault, back_ref, block, partial) for aid, tracker in registrations.items()
        )
        return AssetRouter(
            address=address,
            native_token_vault=vault,
            registry=back_ref,
            assets=MappingProxyType({a.asset_id: a for a in assets}),
        )

    async def _resolve_asset(self, asset_id: bytes, tracker: str, vault: str, registry: str, block: int,
                             partial: List[PartialField]) -> RegisteredAsset:
        kind = classify_handler(tracker, vault, registry)
        if kind is HandlerKind.REGISTRY:
            handler: Any = RegistryBacked()
        elif kind is HandlerKind.UNKNOWN:
            handler = UnknownHandler(tracker=tracker)
        else:
            token = normalize_address(await self.client.call(vault, "tokenAddress", (asset_id,), block))
            name, decimals = await self._token_metadata(token, block, partial)
            handler = VaultBacked(token_address=token, token_name=name, decimals=decimals)
        return RegisteredAsset(asset_id=asset_id, tracker=tracker, handler=handler)

    async def _token_metadata(self, token: str, block: int, partial: List[PartialField]) -> Tuple[str, int]:
        if token == ETH_TOKEN_ADDRESS:
            return "ETH", 18
        symbol = await self._optional(token, "symbol", (), block, partial, None)
        decimals = await self._optional(token, "decimals", (), block, partial, DEFAULT_TOKEN_DECIMALS)
        return (symbol or short_address(token)), int(decimals)
