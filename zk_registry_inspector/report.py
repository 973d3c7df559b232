"""
Per-endpoint orchestration and output.

`inspect_endpoint` resolves one layer and then runs the priority-queue check
and the balance table for every chain. Each check is recorded on its own, so
a failing chain (or a failing resolve) never hides the results of the others.
"""

import json
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, List, Optional

from .balances import BalanceAggregator, ChainBalances
from .config import L2_BRIDGEHUB_ADDRESS
from .errors import InspectorError, IntegrityMismatch
from .models import (
    AssetRouter,
    RegistryBacked,
    RollupLayer,
    Snapshot,
    StateTransition,
    UnknownHandler,
    VaultBacked,
)
from .names import AddressBook
from .priority import PriorityQueueVerdict, PriorityQueueVerifier
from .scanner import EventLogScanner
from .topology import TopologyResolver
from .utils import join_all


@dataclass(frozen=True)
class CheckResult:
    ok: bool
    value: Any = None
    error: Optional[str] = None


async def run_check(aw: Awaitable[Any]) -> CheckResult:
    try:
        value = await aw
    except InspectorError as e:
        return CheckResult(ok=False, error=f"{type(e).__name__}: {e}")
    if isinstance(value, PriorityQueueVerdict):
        try:
            value.check()
        except IntegrityMismatch:
            return CheckResult(ok=False, value=value)
    return CheckResult(ok=True, value=value)


@dataclass(frozen=True)
class LayerReport:
    rpc_url: str
    chain_id: int
    layer: Any
    registry_address: Optional[str]
    snapshot: Optional[Snapshot] = None
    error: Optional[str] = None
    priority: Dict[int, CheckResult] = field(default_factory=dict)
    balances: Dict[int, CheckResult] = field(default_factory=dict)


def registry_address_for(endpoint: Any, base_registry: Optional[str]) -> Optional[str]:
    if isinstance(endpoint.layer, RollupLayer):
        return L2_BRIDGEHUB_ADDRESS
    return base_registry


async def inspect_endpoint(
    endpoint: Any,
    base_registry: Optional[str],
    window: int,
    max_depth: Optional[int] = None,
    use_storage_layout: bool = False,
    check_priority: bool = True,
    check_balances: bool = True,
) -> LayerReport:
    registry = registry_address_for(endpoint, base_registry)
    if registry is None:
        return LayerReport(
            rpc_url=endpoint.rpc_url,
            chain_id=endpoint.chain_id,
            layer=endpoint.layer,
            registry_address=None,
            error="No registry address for the base layer (pass --bridgehub or a rollup endpoint)",
        )

    scanner = EventLogScanner(endpoint.client, window)
    resolver = TopologyResolver(
        endpoint.client, endpoint.layer, scanner, max_depth=max_depth, use_storage_layout=use_storage_layout
    )
    resolved = await run_check(resolver.resolve(registry))
    if not resolved.ok:
        print(f"❌ Resolving {registry} on {endpoint.rpc_url} failed: {resolved.error}", file=sys.stderr)
        return LayerReport(
            rpc_url=endpoint.rpc_url,
            chain_id=endpoint.chain_id,
            layer=endpoint.layer,
            registry_address=registry,
            error=resolved.error,
        )
    snapshot: Snapshot = resolved.value

    priority: Dict[int, CheckResult] = {}
    if check_priority:
        verifier = PriorityQueueVerifier(endpoint.client, scanner)
        sts = snapshot.state_transitions()
        results = await join_all(run_check(verifier.verify(st, head=snapshot.block)) for st in sts)
        priority = {st.chain_id: r for st, r in zip(sts, results)}

    balances: Dict[int, CheckResult] = {}
    if check_balances:
        aggregator = BalanceAggregator(endpoint.client)
        chain_ids = sorted(snapshot.registry.chain_ids)
        results = await join_all(run_check(aggregator.chain_balances(snapshot, cid)) for cid in chain_ids)
        balances = dict(zip(chain_ids, results))

    return LayerReport(
        rpc_url=endpoint.rpc_url,
        chain_id=endpoint.chain_id,
        layer=endpoint.layer,
        registry_address=registry,
        snapshot=snapshot,
        priority=priority,
        balances=balances,
    )


def _hex(value: bytes) -> str:
    return "0x" + value.hex()


def _iso(ts: int) -> Any:
    try:
        return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
    except (OverflowError, OSError, ValueError):
        # Not a representable date; keep the raw uint64.
        return ts


def _layer_dict(layer: Any) -> Dict[str, Any]:
    if isinstance(layer, RollupLayer):
        return {"kind": "rollup", "l1ChainId": layer.l1_chain_id, "baseRegistry": layer.base_registry_address}
    return {"kind": "base"}


def _state_transition_dict(st: StateTransition) -> Dict[str, Any]:
    return {
        "address": st.address,
        "chainId": st.chain_id,
        "reportedChainId": st.reported_chain_id,
        "manager": st.manager,
        "baseToken": st.base_token,
        "verifier": st.verifier,
        "admin": st.admin,
        "settlementLayer": st.settlement_layer,
        "passive": st.passive,
        "protocolVersion": str(st.protocol_version),
        "batches": {
            "committed": st.total_batches_committed,
            "verified": st.total_batches_verified,
            "executed": st.total_batches_executed,
        },
        "priorityQueue": {
            "root": _hex(st.priority_tree_root),
            "unprocessed": st.priority_queue_size,
            "total": st.total_priority_txs,
        },
        "bootloaderHash": _hex(st.bootloader_hash),
        "defaultAccountHash": _hex(st.default_account_hash),
        "systemUpgradeTxHash": _hex(st.system_upgrade_tx_hash),
    }


def _handler_dict(handler: Any) -> Dict[str, Any]:
    if isinstance(handler, VaultBacked):
        return {"kind": "vault", "token": handler.token_address, "name": handler.token_name, "decimals": handler.decimals}
    if isinstance(handler, RegistryBacked):
        return {"kind": "registry"}
    return {"kind": "unknown", "tracker": handler.tracker}


def snapshot_to_dict(snapshot: Snapshot, book: AddressBook) -> Dict[str, Any]:
    registry = snapshot.registry
    router = snapshot.asset_router
    router_dict: Dict[str, Any] = {"address": router.address}
    if isinstance(router, AssetRouter):
        router_dict.update(
            nativeTokenVault=router.native_token_vault,
            registry=router.registry,
            assets=[
                {"assetId": _hex(a.asset_id), "label": book.asset_label(a), "tracker": a.tracker, **_handler_dict(a.handler)}
                for a in sorted(router.assets.values(), key=lambda a: a.asset_id)
            ],
        )
    return {
        "block": snapshot.block,
        "layer": _layer_dict(snapshot.layer),
        "registry": {
            "address": registry.address,
            "assetRouter": registry.asset_router,
            "deployer": registry.deployer,
            "chainIds": sorted(registry.chain_ids),
            "chainSource": registry.chain_source,
            "managers": list(registry.managers),
        },
        "managers": [
            {
                "address": m.address,
                "registry": m.registry,
                "admin": m.admin,
                "owner": m.owner,
                "assetId": _hex(m.asset_id),
                "validatorTimelock": m.validator_timelock,
            }
            for m in snapshot.managers()
        ],
        "stateTransitions": [_state_transition_dict(st) for st in snapshot.state_transitions()],
        "assetRouter": router_dict,
        "partial": [{"entity": p.entity, "field": p.field, "reason": p.reason} for p in snapshot.partial],
    }


def verdict_to_dict(verdict: PriorityQueueVerdict) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "ok": verdict.ok,
        "total": verdict.total,
        "unprocessed": verdict.unprocessed,
        "decoded": len(verdict.transactions),
        "missingIndices": list(verdict.missing_indices),
        "transactions": [
            {
                "index": tx.index,
                "txId": _hex(tx.tx_id),
                "expiration": _iso(tx.expiration_timestamp),
                "envelope": dict(tx.envelope),
            }
            for tx in verdict.transactions
        ],
    }
    if not verdict.ok:
        out["onchainRoot"] = _hex(verdict.onchain_root)
        out["computedRoot"] = _hex(verdict.computed_root)
    return out


def balances_to_dict(table: ChainBalances) -> Dict[str, Any]:
    return {
        name: {
            "assetId": _hex(e.asset_id),
            "token": e.token_address,
            "raw": str(e.raw),
            "formatted": e.formatted,
        }
        for name, e in sorted(table.entries.items())
    }


def _check_dict(result: CheckResult, render) -> Dict[str, Any]:
    if result.error is not None:
        return {"ok": False, "error": result.error}
    return render(result.value)


def build_payload(reports: List[LayerReport]) -> Dict[str, Any]:
    layers = []
    for report in reports:
        entry: Dict[str, Any] = {
            "rpc": report.rpc_url,
            "chainId": report.chain_id,
            "layer": _layer_dict(report.layer),
            "registry": report.registry_address,
        }
        if report.error is not None:
            entry["error"] = report.error
        if report.snapshot is not None:
            book = AddressBook.for_snapshot(report.snapshot)
            entry["snapshot"] = snapshot_to_dict(report.snapshot, book)
            entry["priorityQueues"] = {
                str(cid): _check_dict(r, verdict_to_dict) for cid, r in sorted(report.priority.items())
            }
            entry["balances"] = {
                str(cid): _check_dict(r, balances_to_dict) for cid, r in sorted(report.balances.items())
            }
        layers.append(entry)

    return {
        "mode": "zk_registry_inspector",
        "generatedAtUtc": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
        "layers": layers,
    }


def print_summary(report: LayerReport, book: Optional[AddressBook] = None) -> None:
    out = sys.stderr
    kind = "rollup" if isinstance(report.layer, RollupLayer) else "base"
    print(f"🌐 {report.rpc_url} (chainId {report.chain_id}, {kind} layer)", file=out)
    if report.snapshot is None:
        print(f"❌ {report.error}", file=out)
        return

    snapshot = report.snapshot
    book = book or AddressBook.for_snapshot(snapshot)
    registry = snapshot.registry
    print(f"   Bridgehub:       {book.label(registry.address)} @ block {snapshot.block}", file=out)
    print(f"   Asset router:    {book.label(registry.asset_router)}", file=out)
    print(f"   CTM deployer:    {book.label(registry.deployer)}", file=out)
    print(f"   Known chains:    {sorted(registry.chain_ids)} ({registry.chain_source})", file=out)

    for m in snapshot.managers():
        print(f"   Chain manager:   {book.label(m.address)}", file=out)
        print(f"     admin / owner: {book.label(m.admin)} / {book.label(m.owner)}", file=out)

    for st in snapshot.state_transitions():
        state = "passive" if st.passive else "active"
        print(f"   Chain {st.chain_id} ({state}) at {book.label(st.address)}", file=out)
        print(f"     Protocol version: {st.protocol_version}", file=out)
        print(
            f"     Batches (C,V,E):  {st.total_batches_committed} {st.total_batches_verified} "
            f"{st.total_batches_executed}",
            file=out,
        )
        print(f"     Verifier:         {book.label(st.verifier)}", file=out)
        print(f"     Admin:            {book.label(st.admin)}", file=out)
        print(f"     Base token:       {book.label(st.base_token)}", file=out)
        if st.passive:
            print(f"     Settlement layer: {book.label(st.settlement_layer)}", file=out)
        print(f"     Priority queue:   {st.priority_queue_size} unprocessed / {st.total_priority_txs} total", file=out)

        check = report.priority.get(st.chain_id)
        if check is not None:
            if check.error is not None:
                print(f"     ❌ Priority check failed: {check.error}", file=out)
            elif check.ok:
                print(f"     ✅ Priority tree root 0x{check.value.onchain_root.hex()}", file=out)
            else:
                print("     ❌ Priority tree root mismatch:", file=out)
                print(f"        on-chain 0x{check.value.onchain_root.hex()}", file=out)
                print(f"        computed 0x{check.value.computed_root.hex()}", file=out)

        table = report.balances.get(st.chain_id)
        if table is not None:
            if table.error is not None:
                print(f"     ❌ Balances failed: {table.error}", file=out)
            else:
                for name, entry in sorted(table.value.entries.items()):
                    print(f"     💰 {name:<12} {entry.formatted}", file=out)

    router = snapshot.asset_router
    if isinstance(router, AssetRouter):
        print(f"   Native vault:    {book.label(router.native_token_vault)}", file=out)
        for asset in sorted(router.assets.values(), key=lambda a: a.asset_id):
            handler = asset.handler
            if isinstance(handler, VaultBacked):
                kind = f"vault token {book.label(handler.token_address)}"
            elif isinstance(handler, UnknownHandler):
                kind = f"unknown tracker {handler.tracker}"
            else:
                kind = "bridgehub"
            print(f"   Asset {book.asset_label(asset):<24} {kind}", file=out)

    for p in snapshot.partial:
        print(f"⚠️  {p.field} missing on {book.label(p.entity)}", file=out)


def write_snapshot(path: str, payload: Dict[str, Any]) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp = f"{path}.tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True)
        f.write("\n")
    os.replace(tmp, path)
