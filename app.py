# app.py
"""
zk_registry_inspector: registry topology snapshot + priority-queue Merkle check
for multi-chain rollup networks.

This script:
  - Connects to one or more EVM-compatible endpoints via web3.py
  - Tells base-layer endpoints from rollup/gateway endpoints (zks_* probes)
  - Rebuilds the registry graph of each layer (bridgehub, chain managers,
    per-chain state-transition contracts, asset router, registered assets)
  - Rebuilds every chain's priority-queue Merkle tree from its
    NewPriorityRequest logs and compares it with the on-chain root
  - Sums native-token-vault balances per chain
  - Prints a JSON report (and optionally writes it to a snapshot file)

Endpoints usually only answer small eth_getLogs ranges, so full-history scans
walk the chain backwards in fixed windows (INSPECTOR_SCAN_WINDOW).
"""

import sys
import json
import time
import asyncio
import argparse
from typing import List, Optional

from zk_registry_inspector.client import Endpoint, discover_endpoint
from zk_registry_inspector.config import (
    DEFAULT_BRIDGEHUB,
    DEFAULT_MAX_DEPTH,
    DEFAULT_RPC,
    DEFAULT_RPC_TIMEOUT,
    DEFAULT_SCAN_WINDOW,
)
from zk_registry_inspector.errors import InspectorError
from zk_registry_inspector.models import RollupLayer
from zk_registry_inspector.report import build_payload, inspect_endpoint, print_summary, write_snapshot
from zk_registry_inspector.utils import join_all, normalize_address


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Inspect the registry topology and priority queues of a multi-chain rollup network.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "rpc",
        nargs="*",
        default=[DEFAULT_RPC],
        help="RPC URLs to inspect (base layer and/or rollup layers; default from RPC_URL env).",
    )
    parser.add_argument(
        "--bridgehub",
        default=DEFAULT_BRIDGEHUB,
        help="Base-layer bridgehub address (default from BRIDGEHUB_ADDRESS env, else taken from a rollup endpoint).",
    )
    parser.add_argument(
        "--window",
        type=int,
        default=DEFAULT_SCAN_WINDOW,
        help="Blocks per eth_getLogs request.",
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=DEFAULT_MAX_DEPTH,
        help="Only scan this many recent blocks for topology events (0 = full history).",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=DEFAULT_RPC_TIMEOUT,
        help="RPC timeout in seconds.",
    )
    parser.add_argument(
        "--storage-layout",
        action="store_true",
        help="Read state-transition fields from raw storage slots instead of getters.",
    )
    parser.add_argument(
        "--skip-priority",
        action="store_true",
        help="Skip the priority-queue Merkle check.",
    )
    parser.add_argument(
        "--skip-balances",
        action="store_true",
        help="Skip the native-token-vault balance tables.",
    )
    parser.add_argument(
        "--snapshot",
        help="Also write the JSON report to this file.",
    )
    parser.add_argument(
        "--pretty",
        action="store_true",
        help="Pretty-print JSON instead of compact JSON.",
    )
    parser.add_argument(
        "--no-human",
        action="store_true",
        help="Disable human-readable summary (JSON only).",
    )
    return parser.parse_args(argv)


def pick_base_registry(explicit: Optional[str], endpoints: List[Endpoint]) -> Optional[str]:
    if explicit:
        return normalize_address(explicit)
    for ep in endpoints:
        if isinstance(ep.layer, RollupLayer):
            return ep.layer.base_registry_address
    return None


async def run(args: argparse.Namespace) -> dict:
    endpoints = await join_all(discover_endpoint(url, args.timeout) for url in args.rpc)
    base_registry = pick_base_registry(args.bridgehub, endpoints)
    if base_registry is None and any(not isinstance(ep.layer, RollupLayer) for ep in endpoints):
        print("⚠️  No base-layer bridgehub known; pass --bridgehub or add a rollup endpoint.", file=sys.stderr)

    reports = []
    for ep in endpoints:
        report = await inspect_endpoint(
            ep,
            base_registry,
            window=args.window,
            max_depth=args.max_depth or None,
            use_storage_layout=args.storage_layout,
            check_priority=not args.skip_priority,
            check_balances=not args.skip_balances,
        )
        if not args.no_human:
            print_summary(report)
        reports.append(report)

    return build_payload(reports)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)

    if args.window <= 0:
        print("❌ --window must be > 0", file=sys.stderr)
        sys.exit(1)
    if args.max_depth < 0:
        print("❌ --max-depth must be >= 0", file=sys.stderr)
        sys.exit(1)

    print(
        f"📅 zk_registry_inspector at UTC {time.strftime('%Y-%m-%d %H:%M:%S', time.gmtime())}",
        file=sys.stderr,
    )

    t0 = time.time()
    try:
        payload = asyncio.run(run(args))
    except (InspectorError, ValueError) as e:
        print(f"❌ {e}", file=sys.stderr)
        sys.exit(1)

    if args.snapshot:
        write_snapshot(args.snapshot, payload)
        print(f"💾 Snapshot written to {args.snapshot}", file=sys.stderr)

    if not args.no_human:
        print(f"⏱️  Total elapsed: {time.time() - t0:.2f}s", file=sys.stderr)

    if args.pretty:
        print(json.dumps(payload, indent=2, sort_keys=True))
    else:
        print(json.dumps(payload, separators=(",", ":"), sort_keys=True))


if __name__ == "__main__":
    main()
