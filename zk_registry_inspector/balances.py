"""Per-chain balances held by the native token vault."""

from dataclasses import dataclass
from decimal import Decimal, localcontext
from types import MappingProxyType
from typing import Any, Dict, List, Mapping

from .config import BALANCE_PLACES
from .models import RegisteredAsset, Snapshot
from .utils import join_all


def format_amount(raw: int, decimals: int, places: int = BALANCE_PLACES) -> str:
    with localcontext() as ctx:
        ctx.prec = 100
        value = Decimal(int(raw)) / (Decimal(10) ** decimals)
        q = Decimal(10) ** -places
        return f"{value.quantize(q):,}"


@dataclass(frozen=True)
class BalanceEntry:
    asset_id: bytes
    token_address: str
    raw: int
    decimals: int
    formatted: str


@dataclass(frozen=True)
class ChainBalances:
    chain_id: int
    entries: Mapping[str, BalanceEntry]


def _display_names(assets: List[RegisteredAsset]) -> Dict[bytes, str]:
    counts: Dict[str, int] = {}
    for a in assets:
        counts[a.handler.token_name] = counts.get(a.handler.token_name, 0) + 1
    names = {}
    for a in assets:
        name = a.handler.token_name
        if counts[name] > 1:
            name = f"{name} (0x{a.asset_id.hex()[:8]})"
        names[a.asset_id] = name
    return names


class BalanceAggregator:
    def __init__(self, client: Any):
        self.client = client

    async def chain_balances(self, snapshot: Snapshot, chain_id: int) -> ChainBalances:
        router = snapshot.asset_router
        assets = sorted(router.vault_backed(), key=lambda a: a.asset_id)
        if not assets:
            return ChainBalances(chain_id=chain_id, entries=MappingProxyType({}))

        raws = await join_all(
            self.client.call(router.native_token_vault, "chainBalance", (chain_id, a.asset_id), snapshot.block)
            for a in assets
        )
        names = _display_names(assets)
        entries = {
            names[a.asset_id]: BalanceEntry(
                asset_id=a.asset_id,
                token_address=a.handler.token_address,
                raw=int(raw),
                decimals=a.handler.decimals,
                formatted=format_amount(int(raw), a.handler.decimals),
            )
            for a, raw in zip(assets, raws)
        }
        return ChainBalances(chain_id=chain_id, entries=MappingProxyType(entries))

    async def aggregate(self, snapshot: Snapshot) -> Dict[int, ChainBalances]:
        chain_ids = sorted(snapshot.registry.chain_ids)
        tables = await join_all(self.chain_balances(snapshot, cid) for cid in chain_ids)
        return dict(zip(chain_ids, tables))
