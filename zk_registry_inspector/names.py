from typing import Dict, Mapping, Optional

from .config import DEPLOYER_ADDRESS, L2_ASSET_ROUTER_ADDRESS, L2_BRIDGEHUB_ADDRESS
from .models import AssetRouter, ChainManager, RegisteredAsset, RegistryBacked, Snapshot, StateTransition, VaultBacked
from .utils import normalize_address

WELL_KNOWN: Dict[str, str] = {
    DEPLOYER_ADDRESS: "Deployer",
    L2_BRIDGEHUB_ADDRESS: "Bridgehub",
    L2_ASSET_ROUTER_ADDRESS: "Shared Bridge",
}


class AddressBook:
    """Display names for addresses. Purely cosmetic; passed explicitly to formatting code."""

    def __init__(self, names: Optional[Mapping[str, str]] = None):
        self._names = {normalize_address(a): n for a, n in WELL_KNOWN.items()}
        self._asset_names: Dict[bytes, str] = {}
        for address, name in (names or {}).items():
            self.add(address, name)

    def add(self, address: str, name: str) -> None:
        self._names[normalize_address(address)] = name

    def add_asset(self, asset_id: bytes, name: str) -> None:
        self._asset_names[asset_id] = name

    def label(self, address: str) -> str:
        name = self._names.get(address)
        if name is None:
            return address
        return f"{address[:6]}...{address[-4:]} ({name:^26})"

    def asset_label(self, asset: RegisteredAsset) -> str:
        if isinstance(asset.handler, VaultBacked):
            return asset.handler.token_name
        if isinstance(asset.handler, RegistryBacked):
            name = self._asset_names.get(asset.asset_id)
            if name:
                return name
        return f"0x{asset.asset_id.hex()[:8]}..."

    @classmethod
    def for_snapshot(cls, snapshot: Snapshot) -> "AddressBook":
        book = cls()
        layer = snapshot.layer.kind
        book.add(snapshot.registry_address, f"Bridgehub ({layer})")
        book.add(snapshot.asset_router_address, f"Asset router ({layer})")
        book.add(snapshot.registry.deployer, "CTM deployer")

        for entity in snapshot.entities.values():
            if isinstance(entity, ChainManager):
                book.add(entity.address, "Chain manager")
                book.add_asset(entity.asset_id, f"Chain manager {entity.address[:10]}")
            elif isinstance(entity, StateTransition):
                book.add(entity.address, f"Chain {entity.chain_id}")
            elif isinstance(entity, AssetRouter):
                book.add(entity.native_token_vault, "Native token vault")
                for asset in entity.assets.values():
                    if isinstance(asset.handler, VaultBacked):
                        book.add(asset.handler.token_address, asset.handler.token_name)
        return book
