"""
View-function fragments and event topics used by the inspector.

Calls are looked up by function name, so a name must mean the same signature
on every contract it is called on (e.g. `admin()` on the registry root and on
a chain manager).
"""

from typing import Any, Dict, Sequence

from eth_utils import keccak


def _view(name: str, inputs: Sequence[str] = (), outputs: Sequence[str] = ("address",)) -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "stateMutability": "view",
        "inputs": [{"name": f"arg{i}", "type": t} for i, t in enumerate(inputs)],
        "outputs": [{"name": "", "type": t} for t in outputs],
    }


def topic(signature: str) -> bytes:
    return keccak(text=signature)


FUNCTIONS: Dict[str, Dict[str, Any]] = {
    f["name"]: f
    for f in [
        # registry root (bridgehub)
        _view("assetRouter"),
        _view("sharedBridge"),
        _view("l1CtmDeployer"),
        _view("getAllZKChainChainIDs", outputs=("uint256[]",)),
        _view("chainTypeManager", ("uint256",)),
        _view("getZKChain", ("uint256",)),
        _view("baseToken", ("uint256",)),
        _view("ctmAssetIdFromAddress", ("address",), ("bytes32",)),
        # chain manager
        _view("BRIDGE_HUB"),
        _view("admin"),
        _view("owner"),
        _view("validatorTimelock"),
        # state transition (getters facet)
        _view("getVerifier"),
        _view("getAdmin"),
        _view("getTotalBatchesCommitted", outputs=("uint256",)),
        _view("getTotalBatchesVerified", outputs=("uint256",)),
        _view("getTotalBatchesExecuted", outputs=("uint256",)),
        _view("getSemverProtocolVersion", outputs=("uint32", "uint32", "uint32")),
        _view("getSettlementLayer"),
        _view("getSyncLayer"),
        _view("getChainId", outputs=("uint256",)),
        _view("getL2BootloaderBytecodeHash", outputs=("bytes32",)),
        _view("getL2DefaultAccountBytecodeHash", outputs=("bytes32",)),
        _view("getL2SystemContractsUpgradeTxHash", outputs=("bytes32",)),
        _view("getTotalPriorityTxs", outputs=("uint256",)),
        _view("getPriorityQueueSize", outputs=("uint256",)),
        _view("getPriorityTreeRoot", outputs=("bytes32",)),
        # asset router / native token vault
        _view("nativeTokenVault"),
        _view("tokenAddress", ("bytes32",)),
        _view("chainBalance", ("uint256", "bytes32"), ("uint256",)),
        # erc20
        _view("symbol", outputs=("string",)),
        _view("decimals", outputs=("uint8",)),
    ]
}

NEW_CHAIN = topic("NewChain(uint256,address,address)")
CHAIN_TYPE_MANAGER_ADDED = topic("ChainTypeManagerAdded(address)")
MIGRATION_FINALIZED = topic("MigrationFinalized(uint256,bytes32,address)")
NEW_HYPERCHAIN = topic("NewHyperchain(uint256,address)")
ASSET_HANDLER_REGISTERED = topic("AssetHandlerRegisteredInitial(bytes32,address,bytes32,address)")

L2_CANONICAL_TRANSACTION = (
    "(uint256,uint256,uint256,uint256,uint256,uint256,uint256,uint256,uint256,uint256,"
    "uint256[4],bytes,bytes,uint256[],bytes,bytes)"
)
NEW_PRIORITY_REQUEST_TYPES = ["uint256", "bytes32", "uint64", L2_CANONICAL_TRANSACTION, "bytes[]"]
NEW_PRIORITY_REQUEST = topic(
    "NewPriorityRequest(uint256,bytes32,uint64," + L2_CANONICAL_TRANSACTION + ",bytes[])"
)
