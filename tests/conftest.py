import asyncio
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

import pytest
from eth_abi import encode as abi_encode
from eth_utils import keccak

from zk_registry_inspector import abi
from zk_registry_inspector.config import ETH_TOKEN_ADDRESS, ZERO_ADDRESS
from zk_registry_inspector.errors import CallReverted, TransportError
from zk_registry_inspector.utils import normalize_address


def addr(n: int) -> str:
    return normalize_address("0x" + f"{n:040x}")


def uint_topic(n: int) -> bytes:
    return n.to_bytes(32, "big")


def addr_topic(a: str) -> bytes:
    return bytes(12) + bytes.fromhex(a[2:])


def make_log(address: str, topics: List[bytes], block: int, index: int = 0, data: bytes = b"") -> Dict[str, Any]:
    return {
        "address": address,
        "topics": topics,
        "blockNumber": block,
        "logIndex": index,
        "data": data,
        "transactionHash": keccak(text=f"{address}:{block}:{index}"),
    }


def priority_request_data(index: int, tx_id: bytes, expiration: int = 1_700_000_000) -> bytes:
    tx = (
        255,
        int(addr(0xF00D), 16),
        int(addr(0xBEEF), 16),
        72_000_000,
        800,
        250_000_000,
        0,
        0,
        index,
        10**15,
        [0, 0, 0, 0],
        b"\x12\x34",
        b"",
        [],
        b"",
        b"",
    )
    return abi_encode(abi.NEW_PRIORITY_REQUEST_TYPES, [index, tx_id, expiration, tx, []])


def priority_log(st_address: str, index: int, tx_id: bytes, block: int, log_index: int = 0) -> Dict[str, Any]:
    return make_log(st_address, [abi.NEW_PRIORITY_REQUEST], block, log_index, priority_request_data(index, tx_id))


class FakeChainClient:
    """In-memory stand-in for Web3ChainClient."""

    def __init__(self, head: int = 1000):
        self.head = head
        self.calls: Dict[Tuple[str, str, Tuple[Any, ...]], Any] = {}
        self.logs: List[Dict[str, Any]] = []
        self.storage: Dict[Tuple[str, int], bytes] = {}
        self.code: Dict[str, bytes] = {}
        self.windows: List[Tuple[Optional[str], bytes, int, int]] = []
        self.fail_logs_at: Optional[int] = None
        self.call_blocks: List[Any] = []
        self.delays: Dict[str, float] = {}

    def set(self, address: str, function: str, value: Any, *args: Any) -> None:
        self.calls[(address, function, tuple(args))] = value

    def unset(self, address: str, function: str, *args: Any) -> None:
        del self.calls[(address, function, tuple(args))]

    async def call(self, address, function, args=(), block="latest"):
        self.call_blocks.append(block)
        if function in self.delays:
            await asyncio.sleep(self.delays[function])
        key = (address, function, tuple(args))
        if key not in self.calls:
            raise CallReverted(f"{function}() on {address} reverted")
        value = self.calls[key]
        if isinstance(value, Exception):
            raise value
        return value

    async def get_logs(self, address, topic0, from_block, to_block):
        self.windows.append((address, topic0, from_block, to_block))
        if self.fail_logs_at is not None and len(self.windows) == self.fail_logs_at:
            raise TransportError("connection reset")
        return [
            lg
            for lg in self.logs
            if (address is None or lg["address"] == address)
            and lg["topics"][0] == topic0
            and from_block <= lg["blockNumber"] <= to_block
        ]

    async def get_block_number(self):
        return self.head

    async def get_storage_at(self, address, slot, block="latest"):
        return self.storage.get((address, slot), bytes(32))

    async def get_code(self, address, block="latest"):
        return self.code.get(address, b"\x60\x80\x60\x40")


def state_transition_calls(client: FakeChainClient, st: str, chain_id: int, root: bytes = b"\x00" * 32,
                           queue_size: int = 0, total: int = 0) -> None:
    client.set(st, "getVerifier", addr(0x9000 + chain_id))
    client.set(st, "getAdmin", addr(0x9100 + chain_id))
    client.set(st, "getTotalBatchesCommitted", 12)
    client.set(st, "getTotalBatchesVerified", 11)
    client.set(st, "getTotalBatchesExecuted", 10)
    client.set(st, "getSemverProtocolVersion", [0, 26, 1])
    client.set(st, "getL2BootloaderBytecodeHash", b"\x01" * 32)
    client.set(st, "getL2DefaultAccountBytecodeHash", b"\x02" * 32)
    client.set(st, "getL2SystemContractsUpgradeTxHash", b"\x00" * 32)
    client.set(st, "getChainId", chain_id)
    client.set(st, "getPriorityTreeRoot", root)
    client.set(st, "getPriorityQueueSize", queue_size)
    client.set(st, "getTotalPriorityTxs", total)


ETH_ID = keccak(text="asset:eth")
USDC_ID = keccak(text="asset:usdc")
OTHER_ID = keccak(text="asset:other")
MANAGER_ASSET_ID = keccak(text="asset:ctm")


def tx_id(i: int) -> bytes:
    return keccak(text=f"priority-{i}")


@pytest.fixture
def base_world():
    """A base layer with two chains, one manager and four registered assets."""
    w = SimpleNamespace(
        registry=addr(0x1000),
        router=addr(0x2000),
        deployer=addr(0x3000),
        manager=addr(0x4000),
        vault=addr(0x5000),
        st1=addr(0x6001),
        st2=addr(0x6002),
        usdc=addr(0x7000),
        tracker=addr(0x8000),
    )
    c = FakeChainClient(head=1000)
    w.client = c

    c.set(w.registry, "assetRouter", w.router)
    c.set(w.registry, "l1CtmDeployer", w.deployer)
    c.set(w.registry, "getAllZKChainChainIDs", [270, 271])
    c.set(w.registry, "ctmAssetIdFromAddress", MANAGER_ASSET_ID, w.manager)

    c.set(w.manager, "BRIDGE_HUB", w.registry)
    c.set(w.manager, "admin", addr(0xA001))
    c.set(w.manager, "owner", addr(0xA002))
    c.set(w.manager, "validatorTimelock", addr(0xA003))

    root_270 = keccak(tx_id(0) + tx_id(1))
    for cid, st in ((270, w.st1), (271, w.st2)):
        c.set(w.registry, "getZKChain", st, cid)
        c.set(w.registry, "chainTypeManager", w.manager, cid)
    c.set(w.registry, "baseToken", ETH_TOKEN_ADDRESS, 270)
    state_transition_calls(c, w.st1, 270, root=root_270, queue_size=1, total=2)
    state_transition_calls(c, w.st2, 271, root=keccak(b""))
    c.set(w.st1, "getSettlementLayer", ZERO_ADDRESS)

    c.set(w.router, "nativeTokenVault", w.vault)
    c.set(w.router, "BRIDGE_HUB", w.registry)
    c.set(w.vault, "tokenAddress", ETH_TOKEN_ADDRESS, ETH_ID)
    c.set(w.vault, "tokenAddress", w.usdc, USDC_ID)
    c.set(w.usdc, "symbol", "USDC")
    c.set(w.usdc, "decimals", 6)
    c.set(w.vault, "chainBalance", 5 * 10**18, 270, ETH_ID)
    c.set(w.vault, "chainBalance", 1_500_000, 270, USDC_ID)
    c.set(w.vault, "chainBalance", 0, 271, ETH_ID)
    c.set(w.vault, "chainBalance", 42, 271, USDC_ID)

    c.logs += [
        make_log(w.registry, [abi.CHAIN_TYPE_MANAGER_ADDED, addr_topic(w.manager)], 5),
        make_log(w.router, [abi.ASSET_HANDLER_REGISTERED, ETH_ID, addr_topic(w.vault), bytes(32)], 10),
        make_log(w.router, [abi.ASSET_HANDLER_REGISTERED, USDC_ID, addr_topic(w.vault), bytes(32)], 11),
        make_log(w.router, [abi.ASSET_HANDLER_REGISTERED, MANAGER_ASSET_ID, addr_topic(w.registry), bytes(32)], 12),
        make_log(w.router, [abi.ASSET_HANDLER_REGISTERED, OTHER_ID, addr_topic(w.tracker), bytes(32)], 13),
        priority_log(w.st1, 0, tx_id(0), 20),
        priority_log(w.st1, 1, tx_id(1), 21),
    ]
    return w
