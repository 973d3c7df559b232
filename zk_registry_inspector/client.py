"""
Remote chain access.

`Web3ChainClient` is the only place that talks to an endpoint. Everything else
goes through its five coroutines, so tests can swap in an in-memory client
with the same methods.
"""

import sys
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError
from web3.types import RPCEndpoint

from .abi import FUNCTIONS
from .config import DEFAULT_RPC_TIMEOUT
from .errors import CallReverted, MissingCapability, TransportError
from .models import BaseLayer, Layer, RollupLayer
from .utils import as_bytes, normalize_address

BlockId = Union[int, str]


class Web3ChainClient:
    def __init__(self, w3: AsyncWeb3, rpc_url: str = ""):
        self.w3 = w3
        self.rpc_url = rpc_url

    async def call(self, address: str, function: str, args: Sequence[Any] = (), block: BlockId = "latest") -> Any:
        try:
            fragment = FUNCTIONS[function]
        except KeyError:
            raise ValueError(f"no ABI fragment for {function!r}")
        contract = self.w3.eth.contract(address=normalize_address(address), abi=[fragment])
        fn = getattr(contract.functions, function)(*args)
        try:
            return await fn.call(block_identifier=block)
        except (ContractLogicError, BadFunctionCallOutput) as e:
            raise CallReverted(f"{function}() on {address} reverted: {e}") from e
        except Exception as e:
            raise TransportError(f"{function}() on {address} failed: {e}") from e

    async def get_logs(
        self, address: Optional[str], topic0: bytes, from_block: int, to_block: int
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "fromBlock": from_block,
            "toBlock": to_block,
            "topics": ["0x" + topic0.hex()],
        }
        if address is not None:
            params["address"] = normalize_address(address)
        try:
            return list(await self.w3.eth.get_logs(params))
        except Exception as e:
            raise TransportError(f"eth_getLogs [{from_block}, {to_block}] failed: {e}") from e

    async def get_block_number(self) -> int:
        try:
            return int(await self.w3.eth.block_number)
        except Exception as e:
            raise TransportError(f"eth_blockNumber failed: {e}") from e

    async def get_storage_at(self, address: str, slot: int, block: BlockId = "latest") -> bytes:
        try:
            value = await self.w3.eth.get_storage_at(normalize_address(address), slot, block_identifier=block)
        except Exception as e:
            raise TransportError(f"eth_getStorageAt {address}[{slot}] failed: {e}") from e
        return as_bytes(value).rjust(32, b"\x00")

    async def get_code(self, address: str, block: BlockId = "latest") -> bytes:
        try:
            return as_bytes(await self.w3.eth.get_code(normalize_address(address), block_identifier=block))
        except Exception as e:
            raise TransportError(f"eth_getCode {address} failed: {e}") from e


@dataclass(frozen=True)
class Endpoint:
    rpc_url: str
    chain_id: int
    latest_block: int
    layer: Layer
    client: Web3ChainClient

    def describe(self) -> str:
        if isinstance(self.layer, RollupLayer):
            kind = f"rollup -> {self.layer.l1_chain_id}"
        else:
            kind = "base"
        return f"{self.rpc_url} (chainId {self.chain_id}, tip={self.latest_block}, {kind})"


def connect(rpc_url: str, timeout: int = DEFAULT_RPC_TIMEOUT) -> Web3ChainClient:
    w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
    return Web3ChainClient(w3, rpc_url)


async def _zks_request(w3: AsyncWeb3, method: str) -> Any:
    try:
        resp = await w3.provider.make_request(RPCEndpoint(method), [])
    except Exception as e:
        raise MissingCapability(f"{method}: {e}") from e
    if not isinstance(resp, dict) or resp.get("error") or resp.get("result") is None:
        raise MissingCapability(f"{method} not supported")
    return resp["result"]


async def detect_layer(w3: AsyncWeb3) -> Layer:
    try:
        base_registry = await _zks_request(w3, "zks_getBridgehubContract")
        l1_chain_id = await _zks_request(w3, "zks_L1ChainId")
    except MissingCapability:
        return BaseLayer()
    if isinstance(l1_chain_id, str):
        l1_chain_id = int(l1_chain_id, 16)
    return RollupLayer(l1_chain_id=int(l1_chain_id), base_registry_address=normalize_address(base_registry))


async def discover_endpoint(rpc_url: str, timeout: int = DEFAULT_RPC_TIMEOUT) -> Endpoint:
    start = time.time()
    client = connect(rpc_url, timeout)
    w3 = client.w3

    try:
        connected = await w3.is_connected()
    except Exception as e:
        raise TransportError(f"Failed to connect to RPC endpoint: {rpc_url}: {e}") from e
    if not connected:
        raise TransportError(f"Failed to connect to RPC endpoint: {rpc_url}")

    try:
        chain_id = int(await w3.eth.chain_id)
    except Exception as e:
        raise TransportError(f"eth_chainId failed on {rpc_url}: {e}") from e
    latest = await client.get_block_number()
    layer = await detect_layer(w3)

    endpoint = Endpoint(rpc_url=rpc_url, chain_id=chain_id, latest_block=latest, layer=layer, client=client)
    print(f"🌐 Connected to {endpoint.describe()} in {time.time() - start:.2f}s", file=sys.stderr)
    return endpoint
