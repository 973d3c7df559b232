import asyncio
from typing import Any, Awaitable, Iterable, List, Mapping

from hexbytes import HexBytes
from web3 import Web3

from .errors import MalformedEvent


def normalize_address(addr: Any) -> str:
    if isinstance(addr, (bytes, bytearray)):
        addr = "0x" + bytes(addr).hex()
    try:
        return Web3.to_checksum_address(str(addr).strip())
    except Exception:
        raise ValueError(f"Invalid address: {addr!r}")


def as_bytes(value: Any) -> bytes:
    return bytes(HexBytes(value))


def word_to_address(word: Any) -> str:
    raw = as_bytes(word)
    if len(raw) != 32:
        raise ValueError(f"expected a 32-byte word, got {len(raw)} bytes")
    return normalize_address(raw[12:])


def _topic(log: Mapping[str, Any], i: int) -> bytes:
    topics = log.get("topics") or []
    if len(topics) <= i:
        raise MalformedEvent(f"log at block {log.get('blockNumber')} has {len(topics)} topics, need {i + 1}")
    raw = as_bytes(topics[i])
    if len(raw) != 32:
        raise MalformedEvent(f"topic {i} is {len(raw)} bytes long")
    return raw


def topic_bytes(log: Mapping[str, Any], i: int) -> bytes:
    return _topic(log, i)


def topic_int(log: Mapping[str, Any], i: int) -> int:
    return int.from_bytes(_topic(log, i), "big")


def topic_address(log: Mapping[str, Any], i: int) -> str:
    return normalize_address(_topic(log, i)[12:])


def short_address(addr: str) -> str:
    return f"{addr[:6]}...{addr[-4:]}"


async def join_all(aws: Iterable[Awaitable[Any]]) -> List[Any]:
    """
    Await all of `aws` concurrently and return their results in order.

    The first failure cancels the siblings that are still running, waits for
    them to finish, and is then re-raised.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    if not tasks:
        return []
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    finally:
        pending = [t for t in tasks if not t.done()]
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    errors = [t.exception() for t in tasks if not t.cancelled() and t.exception() is not None]
    if errors:
        raise errors[0]
    return [t.result() for t in tasks]
