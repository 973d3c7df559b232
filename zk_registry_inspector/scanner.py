"""
Full-history log retrieval for endpoints that only answer small block ranges.

Windows are walked backwards from the head, one request at a time: each
window's upper bound is the block below the previous window's lower bound.
Any transport error aborts the scan; nothing is retried.
"""

import math
import sys
import time
from typing import Any, Dict, List, Optional, Tuple

from .config import DEFAULT_SCAN_WINDOW
from .utils import normalize_address


def window_ranges(head: int, window: int, max_depth: Optional[int] = None) -> List[Tuple[int, int]]:
    """
    Inclusive (start, end) block windows from `head` down to block 1.

    With `max_depth`, at most ceil(max_depth / window) + 1 windows are returned.
    """
    if window < 1:
        raise ValueError(f"scan window must be >= 1, got {window}")

    limit = None
    if max_depth:
        limit = math.ceil(max_depth / window) + 1

    ranges: List[Tuple[int, int]] = []
    end = head
    while end >= 1:
        if limit is not None and len(ranges) >= limit:
            break
        start = max(1, end - window + 1)
        ranges.append((start, end))
        end = start - 1
    return ranges


class EventLogScanner:
    def __init__(self, client: Any, window: int = DEFAULT_SCAN_WINDOW):
        if window < 1:
            raise ValueError(f"scan window must be >= 1, got {window}")
        self.client = client
        self.window = window

    async def scan(
        self,
        address: Optional[str],
        topic: bytes,
        max_depth: Optional[int] = None,
        head: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        All logs with topic0 == `topic` emitted by `address` (any emitter when
        None), oldest first.
        """
        if address is not None:
            address = normalize_address(address)
        if head is None:
            head = await self.client.get_block_number()

        t0 = time.time()
        ranges = window_ranges(head, self.window, max_depth)
        logs: List[Dict[str, Any]] = []
        for start, end in ranges:
            logs.extend(await self.client.get_logs(address, topic, start, end))

        logs.sort(key=lambda lg: (int(lg["blockNumber"]), int(lg["logIndex"])))
        print(
            f"🔍 {len(logs)} logs for topic 0x{topic.hex()[:8]} on {address or 'any emitter'} "
            f"({len(ranges)} windows up to block {head}, {time.time() - t0:.2f}s)",
            file=sys.stderr,
        )
        return logs
