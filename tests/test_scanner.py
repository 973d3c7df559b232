import asyncio
import math

import pytest

from zk_registry_inspector import abi
from zk_registry_inspector.errors import TransportError
from zk_registry_inspector.scanner import EventLogScanner, window_ranges

from conftest import FakeChainClient, addr, make_log


@pytest.mark.parametrize("head,window", [(1, 1), (10, 3), (100, 10), (25_000, 10_000), (7, 100), (10_001, 10_000)])
def test_windows_cover_history_without_gaps_or_overlaps(head, window):
    ranges = window_ranges(head, window)

    assert len(ranges) == math.ceil(head / window)
    expected_start = 1
    for start, end in sorted(ranges):
        assert start == expected_start
        assert end >= start
        expected_start = end + 1
    assert expected_start == head + 1


def test_windows_walk_backwards_and_clamp_at_block_one():
    assert window_ranges(25, 10) == [(16, 25), (6, 15), (1, 5)]


def test_no_windows_for_empty_chain():
    assert window_ranges(0, 10) == []


def test_max_depth_limits_window_count():
    assert window_ranges(100, 10, max_depth=25) == [(91, 100), (81, 90), (71, 80), (61, 70)]
    # the limit never pushes below block 1
    assert window_ranges(15, 10, max_depth=1000) == [(6, 15), (1, 5)]


def test_window_must_be_positive():
    with pytest.raises(ValueError):
        window_ranges(10, 0)
    with pytest.raises(ValueError):
        EventLogScanner(FakeChainClient(), window=0)


def test_scan_issues_windows_sequentially_and_sorts_logs():
    client = FakeChainClient(head=95)
    emitter = addr(0x1234)
    client.logs = [
        make_log(emitter, [abi.NEW_CHAIN], 90, 1),
        make_log(emitter, [abi.NEW_CHAIN], 3, 0),
        make_log(emitter, [abi.NEW_CHAIN], 90, 0),
        make_log(addr(0x9999), [abi.NEW_CHAIN], 50, 0),
        make_log(emitter, [abi.NEW_HYPERCHAIN], 60, 0),
    ]

    logs = asyncio.run(EventLogScanner(client, window=20).scan(emitter, abi.NEW_CHAIN))

    assert [(w[2], w[3]) for w in client.windows] == window_ranges(95, 20)
    assert [(lg["blockNumber"], lg["logIndex"]) for lg in logs] == [(3, 0), (90, 0), (90, 1)]


def test_scan_without_address_matches_every_emitter():
    client = FakeChainClient(head=10)
    client.logs = [make_log(addr(1), [abi.NEW_HYPERCHAIN], 2), make_log(addr(2), [abi.NEW_HYPERCHAIN], 4)]

    logs = asyncio.run(EventLogScanner(client, window=5).scan(None, abi.NEW_HYPERCHAIN))

    assert len(logs) == 2
    assert all(w[0] is None for w in client.windows)


def test_scan_respects_pinned_head():
    client = FakeChainClient(head=1000)
    asyncio.run(EventLogScanner(client, window=100).scan(addr(1), abi.NEW_CHAIN, head=250))
    assert client.windows[0][3] == 250
    assert client.windows[-1][2] == 1


def test_transport_failure_aborts_scan_immediately():
    client = FakeChainClient(head=100)
    client.fail_logs_at = 2

    with pytest.raises(TransportError):
        asyncio.run(EventLogScanner(client, window=10).scan(addr(1), abi.NEW_CHAIN))
    assert len(client.windows) == 2
