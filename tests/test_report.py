import asyncio
import json
import os
from types import SimpleNamespace

from eth_utils import keccak

from zk_registry_inspector import abi
from zk_registry_inspector.config import L2_BRIDGEHUB_ADDRESS
from zk_registry_inspector.models import BaseLayer, RollupLayer
from zk_registry_inspector.names import AddressBook
from zk_registry_inspector.report import (
    build_payload,
    inspect_endpoint,
    print_summary,
    registry_address_for,
    write_snapshot,
)
from zk_registry_inspector.utils import normalize_address

from conftest import addr, make_log, priority_log, priority_request_data, tx_id


def endpoint(client, layer=None):
    return SimpleNamespace(rpc_url="http://127.0.0.1:8545", chain_id=9, layer=layer or BaseLayer(), client=client)


def run(ep, registry, **kwargs):
    return asyncio.run(inspect_endpoint(ep, registry, window=100, **kwargs))


def test_full_inspection(base_world):
    w = base_world
    report = run(endpoint(w.client), w.registry)

    assert report.error is None
    assert report.priority[270].ok
    assert report.priority[271].ok
    assert report.priority[271].value.computed_root == keccak(b"")
    assert report.balances[270].ok
    assert set(report.balances[270].value.entries) == {"ETH", "USDC"}


def test_failing_chain_does_not_hide_other_chains(base_world):
    w = base_world
    w.client.logs.append(make_log(w.st2, [abi.NEW_PRIORITY_REQUEST], 30, data=b"\x01" * 7))

    report = run(endpoint(w.client), w.registry)

    assert report.priority[270].ok
    assert not report.priority[271].ok
    assert report.priority[271].error.startswith("MalformedEvent")
    assert report.balances[271].ok


def test_out_of_range_priority_index_stays_on_its_chain(base_world):
    w = base_world
    w.client.logs.append(priority_log(w.st2, 2**70, tx_id(7), 30))

    report = run(endpoint(w.client), w.registry)

    assert report.priority[270].ok
    assert report.priority[271].error.startswith("MalformedEvent")
    assert report.balances[271].ok


def test_unrepresentable_expiration_is_kept_raw(base_world):
    w = base_world
    w.client.logs.append(
        make_log(w.st2, [abi.NEW_PRIORITY_REQUEST], 30, data=priority_request_data(0, tx_id(5), expiration=2**64 - 1))
    )

    payload = build_payload([run(endpoint(w.client), w.registry)])
    json.dumps(payload)

    queues = payload["layers"][0]["priorityQueues"]
    assert queues["271"]["transactions"][0]["expiration"] == 2**64 - 1
    assert queues["270"]["transactions"][0]["expiration"].startswith("2023-11-14")

def test_mismatch_payload_carries_both_roots(base_world):
    w = base_world
    stale = keccak(b"stale")
    w.client.set(w.st1, "getPriorityTreeRoot", stale)

    payload = build_payload([run(endpoint(w.client), w.registry)])
    json.dumps(payload)

    check = payload["layers"][0]["priorityQueues"]["270"]
    assert check["ok"] is False
    assert check["onchainRoot"] == "0x" + stale.hex()
    assert check["computedRoot"] == "0x" + keccak(tx_id(0) + tx_id(1)).hex()
    assert [t["index"] for t in check["transactions"]] == [0, 1]


def test_resolve_failure_is_recorded(base_world):
    w = base_world
    w.client.code[w.registry] = b""

    report = run(endpoint(w.client), w.registry)

    assert report.snapshot is None
    assert report.error.startswith("EmptyContract")
    payload = build_payload([report])
    assert "snapshot" not in payload["layers"][0]


def test_base_layer_without_registry():
    report = run(endpoint(None), None)
    assert report.snapshot is None
    assert "bridgehub" in report.error


def test_registry_address_for_layers():
    rollup = SimpleNamespace(layer=RollupLayer(1, addr(0x1000)))
    base = SimpleNamespace(layer=BaseLayer())
    assert registry_address_for(rollup, addr(0x1000)) == L2_BRIDGEHUB_ADDRESS
    assert registry_address_for(base, addr(0x1000)) == addr(0x1000)


def test_skipped_checks(base_world):
    w = base_world
    report = run(endpoint(w.client), w.registry, check_priority=False, check_balances=False)
    assert report.priority == {}
    assert report.balances == {}


def test_summary_goes_to_stderr(base_world, capsys):
    w = base_world
    print_summary(run(endpoint(w.client), w.registry))
    out, err = capsys.readouterr()
    assert out == ""
    assert "Chain 270 (active)" in err
    assert "USDC" in err


def test_address_book_labels():
    book = AddressBook({addr(0xABC): "Validator timelock"})
    assert "Validator timelock" in book.label(addr(0xABC))
    assert "Bridgehub" in book.label(normalize_address(L2_BRIDGEHUB_ADDRESS))
    assert book.label(addr(0xDEF)) == addr(0xDEF)


def test_write_snapshot_replaces_atomically(tmp_path):
    path = tmp_path / "out" / "snapshot.json"
    write_snapshot(str(path), {"a": 1})
    write_snapshot(str(path), {"a": 2})

    assert json.loads(path.read_text()) == {"a": 2}
    assert os.listdir(path.parent) == ["snapshot.json"]
