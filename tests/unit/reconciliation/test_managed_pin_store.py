import orjson

from storage_node.contract_helpers import PinRecord
from storage_node.reconciliation_helpers import ManagedPinStore


def test_save_and_load_preserve_records(tmp_path):
    path = tmp_path / "state" / "managed-pins.json"
    store = ManagedPinStore(path)
    records = {
        "bafyb": PinRecord(cid="bafyb", source_contract_ids=frozenset({"c2", "c1"}), pinned_at=10.0),
        "bafya": PinRecord(cid="bafya", pinned_at=5.0),
    }

    store.save(records)

    document = orjson.loads(path.read_bytes())
    assert document["version"] == 1
    assert [entry["cid"] for entry in document["pins"]] == ["bafya", "bafyb"]
    assert document["pins"][1]["source_contract_ids"] == ["c1", "c2"]
    assert store.load() == records
    assert not path.with_name("managed-pins.json.tmp").exists()


def test_missing_or_corrupt_file_loads_empty(tmp_path):
    path = tmp_path / "managed-pins.json"
    store = ManagedPinStore(path)
    assert store.load() == {}

    path.write_text("{not json")
    assert store.load() == {}


def test_malformed_entries_are_skipped(tmp_path):
    path = tmp_path / "managed-pins.json"
    path.write_bytes(orjson.dumps({"version": 1, "pins": [{"cid": "bafyok"}, {"no": "cid"}, "junk"]}))

    assert list(ManagedPinStore(path).load()) == ["bafyok"]


def test_memory_only_store_ignores_saves():
    store = ManagedPinStore()
    store.save({"bafya": PinRecord(cid="bafya")})
    assert store.load() == {}
