from storage_node.contract_helpers import Contract
from storage_node.contract_registry import ContractRegistry


def _contract(contract_id, *cids, owner="bob"):
    return Contract(id=contract_id, owner=owner, content_refs=tuple(cids))


def test_upsert_indexes_required_cids():
    registry = ContractRegistry()
    changed = registry.upsert([_contract("c1", "cid-a", "cid-b"), _contract("c2", "cid-b")])

    assert changed == 2
    assert len(registry) == 2
    assert registry.get_required_cids() == {"cid-a", "cid-b"}
    assert registry.get_source_contracts("cid-b") == {"c1", "c2"}
    assert registry.get_source_contracts("unknown") == frozenset()


def test_upsert_is_idempotent_and_replaces_whole_snapshot():
    registry = ContractRegistry([_contract("c1", "cid-a", "cid-b")])

    assert registry.upsert([_contract("c1", "cid-a", "cid-b")]) == 0

    registry.upsert([_contract("c1", "cid-c", owner="carol")])
    assert registry.get("c1").owner == "carol"
    assert registry.get_required_cids() == {"cid-c"}
    assert registry.get_source_contracts("cid-a") == frozenset()


def test_remove_missing_prunes_absent_contracts():
    registry = ContractRegistry([_contract("c1", "shared"), _contract("c2", "shared", "only-c2")])

    removed = registry.remove_missing({"c1"})

    assert removed == ["c2"]
    assert "c2" not in registry
    assert registry.get_required_cids() == {"shared"}
    assert registry.get_source_contracts("shared") == {"c1"}


def test_contract_without_refs_is_recorded_but_requires_nothing():
    registry = ContractRegistry([_contract("empty")])
    assert "empty" in registry
    assert registry.get_required_cids() == frozenset()


def test_clear_empties_everything():
    registry = ContractRegistry([_contract("c1", "cid-a")])
    registry.clear()
    assert len(registry) == 0
    assert registry.get_required_cids() == frozenset()
