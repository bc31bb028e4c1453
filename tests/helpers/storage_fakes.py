from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Set

from storage_node.clients.interfaces import NodeInfo
from storage_node.exceptions import ContentStoreUnavailableError, DirectoryFetchError, PinOperationError


def make_cid(tag: str) -> str:
    """Syntactically valid CIDv1 built from a short lowercase tag."""
    return f"bafy{tag:a<52}"


def contract(contract_id: str, *cids: str, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"id": contract_id, "files": list(cids)}
    body.update(extra)
    return body


class FakeContentStore:
    def __init__(self, pinned: Optional[Iterable[str]] = None):
        self.pinned: Set[str] = set(pinned or ())
        self.pin_calls: List[str] = []
        self.unpin_calls: List[str] = []
        self.list_calls = 0
        self.failing_pins: Set[str] = set()
        self.failing_unpins: Set[str] = set()
        self.list_error: Optional[Exception] = None

    async def pin(self, cid: str) -> None:
        self.pin_calls.append(cid)
        if cid in self.failing_pins:
            raise PinOperationError(f"pin {cid} rejected", cid=cid, operation="pin")
        self.pinned.add(cid)

    async def unpin(self, cid: str) -> None:
        self.unpin_calls.append(cid)
        if cid in self.failing_unpins:
            raise PinOperationError(f"unpin {cid} rejected", cid=cid, operation="unpin")
        self.pinned.discard(cid)

    async def list_pinned(self) -> Set[str]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return set(self.pinned)

    async def node_info(self) -> NodeInfo:
        return NodeInfo(id="12D3KooWFake", addresses=("/ip4/127.0.0.1/tcp/4001",))

    def go_offline(self) -> None:
        self.list_error = ContentStoreUnavailableError("daemon offline")

    def reset_calls(self) -> None:
        self.pin_calls.clear()
        self.unpin_calls.clear()


class FakeDirectory:
    def __init__(self, contracts: Optional[List[Dict[str, Any]]] = None):
        self.contracts: List[Dict[str, Any]] = list(contracts or [])
        self.error: Optional[Exception] = None
        self.calls: List[str] = []

    async def fetch_assigned_contracts(self, account: str) -> List[Dict[str, Any]]:
        self.calls.append(account)
        if self.error is not None:
            raise self.error
        return [dict(body) for body in self.contracts]

    def go_offline(self) -> None:
        self.error = DirectoryFetchError("directory unreachable")
