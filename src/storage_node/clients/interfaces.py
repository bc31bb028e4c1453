"""Capability interfaces the core depends on; implemented by the HTTP clients or test fakes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Protocol, Set, Tuple, runtime_checkable


@dataclass(frozen=True)
class NodeInfo:
    id: str
    addresses: Tuple[str, ...] = ()


@runtime_checkable
class ContentStore(Protocol):
    """Local content-addressed store (pin management)."""

    async def pin(self, cid: str) -> None: ...

    async def unpin(self, cid: str) -> None: ...

    async def list_pinned(self) -> Set[str]: ...

    async def node_info(self) -> NodeInfo: ...


@runtime_checkable
class Directory(Protocol):
    """Remote directory of contracts assigned to an account."""

    async def fetch_assigned_contracts(self, account: str) -> List[Dict[str, Any]]: ...


__all__ = ["ContentStore", "Directory", "NodeInfo"]
