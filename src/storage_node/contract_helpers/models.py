"""Contract and pin-ownership records."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Mapping, Tuple


@dataclass(frozen=True)
class Contract:
    """A storage contract snapshot as last returned by the directory."""

    id: str
    owner: str = ""
    size_bytes: int = 0
    expiry_height: int = 0
    content_refs: Tuple[str, ...] = ()
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass
class PinRecord:
    """Ownership record for a CID this node pinned on behalf of contracts."""

    cid: str
    source_contract_ids: FrozenSet[str] = frozenset()
    pinned_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cid": self.cid,
            "source_contract_ids": sorted(self.source_contract_ids),
            "pinned_at": self.pinned_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PinRecord":
        return cls(
            cid=str(data["cid"]),
            source_contract_ids=frozenset(str(item) for item in data.get("source_contract_ids", ())),
            pinned_at=float(data.get("pinned_at", 0.0)),
        )


__all__ = ["Contract", "PinRecord"]
