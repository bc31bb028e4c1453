"""In-memory index of storage contracts assigned to this node.

Pure bookkeeping: no I/O. ``upsert`` replaces whole snapshots (directory
fetches always return complete contracts), and a reverse index answers which
contracts still need a given CID.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from .contract_helpers import Contract

logger = logging.getLogger(__name__)


class ContractRegistry:
    """Contracts keyed by id plus a CID -> contract-id reverse index."""

    def __init__(self, contracts: Optional[Iterable[Contract]] = None) -> None:
        self._contracts: Dict[str, Contract] = {}
        self._sources: Dict[str, Set[str]] = defaultdict(set)
        if contracts:
            self.upsert(contracts)

    def __len__(self) -> int:
        return len(self._contracts)

    def __contains__(self, contract_id: object) -> bool:
        return contract_id in self._contracts

    def get(self, contract_id: str) -> Optional[Contract]:
        return self._contracts.get(contract_id)

    def contracts(self) -> List[Contract]:
        return list(self._contracts.values())

    def contract_ids(self) -> FrozenSet[str]:
        return frozenset(self._contracts)

    def upsert(self, contracts: Iterable[Contract]) -> int:
        """Insert or fully replace each contract by id; returns how many changed."""
        changed = 0
        for contract in contracts:
            previous = self._contracts.get(contract.id)
            if previous == contract:
                continue
            if previous is not None:
                self._unindex(previous)
            self._contracts[contract.id] = contract
            self._index(contract)
            changed += 1
        return changed

    def remove_missing(self, seen_ids: Iterable[str]) -> List[str]:
        """Drop every contract whose id is not in ``seen_ids``; returns the removed ids."""
        keep = set(seen_ids)
        removed = [contract_id for contract_id in self._contracts if contract_id not in keep]
        for contract_id in removed:
            self._unindex(self._contracts.pop(contract_id))
        if removed:
            logger.info("Pruned %d contracts no longer assigned: %s", len(removed), ", ".join(sorted(removed)))
        return removed

    def get_required_cids(self) -> FrozenSet[str]:
        return frozenset(self._sources)

    def get_source_contracts(self, cid: str) -> FrozenSet[str]:
        return frozenset(self._sources.get(cid, ()))

    def clear(self) -> None:
        self._contracts.clear()
        self._sources.clear()

    def _index(self, contract: Contract) -> None:
        for cid in contract.content_refs:
            self._sources[cid].add(contract.id)

    def _unindex(self, contract: Contract) -> None:
        for cid in contract.content_refs:
            owners = self._sources.get(cid)
            if owners is None:
                continue
            owners.discard(contract.id)
            if not owners:
                del self._sources[cid]


__all__ = ["ContractRegistry"]
