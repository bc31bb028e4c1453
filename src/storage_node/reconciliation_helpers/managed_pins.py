"""Persistence of the CIDs this node pinned on behalf of contracts."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

import orjson

from ..contract_helpers import PinRecord

logger = logging.getLogger(__name__)

_FORMAT_VERSION = 1


class ManagedPinStore:
    """
    JSON file of :class:`PinRecord` entries keyed by CID.

    Without a path the store is memory-only. A missing or unreadable file
    loads as an empty ownership set, so nothing is ever unpinned on the
    strength of a corrupt record.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self.path = Path(path) if path is not None else None

    def load(self) -> Dict[str, PinRecord]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            document = orjson.loads(self.path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable managed pin file %s: %s", self.path, exc)
            return {}

        entries = document.get("pins", []) if isinstance(document, dict) else []
        records: Dict[str, PinRecord] = {}
        for entry in entries:
            try:
                record = PinRecord.from_dict(entry)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed managed pin entry %r: %s", entry, exc)
                continue
            records[record.cid] = record
        logger.debug("Loaded %d managed pins from %s", len(records), self.path)
        return records

    def save(self, records: Mapping[str, PinRecord]) -> None:
        if self.path is None:
            return
        document = {
            "version": _FORMAT_VERSION,
            "pins": [records[cid].to_dict() for cid in sorted(records)],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_name(self.path.name + ".tmp")
        temp_path.write_bytes(orjson.dumps(document, option=orjson.OPT_INDENT_2))
        os.replace(temp_path, self.path)


__all__ = ["ManagedPinStore"]
