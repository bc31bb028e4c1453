"""Ordered, first-match-wins strategies for finding CIDs in a contract body.

Directory snapshots reference content in several shapes: a single direct
field, a list of file entries (or the ``df`` cid->size mapping), or a
comma-delimited metadata string. Each strategy only yields raw candidates;
validation happens in :func:`extract_content_refs`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

from ..exceptions import InvalidContentRefError
from .cid import is_valid_cid

CidValidator = Callable[[Any], bool]


class DirectRefStrategy:
    """A single CID stored directly on the contract."""

    name = "direct"

    def __init__(self, fields: Sequence[str] = ("cid",)) -> None:
        self.fields = tuple(fields)

    def candidates(self, body: Mapping[str, Any]) -> List[Any]:
        return [body[key] for key in self.fields if body.get(key) not in (None, "")]


class FileListStrategy:
    """CIDs listed per file, either as ``files: [{cid}]`` or ``df: {cid: size}``."""

    name = "files"

    def candidates(self, body: Mapping[str, Any]) -> List[Any]:
        found: List[Any] = []
        files = body.get("files")
        if isinstance(files, list):
            for entry in files:
                if isinstance(entry, Mapping):
                    if entry.get("cid") not in (None, ""):
                        found.append(entry["cid"])
                elif entry not in (None, ""):
                    found.append(entry)
        file_map = body.get("df")
        if isinstance(file_map, Mapping):
            found.extend(file_map.keys())
        return found


class DelimitedRefStrategy:
    """Comma-delimited CIDs carried in contract metadata."""

    name = "delimited"

    def __init__(self, containers: Sequence[str] = ("meta", "metadata"), field: str = "cids", separator: str = ",") -> None:
        self.containers = tuple(containers)
        self.field = field
        self.separator = separator

    def candidates(self, body: Mapping[str, Any]) -> List[Any]:
        found: List[Any] = []
        for container in self.containers:
            section = body.get(container)
            if not isinstance(section, Mapping):
                continue
            value = section.get(self.field)
            if isinstance(value, str):
                found.extend(part.strip() for part in value.split(self.separator) if part.strip())
            elif isinstance(value, list):
                found.extend(item for item in value if item not in (None, ""))
        return found


DEFAULT_STRATEGIES = (DirectRefStrategy(), FileListStrategy(), DelimitedRefStrategy())


@dataclass(frozen=True)
class ExtractionResult:
    refs: Tuple[str, ...]
    rejected: Tuple[InvalidContentRefError, ...] = ()
    strategy: Optional[str] = None


def extract_content_refs(
    body: Mapping[str, Any],
    strategies: Sequence[Any] = DEFAULT_STRATEGIES,
    *,
    validator: CidValidator = is_valid_cid,
    contract_id: str = "",
) -> ExtractionResult:
    """Return the refs of the first strategy yielding at least one valid CID.

    Invalid candidates met in every strategy consulted up to (and including)
    the winner are returned as ``rejected`` so callers can surface them.
    """
    rejected: List[InvalidContentRefError] = []
    for strategy in strategies:
        valid: List[str] = []
        for candidate in strategy.candidates(body):
            if validator(candidate):
                if candidate not in valid:
                    valid.append(candidate)
            else:
                rejected.append(InvalidContentRefError(candidate, contract_id=contract_id, strategy=strategy.name))
        if valid:
            return ExtractionResult(refs=tuple(valid), rejected=tuple(rejected), strategy=strategy.name)
    return ExtractionResult(refs=(), rejected=tuple(rejected))


__all__ = [
    "DEFAULT_STRATEGIES",
    "DelimitedRefStrategy",
    "DirectRefStrategy",
    "ExtractionResult",
    "FileListStrategy",
    "extract_content_refs",
]
