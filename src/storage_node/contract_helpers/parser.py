"""Turn raw directory snapshots into :class:`Contract` records."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence, Tuple

from ..exceptions import InvalidContentRefError
from .extraction import DEFAULT_STRATEGIES, CidValidator, extract_content_refs
from .cid import is_valid_cid
from .models import Contract

logger = logging.getLogger(__name__)

_ID_FIELDS = ("id", "i")
_OWNER_FIELDS = ("owner", "t", "f")
_SIZE_FIELDS = ("size", "s", "u")
_EXPIRY_FIELDS = ("expiry_height", "expiryBlock", "e")


@dataclass(frozen=True)
class ParsedContract:
    contract: Optional[Contract]
    rejected_refs: Tuple[InvalidContentRefError, ...] = ()
    problem: str = ""


def parse_contract(
    body: Any,
    strategies: Sequence[Any] = DEFAULT_STRATEGIES,
    *,
    validator: CidValidator = is_valid_cid,
) -> ParsedContract:
    """Build a contract from one snapshot; unusable snapshots carry a ``problem``."""
    if not isinstance(body, Mapping):
        return ParsedContract(contract=None, problem=f"contract snapshot is not an object: {type(body).__name__}")

    contract_id = _first_text(body, _ID_FIELDS)
    if not contract_id:
        return ParsedContract(contract=None, problem="contract snapshot has no id")

    extraction = extract_content_refs(body, strategies, validator=validator, contract_id=contract_id)
    contract = Contract(
        id=contract_id,
        owner=_first_text(body, _OWNER_FIELDS),
        size_bytes=max(_leading_int(_first_present(body, _SIZE_FIELDS)), 0),
        expiry_height=_leading_int(_first_present(body, _EXPIRY_FIELDS)),
        content_refs=extraction.refs,
        raw=MappingProxyType(dict(body)),
    )
    return ParsedContract(contract=contract, rejected_refs=extraction.rejected)


def _first_present(body: Mapping[str, Any], fields: Sequence[str]) -> Any:
    for name in fields:
        value = body.get(name)
        if value not in (None, ""):
            return value
    return None


def _first_text(body: Mapping[str, Any], fields: Sequence[str]) -> str:
    value = _first_present(body, fields)
    return "" if value is None else str(value).strip()


def _leading_int(value: Any) -> int:
    """Parse ints, floats and ``"<block>:<txid>"`` strings; anything else is 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    head = str(value).strip().split(":", 1)[0]
    try:
        return int(float(head))
    except ValueError:
        logger.debug("Ignoring non-numeric contract field value %r", value)
        return 0


__all__ = ["ParsedContract", "parse_contract"]
