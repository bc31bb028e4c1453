"""Content identifier format checks."""

from __future__ import annotations

import re
from typing import Any

_CID_V0_PATTERN = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")
_CID_V1_PATTERN = re.compile(r"^bafy[a-z0-9]{50,}$")


def is_valid_cid(value: Any) -> bool:
    """Return True when ``value`` looks like a CIDv0 or base32 CIDv1 string.

    This is a syntactic check only; it says nothing about resolvability.
    """
    if not isinstance(value, str):
        return False
    return bool(_CID_V0_PATTERN.fullmatch(value) or _CID_V1_PATTERN.fullmatch(value))


__all__ = ["is_valid_cid"]
