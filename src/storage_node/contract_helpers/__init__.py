"""Contract models, CID validation and content-ref extraction."""

from .cid import is_valid_cid
from .extraction import (
    DEFAULT_STRATEGIES,
    DelimitedRefStrategy,
    DirectRefStrategy,
    ExtractionResult,
    FileListStrategy,
    extract_content_refs,
)
from .models import Contract, PinRecord
from .parser import ParsedContract, parse_contract

__all__ = [
    "DEFAULT_STRATEGIES",
    "Contract",
    "DelimitedRefStrategy",
    "DirectRefStrategy",
    "ExtractionResult",
    "FileListStrategy",
    "ParsedContract",
    "PinRecord",
    "extract_content_refs",
    "is_valid_cid",
    "parse_contract",
]
