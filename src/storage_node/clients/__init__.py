"""HTTP clients for the content store daemon and the contract directory."""

from .content_store import DEFAULT_CONTENT_STORE_URL, IpfsContentStore
from .directory import SpkDirectory
from .interfaces import ContentStore, Directory, NodeInfo

__all__ = [
    "ContentStore",
    "DEFAULT_CONTENT_STORE_URL",
    "Directory",
    "IpfsContentStore",
    "NodeInfo",
    "SpkDirectory",
]
