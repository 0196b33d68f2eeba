"""Subspace - reliable calls over an asynchronous message-passing substrate."""

from loguru import logger

from .cache import CacheReader, process_cache_path
from .client import RequestResponseClient
from .config import ClientConfig, ConfigStore, Settings, get_settings
from .poller import ConvergencePoller, PollProgress, PollResult, PollState
from .retry import RetryPolicy
from .substrate import AoHttpSubstrate, SignedDataItem, Signer, Substrate
from .types import PAYLOAD_KEY, ReadResult, RemoteCallRequest, SourceInfo, Structured, Tag, Text, WriteResult

__version__ = "0.1.0"

logger.disable("subspace")

__all__ = [
    "PAYLOAD_KEY",
    "AoHttpSubstrate",
    "CacheReader",
    "ClientConfig",
    "ConfigStore",
    "ConvergencePoller",
    "PollProgress",
    "PollResult",
    "PollState",
    "ReadResult",
    "RemoteCallRequest",
    "RequestResponseClient",
    "RetryPolicy",
    "Settings",
    "SourceInfo",
    "SignedDataItem",
    "Signer",
    "Structured",
    "Substrate",
    "Tag",
    "Text",
    "WriteResult",
    "get_settings",
    "process_cache_path",
]
