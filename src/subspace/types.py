"""Data types shared by the request/response layer."""

from __future__ import annotations

import json
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, NamedTuple

from subspace.errors import ResultUnknownError

if TYPE_CHECKING:
    from subspace.substrate import Signer

type TagMap = dict[str, Any]

ACTION_TAG = "Action"
STATUS_TAG = "Status"
STATUS_OK = "200"
RESPONSE_SUFFIX = "Response"

# Tag names never contain "@", so the payload can share the decoded map.
PAYLOAD_KEY = "@Data"


class Tag(NamedTuple):
    """One name/value pair as carried on the wire."""

    name: str
    value: str

    def to_wire(self) -> dict[str, str]:
        return {"name": self.name, "value": self.value}


@dataclass(frozen=True)
class Text:
    """Payload that did not parse as structured data."""

    value: str


@dataclass(frozen=True)
class Structured:
    """Payload parsed from JSON."""

    value: Any


type Payload = Text | Structured


@dataclass(frozen=True)
class RemoteCallRequest:
    """Everything needed to issue one query or mutate call."""

    process_id: str
    action: str | None = None
    tags: Mapping[str, Any] = field(default_factory=dict)
    payload: bytes | str | None = None
    retries: int = 3
    signer: Signer | None = field(default=None, repr=False)
    owner: str | None = None

    def __post_init__(self) -> None:
        if self.retries < 1:
            raise ValueError(f"retries must be >= 1, got {self.retries}")
        if not self.process_id:
            raise ValueError("process_id is required")

    @property
    def signer_present(self) -> bool:
        return self.signer is not None

    def describe(self) -> str:
        """Render the request for error messages, leaving out secrets and raw bytes."""

        summary: dict[str, Any] = {
            "process": self.process_id,
            "action": self.action,
            "tags": {name: str(value) for name, value in self.tags.items()},
            "retries": self.retries,
        }
        if self.owner:
            summary["owner"] = self.owner
        if isinstance(self.payload, bytes):
            summary["payload"] = f"<{len(self.payload)} bytes>"
        elif self.payload is not None:
            summary["payload"] = self.payload
        return json.dumps(summary, indent=2, ensure_ascii=False)


@dataclass(frozen=True)
class ResultMessage:
    """One output message produced by a process."""

    tags: list[Tag] = field(default_factory=list)
    data: str | None = None
    target: str | None = None
    anchor: str | None = None


@dataclass(frozen=True)
class SubstrateResult:
    """Result of evaluating or executing one message."""

    messages: list[ResultMessage] = field(default_factory=list)
    error: Any = None
    raw: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PendingWrite:
    """Correlates a submitted message with the result fetch that follows it."""

    message_id: str
    process_id: str
    submitted_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class ReadResult:
    """Decoded answer of a query call."""

    tags: TagMap
    payload: Text | None = None

    @property
    def status(self) -> str | None:
        return self.tags.get(STATUS_TAG)

    def __getitem__(self, name: str) -> Any:
        return self.tags[name]

    def get(self, name: str, default: Any = None) -> Any:
        return self.tags.get(name, default)


@dataclass(frozen=True)
class SourceInfo:
    """One published process source listed by the registry."""

    name: str
    id: str | None = None
    version: str | None = None
    lua: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a mutate call.

    ``tags`` and ``data`` are ``None`` when the message was submitted but its
    result could not be fetched. The write may still have been applied.
    """

    id: str
    tags: TagMap | None = None
    data: Payload | None = None
    request: RemoteCallRequest | None = field(default=None, repr=False, compare=False)

    @property
    def result_unknown(self) -> bool:
        return self.tags is None

    @property
    def status(self) -> str | None:
        if self.tags is None:
            return None
        return self.tags.get(STATUS_TAG)

    def raise_if_unknown(self) -> WriteResult:
        if self.result_unknown:
            raise ResultUnknownError(self.id, self.request)
        return self
