"""Remote primitives of the message-passing substrate."""

from __future__ import annotations

import secrets
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from loguru import logger

from subspace import tags as tag_codec
from subspace.config import Settings
from subspace.types import ResultMessage, SubstrateResult, Tag

SDK_NAME = "subspace-sdk"
DRYRUN_PLACEHOLDER = "1234"


@dataclass(frozen=True)
class SignedDataItem:
    """A message signed by the caller's wallet, ready for upload."""

    id: str
    raw: bytes


class Signer(Protocol):
    """Signs one data item; the wallet behind it is the caller's concern."""

    async def __call__(
        self,
        *,
        data: bytes | str,
        tags: list[Tag],
        target: str | None = None,
        anchor: str | None = None,
    ) -> SignedDataItem: ...


class Substrate(Protocol):
    """The four primitives the request/response layer is built on."""

    async def submit(
        self,
        process_id: str,
        tags: Sequence[Tag],
        payload: bytes | str | None,
        signer: Signer,
        *,
        settings: Settings,
    ) -> str: ...

    async def fetch_result(self, process_id: str, message_id: str, *, settings: Settings) -> SubstrateResult: ...

    async def evaluate(
        self,
        process_id: str,
        tags: Sequence[Tag],
        payload: bytes | str | None,
        identity: str,
        *,
        settings: Settings,
    ) -> SubstrateResult: ...

    async def spawn_process(
        self,
        scheduler_id: str,
        module_id: str,
        tags: Sequence[Tag],
        signer: Signer,
        *,
        settings: Settings,
    ) -> str: ...


def parse_message(raw: Mapping[str, Any]) -> ResultMessage:
    return ResultMessage(
        tags=tag_codec.parse_tags(raw.get("Tags")),
        data=raw.get("Data"),
        target=raw.get("Target"),
        anchor=raw.get("Anchor"),
    )


def parse_result(raw: Any) -> SubstrateResult:
    """Build a ``SubstrateResult`` from a compute unit JSON body."""

    if not isinstance(raw, Mapping):
        return SubstrateResult(error=f"unexpected result body: {raw!r}", raw={"body": raw})
    messages = [parse_message(item) for item in raw.get("Messages") or () if isinstance(item, Mapping)]
    return SubstrateResult(
        messages=messages,
        error=raw.get("Error") or None,
        raw=dict(raw),
    )


def _as_text(payload: bytes | str | None, default: str) -> str:
    if payload is None:
        return default
    if isinstance(payload, bytes):
        return payload.decode("utf-8", errors="replace")
    return payload


class AoHttpSubstrate:
    """HTTP implementation of the substrate against compute and messenger units."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(headers={"User-Agent": f"{SDK_NAME}/1.0"})
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> AoHttpSubstrate:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def submit(
        self,
        process_id: str,
        tags: Sequence[Tag],
        payload: bytes | str | None,
        signer: Signer,
        *,
        settings: Settings,
    ) -> str:
        item = await signer(
            data=payload if payload is not None else "",
            tags=[*tags, *_protocol_tags("Message")],
            target=process_id,
            anchor=secrets.token_hex(16),
        )
        message_id = await self._upload(item, settings)
        logger.debug("substrate.submitted process={} message_id={}", process_id, message_id)
        return message_id

    async def fetch_result(self, process_id: str, message_id: str, *, settings: Settings) -> SubstrateResult:
        response = await self.client.get(
            f"{settings.cu_url.rstrip('/')}/result/{message_id}",
            params={"process-id": process_id},
            headers={"Accept": "application/json"},
            timeout=settings.http_timeout_seconds,
        )
        response.raise_for_status()
        return parse_result(response.json())

    async def evaluate(
        self,
        process_id: str,
        tags: Sequence[Tag],
        payload: bytes | str | None,
        identity: str,
        *,
        settings: Settings,
    ) -> SubstrateResult:
        body = {
            "Id": DRYRUN_PLACEHOLDER,
            "Target": process_id,
            "Owner": identity,
            "Anchor": "0",
            "Data": _as_text(payload, DRYRUN_PLACEHOLDER),
            "Tags": [tag.to_wire() for tag in tags],
        }
        response = await self.client.post(
            f"{settings.cu_url.rstrip('/')}/dry-run",
            params={"process-id": process_id},
            json=body,
            headers={"Accept": "application/json"},
            timeout=settings.http_timeout_seconds,
        )
        response.raise_for_status()
        return parse_result(response.json())

    async def spawn_process(
        self,
        scheduler_id: str,
        module_id: str,
        tags: Sequence[Tag],
        signer: Signer,
        *,
        settings: Settings,
    ) -> str:
        spawn_tags = [
            *tags,
            *_protocol_tags("Process"),
            Tag("Module", module_id),
            Tag("Scheduler", scheduler_id),
        ]
        item = await signer(data="1984", tags=spawn_tags, anchor=secrets.token_hex(16))
        process_id = await self._upload(item, settings)
        logger.debug("substrate.spawned process={}", process_id)
        return process_id

    async def _upload(self, item: SignedDataItem, settings: Settings) -> str:
        response = await self.client.post(
            settings.mu_url,
            content=item.raw,
            headers={"Content-Type": "application/octet-stream", "Accept": "application/json"},
            timeout=settings.http_timeout_seconds,
        )
        response.raise_for_status()
        try:
            reply = response.json()
        except ValueError:
            reply = {}
        if isinstance(reply, Mapping) and isinstance(reply.get("id"), str):
            return reply["id"]
        return item.id


def _protocol_tags(kind: str) -> list[Tag]:
    return [
        Tag("Data-Protocol", "ao"),
        Tag("Variant", "ao.TN.1"),
        Tag("Type", kind),
        Tag("SDK", SDK_NAME),
    ]
