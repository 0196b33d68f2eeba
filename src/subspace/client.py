"""Call/response semantics on top of the fire-and-forget substrate."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

from loguru import logger

from subspace import tags as tag_codec
from subspace.config import ClientConfig, ConfigStore
from subspace.errors import (
    CallCancelledError,
    ReadFailedError,
    RemoteExecutionError,
    RemoteStatusError,
    RetryExhaustedError,
    SubmitFailedError,
)
from subspace.retry import RetryPolicy
from subspace.selector import select_matching, select_response, select_single
from subspace.substrate import Signer, Substrate
from subspace.types import (
    ACTION_TAG,
    RESPONSE_SUFFIX,
    STATUS_OK,
    STATUS_TAG,
    PendingWrite,
    ReadResult,
    RemoteCallRequest,
    SourceInfo,
    Structured,
    SubstrateResult,
    TagMap,
    Text,
    WriteResult,
)

EVAL_ACTION = "Eval"
SOURCES_ACTION = "Sources"


class RequestResponseClient:
    """Turn substrate primitives into ``query`` and ``mutate`` calls.

    Every call reads one configuration snapshot when it starts and keeps
    using it, so a concurrent ``reconfigure`` never yields a mixed view.
    """

    def __init__(
        self,
        substrate: Substrate,
        config: ConfigStore | ClientConfig | None = None,
        *,
        retry: RetryPolicy | None = None,
    ) -> None:
        self.substrate = substrate
        if isinstance(config, ConfigStore):
            self.config = config
        else:
            self.config = ConfigStore(config)
        self.retry = retry or RetryPolicy()

    def reconfigure(self, *, signer: Signer | None = None, **changes: Any) -> ClientConfig:
        return self.config.reconfigure(signer=signer, **changes)

    def connection_info(self) -> dict[str, Any]:
        return self.config.connection_info()

    async def query(self, request: RemoteCallRequest, *, cancel: asyncio.Event | None = None) -> ReadResult:
        """Evaluate a read-only message and return the single reply's tags."""

        result = await self._evaluate(self.config.snapshot(), request, cancel)
        message = select_single(result.messages, request=request, response=result.raw)

        tags = tag_codec.decode(message.tags)
        payload = Text(message.data) if message.data else None
        tag_codec.attach_payload(tags, payload)
        _raise_for_status(tags, request, result.raw)
        return ReadResult(tags=tags, payload=payload)

    async def sources(self, *, cancel: asyncio.Event | None = None) -> dict[str, SourceInfo]:
        """Ask the registry process which process sources it publishes.

        Only ids and versions are returned. ``flows.load_sources`` also fetches
        the source text from the gateway.
        """

        config = self.config.snapshot()
        request = RemoteCallRequest(
            process_id=config.settings.subspace_process,
            action=SOURCES_ACTION,
            retries=config.settings.default_retries,
        )
        result = await self._evaluate(config, request, cancel)
        message = select_matching(
            result.messages,
            ACTION_TAG,
            SOURCES_ACTION + RESPONSE_SUFFIX,
            request=request,
            response=result.raw,
        )

        payload = tag_codec.decode_payload(message.data)
        if not isinstance(payload, Structured) or not isinstance(payload.value, Mapping):
            raise RemoteExecutionError(request, result.raw, detail="sources reply is not a JSON object")
        catalog: dict[str, SourceInfo] = {}
        for name, entry in payload.value.items():
            entry = entry if isinstance(entry, Mapping) else {}
            catalog[name] = SourceInfo(name=name, id=entry.get("Id"), version=entry.get("Version"))
        logger.debug("sources.listed count={}", len(catalog))
        return catalog

    async def mutate(self, request: RemoteCallRequest, *, cancel: asyncio.Event | None = None) -> WriteResult:
        """Submit a state-changing message, then wait for its reply.

        Submission and result retrieval are retried separately. If the result
        cannot be fetched the message id is still returned, flagged as
        ``result_unknown``, because the write may already be applied.
        """

        config = self.config.snapshot()
        signer = config.require_signer(request.signer)
        wire_tags = tag_codec.request_tags(request)
        label = request.action or request.process_id

        try:
            message_id = await self.retry.execute(
                lambda: self.substrate.submit(
                    request.process_id,
                    wire_tags,
                    request.payload,
                    signer,
                    settings=config.settings,
                ),
                request.retries,
                cancel=cancel,
                label=f"submit:{label}",
            )
        except RetryExhaustedError as exc:
            raise SubmitFailedError(request, detail=repr(exc.last_error)) from exc

        pending = PendingWrite(message_id=message_id, process_id=request.process_id)
        logger.debug("mutate.submitted action={} message_id={}", label, message_id)

        try:
            result = await self.retry.execute(
                lambda: self.substrate.fetch_result(
                    pending.process_id,
                    pending.message_id,
                    settings=config.settings,
                ),
                request.retries,
                cancel=cancel,
                label=f"result:{label}",
            )
        except RetryExhaustedError as exc:
            logger.warning(
                "mutate.result_unknown action={} message_id={} error={!r}",
                label,
                message_id,
                exc.last_error,
            )
            return WriteResult(id=message_id, request=request)
        except CallCancelledError as exc:
            raise CallCancelledError("Cancelled while awaiting result", message_id=message_id) from exc

        _raise_for_error(result, request)
        message = select_response(result.messages, request=request, response=result.raw)

        tags = tag_codec.decode(message.tags)
        data = tag_codec.decode_payload(message.data)
        tag_codec.attach_payload(tags, data)
        _raise_for_status(tags, request, result.raw)
        return WriteResult(id=message_id, tags=tags, data=data, request=request)

    async def spawn(
        self,
        tags: Mapping[str, Any],
        *,
        signer: Signer | None = None,
        retries: int | None = None,
        cancel: asyncio.Event | None = None,
    ) -> str:
        """Spawn a new process with the configured scheduler, module and authority."""

        config = self.config.snapshot()
        resolved = config.require_signer(signer)
        settings = config.settings
        request = RemoteCallRequest(
            process_id=settings.scheduler,
            tags={**tags, "Authority": settings.authority},
            retries=retries or settings.default_retries,
            signer=resolved,
        )
        wire_tags = tag_codec.encode(request.tags)
        try:
            process_id = await self.retry.execute(
                lambda: self.substrate.spawn_process(
                    settings.scheduler,
                    settings.module,
                    wire_tags,
                    resolved,
                    settings=settings,
                ),
                request.retries,
                cancel=cancel,
                label="spawn",
            )
        except RetryExhaustedError as exc:
            raise SubmitFailedError(request, detail=repr(exc.last_error)) from exc
        logger.info("spawn.done process={}", process_id)
        return process_id

    async def evaluate_code(
        self,
        process_id: str,
        code: str,
        *,
        tags: Mapping[str, Any] | None = None,
        signer: Signer | None = None,
        cancel: asyncio.Event | None = None,
    ) -> WriteResult:
        request = RemoteCallRequest(
            process_id=process_id,
            action=EVAL_ACTION,
            tags=dict(tags or {}),
            payload=code,
            retries=self.config.settings.default_retries,
            signer=signer,
        )
        return await self.mutate(request, cancel=cancel)

    async def _evaluate(
        self,
        config: ClientConfig,
        request: RemoteCallRequest,
        cancel: asyncio.Event | None,
    ) -> SubstrateResult:
        wire_tags = tag_codec.request_tags(request)
        identity = config.identity(request.owner)
        try:
            result = await self.retry.execute(
                lambda: self.substrate.evaluate(
                    request.process_id,
                    wire_tags,
                    request.payload,
                    identity,
                    settings=config.settings,
                ),
                request.retries,
                cancel=cancel,
                label=f"query:{request.action or request.process_id}",
            )
        except RetryExhaustedError as exc:
            raise ReadFailedError(request, detail=repr(exc.last_error)) from exc
        _raise_for_error(result, request)
        return result


def _raise_for_error(result: SubstrateResult, request: RemoteCallRequest) -> None:
    if result.error:
        raise RemoteExecutionError(request, result.raw, detail=str(result.error))


def _raise_for_status(tags: TagMap, request: RemoteCallRequest, response: Any) -> None:
    status = tags.get(STATUS_TAG)
    if status != STATUS_OK:
        raise RemoteStatusError(status, body=dict(tags), request=request, response=response)
