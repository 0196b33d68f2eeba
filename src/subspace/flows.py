"""Multi-step operations composed from calls, cache reads and polling."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import replace
from typing import Any

from loguru import logger

from subspace.cache import CacheReader, process_cache_path
from subspace.client import RequestResponseClient
from subspace.poller import ConvergencePoller, PollResult, Predicate, ProgressObserver
from subspace.substrate import Signer
from subspace.types import RemoteCallRequest, SourceInfo

ADD_BOT_ACTION = "Add-Bot"


def contains_member(document: Any, member_id: str) -> bool:
    """True when a cached membership document lists ``member_id``.

    Membership caches come either as a mapping keyed by id or as a list of
    ids or of objects carrying an ``id``.
    """

    if isinstance(document, Mapping):
        return member_id in document
    if isinstance(document, list):
        for item in document:
            if item == member_id:
                return True
            if isinstance(item, Mapping) and member_id in (item.get("id"), item.get("Id")):
                return True
    return False


def bot_membership_converged(server_id: str, bot_process: str) -> Predicate:
    def predicate(values: list[Any]) -> bool:
        bot_servers, server_bots, registry_entry = values
        registry_servers = registry_entry.get("servers") if isinstance(registry_entry, Mapping) else None
        return (
            contains_member(bot_servers, server_id)
            and contains_member(server_bots, bot_process)
            and contains_member(registry_servers, server_id)
        )

    return predicate


async def add_bot(
    client: RequestResponseClient,
    reader: CacheReader,
    *,
    server_id: str,
    bot_process: str,
    registry_process: str | None = None,
    signer: Signer | None = None,
    on_progress: ProgressObserver | None = None,
    max_attempts: int = 20,
    max_total_duration: float = 60.0,
    cancel: asyncio.Event | None = None,
) -> PollResult:
    """Add a bot to a server and wait until the bot, the server and the registry all show it."""

    settings = client.config.settings
    registry = registry_process or settings.subspace_process
    write = await client.mutate(
        RemoteCallRequest(
            process_id=registry,
            action=ADD_BOT_ACTION,
            tags={"BotProcess": bot_process, "ServerId": server_id},
            retries=settings.default_retries,
            signer=signer,
        ),
        cancel=cancel,
    )
    if write.result_unknown:
        logger.warning("add_bot.result_unknown message_id={}, relying on caches", write.id)

    paths = {
        "bot": process_cache_path(bot_process, "subspace", "servers"),
        "server": process_cache_path(server_id, "server", "bots"),
        "registry": process_cache_path(registry, "subspace", "bots", bot_process),
    }

    def probe(path: str):
        return lambda: reader.read(path, retries=1, cancel=cancel)

    poller = ConvergencePoller(
        {name: probe(path) for name, path in paths.items()},
        bot_membership_converged(server_id, bot_process),
        max_attempts=max_attempts,
        max_total_duration=max_total_duration,
        probe_retries=2,
        retry=reader.retry,
        on_progress=on_progress,
    )
    result = await poller.run(cancel=cancel)
    return result.raise_for_state()


async def load_sources(
    client: RequestResponseClient,
    reader: CacheReader,
    *,
    cancel: asyncio.Event | None = None,
) -> dict[str, SourceInfo]:
    """List the registry's published sources and fetch each one's code from the gateway."""

    catalog = await client.sources(cancel=cancel)
    listed = [source for source in catalog.values() if source.id]
    texts = await asyncio.gather(*(reader.read_source(source.id, cancel=cancel) for source in listed))
    for source, text in zip(listed, texts, strict=True):
        catalog[source.name] = replace(source, lua=text)
    logger.info("sources.loaded listed={} fetched={}", len(catalog), len(listed))
    return catalog
