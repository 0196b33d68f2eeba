"""Conversion between wire tag lists and tag maps."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from typing import Any

from subspace.errors import InvalidTagError
from subspace.types import ACTION_TAG, PAYLOAD_KEY, Payload, RemoteCallRequest, Structured, Tag, TagMap, Text

_TAG_NAME = re.compile(r"[A-Za-z0-9_][A-Za-z0-9_.:-]*")


def validate_tag_name(name: str) -> str:
    if not isinstance(name, str) or not name.isascii() or not _TAG_NAME.fullmatch(name):
        raise InvalidTagError(name)
    return name


def tag_value(value: Any) -> str:
    """Render one programmatic value as a wire string."""

    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return str(value)
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def encode(tags: Mapping[str, Any]) -> list[Tag]:
    """Turn a tag map into a wire list, keeping insertion order."""

    return [Tag(validate_tag_name(name), tag_value(value)) for name, value in tags.items()]


def decode(tags: Iterable[Tag | Mapping[str, Any]] | None) -> TagMap:
    """Fold a wire list into a map; later duplicates overwrite earlier ones.

    Entries without a usable name are skipped, decoding never raises.
    """

    decoded: TagMap = {}
    for entry in tags or ():
        if isinstance(entry, Tag):
            name, value = entry.name, entry.value
        elif isinstance(entry, Mapping):
            name, value = entry.get("name"), entry.get("value")
        else:
            continue
        if not isinstance(name, str):
            continue
        decoded[name] = value
    return decoded


def with_action(tags: Mapping[str, Any], action: str | None) -> TagMap:
    """Copy ``tags`` with ``Action`` set, the explicit action winning."""

    merged: TagMap = dict(tags)
    if action:
        merged[ACTION_TAG] = action
    return merged


def request_tags(request: RemoteCallRequest) -> list[Tag]:
    return encode(with_action(request.tags, request.action))


def parse_tags(raw: Any) -> list[Tag]:
    """Normalize tags from a JSON response into ``Tag`` values."""

    if isinstance(raw, Mapping):
        return [Tag(str(name), tag_value(value)) for name, value in raw.items()]
    parsed: list[Tag] = []
    for entry in raw or ():
        if isinstance(entry, Mapping) and isinstance(entry.get("name"), str):
            parsed.append(Tag(entry["name"], tag_value(entry.get("value", ""))))
    return parsed


def decode_payload(raw: Any) -> Payload | None:
    """Parse a message payload opportunistically; falls back to text."""

    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str):
        return Structured(raw)
    try:
        return Structured(json.loads(raw))
    except ValueError:
        return Text(raw)


def attach_payload(tags: TagMap, payload: Payload | None) -> TagMap:
    if payload is None:
        return tags
    tags[PAYLOAD_KEY] = payload.value
    return tags
