"""Pick the message that answers a call out of a process's outputs."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from subspace import tags as tag_codec
from subspace.errors import AmbiguousReadResultError, NoMessagesReturnedError
from subspace.types import ACTION_TAG, RESPONSE_SUFFIX, RemoteCallRequest, ResultMessage


def is_response(message: ResultMessage) -> bool:
    action = tag_codec.decode(message.tags).get(ACTION_TAG)
    return isinstance(action, str) and action.endswith(RESPONSE_SUFFIX)


def select_response(
    messages: Sequence[ResultMessage],
    *,
    request: RemoteCallRequest | None = None,
    response: Any = None,
) -> ResultMessage:
    """Choose the reply among the messages a write produced.

    A single message is returned as is. With several, the last one whose
    ``Action`` ends in ``Response`` wins; when none does, the first message is
    returned unchanged.
    """

    if not messages:
        raise NoMessagesReturnedError(request, response)
    if len(messages) == 1:
        return messages[0]

    selected: ResultMessage | None = None
    for message in messages:
        if is_response(message):
            selected = message
    return selected if selected is not None else messages[0]


def select_single(
    messages: Sequence[ResultMessage],
    *,
    request: RemoteCallRequest | None = None,
    response: Any = None,
) -> ResultMessage:
    """Read results carry exactly one message; anything else is an error."""

    if not messages:
        raise NoMessagesReturnedError(request, response)
    if len(messages) > 1:
        raise AmbiguousReadResultError(request, response, detail=f"{len(messages)} messages")
    return messages[0]


def select_matching(
    messages: Sequence[ResultMessage],
    name: str,
    value: str,
    *,
    request: RemoteCallRequest | None = None,
    response: Any = None,
) -> ResultMessage:
    """First message carrying tag ``name`` with exactly ``value``."""

    for message in messages:
        if tag_codec.decode(message.tags).get(name) == value:
            return message
    raise NoMessagesReturnedError(request, response, detail=f"no message tagged {name}={value}")
