from __future__ import annotations

import asyncio

import pytest
from fakes import FakeSubstrate, fake_signer, make_message, make_result

from subspace.client import RequestResponseClient
from subspace.config import ClientConfig, Settings
from subspace.errors import (
    AmbiguousReadResultError,
    CallCancelledError,
    NoMessagesReturnedError,
    NoSignerError,
    ReadFailedError,
    RemoteExecutionError,
    RemoteStatusError,
    ResultUnknownError,
    SubmitFailedError,
)
from subspace.retry import RetryPolicy
from subspace.types import PAYLOAD_KEY, RemoteCallRequest, SourceInfo, Structured, Tag, Text


@pytest.mark.asyncio
async def test_query_returns_decoded_tags_and_payload(client: RequestResponseClient, substrate: FakeSubstrate) -> None:
    substrate.evaluate_outcomes = [
        make_result(make_message({"Action": "Info-Response", "Status": "200", "Name": "Guild"}, data='{"x": 1}'))
    ]

    result = await client.query(RemoteCallRequest(process_id="server-1", action="Info", tags={"Verbose": "1"}))

    assert result["Name"] == "Guild"
    assert result.status == "200"
    assert result.payload == Text('{"x": 1}')
    assert result[PAYLOAD_KEY] == '{"x": 1}'
    _, call = substrate.calls[0]
    assert call["tags"] == [Tag("Verbose", "1"), Tag("Action", "Info")]
    assert call["identity"] == "anon-reader"


@pytest.mark.asyncio
async def test_query_uses_owner_when_given(client: RequestResponseClient, substrate: FakeSubstrate) -> None:
    substrate.evaluate_outcomes = [make_result(make_message({"Status": "200"}))]
    await client.query(RemoteCallRequest(process_id="p", action="Info", owner="wallet-1"))
    assert substrate.calls[0][1]["identity"] == "wallet-1"


@pytest.mark.asyncio
async def test_query_non_200_status_is_remote_status_error(
    client: RequestResponseClient, substrate: FakeSubstrate
) -> None:
    substrate.evaluate_outcomes = [make_result(make_message({"Action": "Info-Response", "Status": "500"}, data="boom"))]

    with pytest.raises(RemoteStatusError) as exc_info:
        await client.query(RemoteCallRequest(process_id="p", action="Info"))

    assert exc_info.value.code == "500"
    assert exc_info.value.body[PAYLOAD_KEY] == "boom"
    assert exc_info.value.request is not None
    assert "Status 500" in str(exc_info.value)


@pytest.mark.asyncio
async def test_query_missing_status_is_an_error(client: RequestResponseClient, substrate: FakeSubstrate) -> None:
    substrate.evaluate_outcomes = [make_result(make_message({"Action": "Info-Response"}))]
    with pytest.raises(RemoteStatusError) as exc_info:
        await client.query(RemoteCallRequest(process_id="p", action="Info"))
    assert exc_info.value.code is None


@pytest.mark.asyncio
async def test_query_rejects_multiple_messages(client: RequestResponseClient, substrate: FakeSubstrate) -> None:
    substrate.evaluate_outcomes = [make_result(make_message({"Status": "200"}), make_message({"Status": "200"}))]
    with pytest.raises(AmbiguousReadResultError):
        await client.query(RemoteCallRequest(process_id="p", action="Info"))


@pytest.mark.asyncio
async def test_query_rejects_empty_result(client: RequestResponseClient, substrate: FakeSubstrate) -> None:
    substrate.evaluate_outcomes = [make_result()]
    with pytest.raises(NoMessagesReturnedError):
        await client.query(RemoteCallRequest(process_id="p", action="Info"))


@pytest.mark.asyncio
async def test_query_surfaces_error_field(client: RequestResponseClient, substrate: FakeSubstrate) -> None:
    substrate.evaluate_outcomes = [make_result(error="handler crashed")]
    with pytest.raises(RemoteExecutionError) as exc_info:
        await client.query(RemoteCallRequest(process_id="p", action="Info"))
    assert "handler crashed" in str(exc_info.value)


@pytest.mark.asyncio
async def test_query_retries_transport_then_fails(client: RequestResponseClient, substrate: FakeSubstrate) -> None:
    substrate.evaluate_outcomes = [ConnectionError("cu down")]
    with pytest.raises(ReadFailedError):
        await client.query(RemoteCallRequest(process_id="p", action="Info", retries=2))
    assert substrate.count("evaluate") == 2


@pytest.mark.asyncio
async def test_mutate_without_signer_fails_before_submitting(
    client: RequestResponseClient, substrate: FakeSubstrate
) -> None:
    with pytest.raises(NoSignerError):
        await client.mutate(RemoteCallRequest(process_id="p", action="Create-Role"))
    assert substrate.calls == []


@pytest.mark.asyncio
async def test_mutate_selects_response_among_side_effect_messages(
    client: RequestResponseClient, substrate: FakeSubstrate
) -> None:
    substrate.submit_outcomes = ["msg-1"]
    substrate.fetch_outcomes = [
        make_result(
            make_message({"Action": "Notify"}),
            make_message({"Action": "Create-Role-Response", "Status": "200", "RoleId": "7"}, data='{"roleId": 7}'),
        )
    ]

    result = await client.mutate(
        RemoteCallRequest(process_id="server-1", action="Create-Role", tags={"Name": "Admin"}, signer=fake_signer)
    )

    assert result.id == "msg-1"
    assert result.tags is not None
    assert result.tags["RoleId"] == "7"
    assert result.status == "200"
    assert result.data == Structured({"roleId": 7})
    assert not result.result_unknown
    submitted = substrate.calls[0][1]
    assert submitted["tags"] == [Tag("Name", "Admin"), Tag("Action", "Create-Role")]
    assert substrate.calls[1] == ("fetch_result", {"process_id": "server-1", "message_id": "msg-1"})


@pytest.mark.asyncio
async def test_mutate_payload_falls_back_to_text(client: RequestResponseClient, substrate: FakeSubstrate) -> None:
    substrate.submit_outcomes = ["msg-1"]
    substrate.fetch_outcomes = [make_result(make_message({"Status": "200"}, data="plain words"))]
    result = await client.mutate(RemoteCallRequest(process_id="p", action="Send", signer=fake_signer))
    assert result.data == Text("plain words")


@pytest.mark.asyncio
async def test_mutate_uses_configured_signer(substrate: FakeSubstrate, settings: Settings, fast_retry: RetryPolicy) -> None:
    client = RequestResponseClient(substrate, ClientConfig(settings=settings, signer=fake_signer), retry=fast_retry)
    substrate.submit_outcomes = ["msg-1"]
    substrate.fetch_outcomes = [make_result(make_message({"Status": "200"}))]
    await client.mutate(RemoteCallRequest(process_id="p", action="Send"))
    assert substrate.calls[0][1]["signer"] is fake_signer


@pytest.mark.asyncio
async def test_mutate_submit_exhaustion_is_submit_failed(
    client: RequestResponseClient, substrate: FakeSubstrate
) -> None:
    substrate.submit_outcomes = [ConnectionError("mu down")]
    with pytest.raises(SubmitFailedError):
        await client.mutate(RemoteCallRequest(process_id="p", action="Send", signer=fake_signer))
    assert substrate.count("submit") == 3
    assert substrate.count("fetch_result") == 0


@pytest.mark.asyncio
async def test_mutate_result_fetch_exhaustion_returns_partial_success(
    client: RequestResponseClient, substrate: FakeSubstrate
) -> None:
    substrate.submit_outcomes = ["msg-9"]
    substrate.fetch_outcomes = [ConnectionError("cu down")]

    result = await client.mutate(RemoteCallRequest(process_id="p", action="Send", signer=fake_signer))

    assert result.id == "msg-9"
    assert result.tags is None
    assert result.data is None
    assert result.result_unknown
    assert substrate.count("fetch_result") == 3
    with pytest.raises(ResultUnknownError) as exc_info:
        result.raise_if_unknown()
    assert exc_info.value.message_id == "msg-9"


@pytest.mark.asyncio
async def test_mutate_error_field_is_remote_execution_error(
    client: RequestResponseClient, substrate: FakeSubstrate
) -> None:
    substrate.submit_outcomes = ["msg-1"]
    substrate.fetch_outcomes = [make_result(error="bad input")]
    with pytest.raises(RemoteExecutionError):
        await client.mutate(RemoteCallRequest(process_id="p", action="Send", signer=fake_signer))


@pytest.mark.asyncio
async def test_mutate_empty_messages_is_no_messages_returned(
    client: RequestResponseClient, substrate: FakeSubstrate
) -> None:
    substrate.submit_outcomes = ["msg-1"]
    substrate.fetch_outcomes = [make_result()]
    with pytest.raises(NoMessagesReturnedError):
        await client.mutate(RemoteCallRequest(process_id="p", action="Send", signer=fake_signer))


@pytest.mark.asyncio
async def test_mutate_status_error(client: RequestResponseClient, substrate: FakeSubstrate) -> None:
    substrate.submit_outcomes = ["msg-1"]
    substrate.fetch_outcomes = [make_result(make_message({"Action": "Send-Response", "Status": "403"}))]
    with pytest.raises(RemoteStatusError) as exc_info:
        await client.mutate(RemoteCallRequest(process_id="p", action="Send", signer=fake_signer))
    assert exc_info.value.code == "403"


@pytest.mark.asyncio
async def test_mutate_cancel_while_awaiting_result_keeps_message_id(
    substrate: FakeSubstrate, settings: Settings
) -> None:
    client = RequestResponseClient(substrate, ClientConfig(settings=settings), retry=RetryPolicy(base_delay=10.0))
    substrate.submit_outcomes = ["msg-5"]
    substrate.fetch_outcomes = [ConnectionError("not yet")]
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, cancel.set)

    with pytest.raises(CallCancelledError) as exc_info:
        await client.mutate(RemoteCallRequest(process_id="p", action="Send", signer=fake_signer), cancel=cancel)

    assert exc_info.value.message_id == "msg-5"


@pytest.mark.asyncio
async def test_reconfigure_does_not_affect_in_flight_call(
    client: RequestResponseClient, substrate: FakeSubstrate
) -> None:
    started = asyncio.Event()
    release = asyncio.Event()
    seen: list[str] = []

    async def slow_evaluate(process_id, tags, payload, identity, *, settings):
        started.set()
        await release.wait()
        seen.append(f"{identity}@{settings.cu_url}")
        return make_result(make_message({"Status": "200"}))

    substrate.evaluate = slow_evaluate
    task = asyncio.create_task(client.query(RemoteCallRequest(process_id="p", action="Info")))
    await started.wait()
    client.reconfigure(owner="new-owner", cu_url="https://cu.example")
    release.set()
    await task

    await client.query(RemoteCallRequest(process_id="p", action="Info"))
    assert seen == ["anon-reader@https://cu.arnode.asia", "new-owner@https://cu.example"]


@pytest.mark.asyncio
async def test_spawn_adds_authority_and_returns_process_id(
    substrate: FakeSubstrate, settings: Settings, fast_retry: RetryPolicy
) -> None:
    client = RequestResponseClient(substrate, ClientConfig(settings=settings, signer=fake_signer), retry=fast_retry)
    substrate.spawn_outcomes = ["proc-1"]

    assert await client.spawn({"Name": "Bot"}) == "proc-1"

    call = substrate.calls[0][1]
    assert call["scheduler"] == settings.scheduler
    assert call["module"] == settings.module
    assert Tag("Authority", settings.authority) in call["tags"]


@pytest.mark.asyncio
async def test_spawn_requires_signer(client: RequestResponseClient) -> None:
    with pytest.raises(NoSignerError):
        await client.spawn({"Name": "Bot"})


@pytest.mark.asyncio
async def test_evaluate_code_sends_eval_action_with_code(
    client: RequestResponseClient, substrate: FakeSubstrate
) -> None:
    substrate.submit_outcomes = ["msg-1"]
    substrate.fetch_outcomes = [make_result(make_message({"Status": "200"}))]
    await client.evaluate_code("proc-1", "return 1", signer=fake_signer)
    call = substrate.calls[0][1]
    assert call["payload"] == "return 1"
    assert Tag("Action", "Eval") in call["tags"]


@pytest.mark.asyncio
async def test_concurrent_queries_are_independent(client: RequestResponseClient, substrate: FakeSubstrate) -> None:
    async def evaluate(process_id, tags, payload, identity, *, settings):
        await asyncio.sleep(0.01)
        return make_result(make_message({"Status": "200", "Process": process_id}))

    substrate.evaluate = evaluate
    results = await asyncio.gather(
        *(client.query(RemoteCallRequest(process_id=f"p{i}", action="Info")) for i in range(3))
    )
    assert [result["Process"] for result in results] == ["p0", "p1", "p2"]


@pytest.mark.asyncio
async def test_sources_picks_sources_response_from_registry(
    client: RequestResponseClient, substrate: FakeSubstrate, settings: Settings
) -> None:
    substrate.evaluate_outcomes = [
        make_result(
            make_message({"Action": "Notify"}),
            make_message(
                {"Action": "Sources-Response"},
                data='{"Server": {"Id": "tx-server", "Version": "1.2"}, "Bot": {"Id": "tx-bot", "Version": "0.4"}}',
            ),
        )
    ]

    catalog = await client.sources()

    call = substrate.calls[0][1]
    assert call["process_id"] == settings.subspace_process
    assert call["identity"] == "anon-reader"
    assert Tag("Action", "Sources") in call["tags"]
    assert catalog == {
        "Server": SourceInfo(name="Server", id="tx-server", version="1.2"),
        "Bot": SourceInfo(name="Bot", id="tx-bot", version="0.4"),
    }


@pytest.mark.asyncio
async def test_sources_without_matching_reply(client: RequestResponseClient, substrate: FakeSubstrate) -> None:
    substrate.evaluate_outcomes = [make_result(make_message({"Action": "Notify"}, data="{}"))]
    with pytest.raises(NoMessagesReturnedError):
        await client.sources()


@pytest.mark.asyncio
async def test_sources_rejects_non_object_reply(client: RequestResponseClient, substrate: FakeSubstrate) -> None:
    substrate.evaluate_outcomes = [make_result(make_message({"Action": "Sources-Response"}, data="not json"))]
    with pytest.raises(RemoteExecutionError):
        await client.sources()
