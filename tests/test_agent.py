import asyncio
import logging
from dataclasses import replace

import pytest
from conftest import OWNER, FakeTransport, make_event

from kai.agent import Agent
from kai.dispatcher import DispatchOutcome
from kai.events import GroupMetadata, Participant
from kai.policy import Mode


def _group(group_id, *pairs):
    return GroupMetadata(group_id, participants=[Participant(a, real_id=b) for a, b in pairs])


def test_owner_is_qualified_from_settings(agent):
    assert agent.get_policy_state().owner_identity == OWNER


def test_set_policy_state_persists(agent, settings):
    agent.set_policy_state(mode="private")
    assert agent.get_policy_state().mode is Mode.PRIVATE
    assert '"private"' in settings.settings_path.read_text()


def test_set_owner_identity_normalizes(agent):
    agent.set_owner_identity("4444:2@chat")
    assert agent.get_policy_state().owner_identity == "4444@chat"


@pytest.mark.asyncio
async def test_events_are_ignored_before_dispatch_starts(transport, settings):
    kai = Agent(transport, settings)
    assert await kai.on_inbound_message(make_event(".ping")) is None
    assert transport.sent == []


@pytest.mark.asyncio
async def test_group_metadata_change_refreshes_cache(agent, transport):
    transport.groups["g@group"] = _group("g@group", ("1@lid", "9@chat"), ("2@chat", None))
    task = await agent.on_group_metadata_changed("g@group")
    assert await task == 1
    assert agent.identities.resolve("1@lid") == "9@chat"
    assert len(agent.identities) == 1


@pytest.mark.asyncio
async def test_group_metadata_change_does_not_wait_for_query(agent, transport):
    transport.groups["g@group"] = _group("g@group", ("1@lid", "9@chat"))
    transport.metadata_gate = asyncio.Event()
    task = await asyncio.wait_for(agent.on_group_metadata_changed("g@group"), timeout=0.5)
    await asyncio.sleep(0.01)
    assert transport.metadata_queries == ["g@group"]
    assert not task.done()
    assert agent.identities.resolve("1@lid") == "1@lid"
    transport.metadata_gate.set()
    await task
    assert agent.identities.resolve("1@lid") == "9@chat"


@pytest.mark.asyncio
async def test_dispatch_during_refresh_uses_unresolved_identity(agent, transport):
    transport.groups["g@group"] = _group("g@group", ("77@lid", OWNER))
    transport.metadata_gate = asyncio.Event()
    refresh = agent.supervisor.spawn(agent.refresh_all_groups(), name="refresh")
    await asyncio.sleep(0.01)

    event = make_event(".mode private", sender="77@lid", group="g@group")
    early = await agent.on_inbound_message(event)
    assert await early is DispatchOutcome.OWNER_REJECTED
    assert agent.get_policy_state().mode is Mode.PUBLIC

    transport.metadata_gate.set()
    await refresh
    late = await agent.on_inbound_message(event)
    assert await late is DispatchOutcome.SUCCESS
    assert agent.get_policy_state().mode is Mode.PRIVATE


class BotTransport(FakeTransport):
    bot_account = True


@pytest.mark.asyncio
async def test_bot_account_never_becomes_owner(settings, caplog):
    transport = BotTransport()
    with caplog.at_level(logging.WARNING, logger="kai.agent"):
        kai = Agent(transport, replace(settings, owner=None))
    assert "KAI_OWNER is not set" in caplog.text
    await kai.on_connection_open("5555@chat")
    try:
        assert kai.get_policy_state().owner_identity is None
        assert transport.sent == []
    finally:
        await kai.stop()


@pytest.mark.asyncio
async def test_refresh_survives_metadata_failure(agent, transport):
    transport.groups["g@group"] = _group("g@group")
    transport.fail_metadata = True
    assert await agent.refresh_all_groups() == 0


@pytest.mark.asyncio
async def test_connection_open_defaults_owner_and_welcomes(transport, settings):
    kai = Agent(transport, replace(settings, owner=None))
    transport.groups["g@group"] = _group("g@group", ("1@lid", "9@chat"))
    await kai.on_connection_open("5555:1@chat")
    try:
        assert kai.get_policy_state().owner_identity == "5555@chat"
        assert transport.sent[0][0] == "5555@chat"
        assert "connected" in transport.sent[0][1].text
        await kai.supervisor.drain(timeout=1)
        assert kai.identities.resolve("1@lid") == "9@chat"
    finally:
        await kai.stop()


@pytest.mark.asyncio
async def test_connection_open_keeps_configured_owner(agent, transport):
    await agent.on_connection_open("5555@chat")
    try:
        assert agent.get_policy_state().owner_identity == OWNER
    finally:
        await agent.stop()


@pytest.mark.asyncio
async def test_welcome_failure_is_not_fatal(agent, transport):
    transport.fail_send = True
    await agent.on_connection_open()
    await agent.stop()


@pytest.mark.asyncio
async def test_status_broadcast_is_read_once(agent, transport):
    event = make_event("status", sender="status@broadcast", message_id="s1", broadcast=True)
    await agent.on_inbound_message(event)
    await agent.on_inbound_message(event)
    assert [ref.message_id for ref in transport.read] == ["s1"]


@pytest.mark.asyncio
async def test_status_not_read_when_disabled(agent, transport):
    agent.set_policy_state(auto_status_view=False)
    await agent.on_inbound_message(make_event("status", broadcast=True))
    assert transport.read == []


@pytest.mark.asyncio
async def test_failed_status_read_is_retried_later(agent, transport):
    event = make_event("status", message_id="s2", broadcast=True)
    transport.fail_read = True
    assert await agent.view_status(event) is False
    transport.fail_read = False
    assert await agent.view_status(event) is True


@pytest.mark.asyncio
async def test_presence_failures_are_not_fatal(agent, transport):
    transport.fail_presence = True
    agent.start_presence()
    await asyncio.sleep(0.05)
    assert transport.presence_calls >= 2
    assert not agent._presence_task.done()
    await agent.stop()
    assert agent._presence_task is None


def test_clean_auth_without_directory(agent, settings):
    agent.clean_auth()
    assert not settings.auth_dir.exists()


def test_purge_identity_cache(agent):
    agent.identities.ingest([("1@lid", "2@chat")])
    agent.purge_identity_cache()
    assert len(agent.identities) == 0
