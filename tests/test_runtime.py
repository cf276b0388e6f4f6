from __future__ import annotations

import asyncio
import json
import logging

import httpx
import pytest
from websockets.asyncio.server import serve

from character_agent import main as main_module
from character_agent.agents.base import EventStoreProtocol
from character_agent.agents.step_processor import StepProcessor
from character_agent.config import Settings
from character_agent.exceptions import AuthenticationError, ConfigurationError, SubscriptionError
from character_agent.runtime import AgentRuntime
from character_agent.services.step_store import StepStoreClient
from tests.agent_fixtures import FakeExtractor, FakeStepStore
from tests.factories import create_character, create_step, notification


def _runtime(settings, store, extractor) -> AgentRuntime:
    return AgentRuntime(settings=settings, store=store, processor=StepProcessor(store, extractor))


async def _wait_subscribed(store: FakeStepStore) -> None:
    for _ in range(100):
        if store.callback is not None:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("runtime never subscribed")


def test_subscription_options(test_settings, store, extractor):
    options = _runtime(test_settings, store, extractor).subscription_options()

    assert options.to_payload() == {
        "joinAccountRoom": False,
        "joinAgentRooms": ["did:nv:test-agent"],
        "subscribeEventTypes": ["step-updated"],
        "getPendingEventsOnSubscribe": False,
    }


@pytest.mark.asyncio
async def test_lost_channel_is_fatal_after_processing_events(test_settings):
    store = FakeStepStore([create_step("s1"), create_step("s2", task_id="task-2")])
    extractor = FakeExtractor([create_character()])
    runtime = _runtime(test_settings, store, extractor)

    runner = asyncio.create_task(runtime.run_forever())
    await _wait_subscribed(store)
    await store.callback(notification("s1"))
    await store.callback(notification("s2"))
    await store.callback("garbage")
    await asyncio.sleep(0.05)
    store.close_channel()
    with pytest.raises(SubscriptionError, match="subscription lost"):
        await asyncio.wait_for(runner, timeout=5)

    assert store.connected
    assert store.disconnected
    assert store.options == runtime.subscription_options()
    assert sorted(did_update[1]["step_id"] for did_update in store.updates) == ["s1", "s2"]


@pytest.mark.asyncio
async def test_server_side_close_reconnects_and_keeps_processing(test_settings):
    update_path = "/api/v1/agents/did:nv:test-agent/tasks/task-1/step/s1"
    routes = {
        ("GET", "/api/v1/auth/profile"): httpx.Response(200, json={}),
        ("GET", "/api/v1/agents/steps/s1"): httpx.Response(200, json=create_step("s1").model_dump(mode="json")),
        ("PUT", update_path): httpx.Response(201, json={}),
        ("POST", "/api/v1/agents/tasks/task-1/logs"): httpx.Response(201, json={}),
    }
    requests: list[httpx.Request] = []

    def transport(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return routes.get((request.method, request.url.path), httpx.Response(404))

    join_frames: list[dict] = []

    async def handler(ws):
        join_frames.append(json.loads(await ws.recv()))
        if len(join_frames) == 1:
            # 服务端在加入房间后立即关闭
            return
        await ws.send(json.dumps({"event": "step-updated", "data": notification("s1")}))
        await ws.wait_closed()

    async with serve(handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        settings = test_settings.model_copy(update={"nvm_websocket_url": f"ws://127.0.0.1:{port}"})
        store = StepStoreClient(settings, transport=httpx.MockTransport(transport))
        runtime = _runtime(settings, store, FakeExtractor([create_character()]))

        runner = asyncio.create_task(runtime.run_forever())
        for _ in range(500):
            if any(r.method == "PUT" for r in requests):
                break
            await asyncio.sleep(0.01)
        assert not runner.done()
        await runtime.stop()
        await asyncio.wait_for(runner, timeout=5)

    assert len(join_frames) == 2
    updates = [json.loads(r.content) for r in requests if r.method == "PUT"]
    assert updates[0]["step_status"] == "Completed"


def test_runtime_collaborators_satisfy_event_store_protocol(test_settings):
    assert isinstance(FakeStepStore(), EventStoreProtocol)
    assert isinstance(StepStoreClient(test_settings), EventStoreProtocol)


def test_main_returns_1_when_subscription_is_lost(monkeypatch, test_settings):
    async def lost_run(settings):
        raise SubscriptionError("Event subscription lost")

    monkeypatch.setattr(main_module, "get_settings", lambda: test_settings)
    monkeypatch.setattr(main_module, "setup_logging", lambda level: None)
    monkeypatch.setattr(main_module, "run_agent", lost_run)

    assert main_module.main() == 1


@pytest.mark.asyncio
async def test_duplicate_event_for_in_flight_step_is_dropped(test_settings):
    store = FakeStepStore([create_step("s1")])
    extractor = FakeExtractor([create_character()], delay=0.1)
    runtime = _runtime(test_settings, store, extractor)

    runner = asyncio.create_task(runtime.run_forever())
    await _wait_subscribed(store)
    await store.callback(notification("s1"))
    await store.callback(notification("s1"))
    await asyncio.sleep(0.01)
    await runtime.stop()
    await asyncio.wait_for(runner, timeout=5)

    assert len(extractor.calls) == 1
    assert len(store.updates) == 1


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_processing(test_settings):
    store = FakeStepStore([create_step("s1")])
    extractor = FakeExtractor([create_character()], delay=0.05)
    runtime = _runtime(test_settings, store, extractor)

    runner = asyncio.create_task(runtime.run_forever())
    await _wait_subscribed(store)
    await store.callback(notification("s1"))
    await asyncio.sleep(0.01)
    await runtime.stop()
    await asyncio.wait_for(runner, timeout=5)

    assert store.updates[0][1]["step_status"] == "Completed"
    assert store.disconnected


@pytest.mark.asyncio
async def test_authentication_failure_disconnects_and_raises(test_settings, store, extractor):
    store.connect_error = AuthenticationError("Login rejected by staging network")
    runtime = _runtime(test_settings, store, extractor)

    with pytest.raises(AuthenticationError):
        await runtime.run_forever()
    assert store.disconnected
    assert store.callback is None


@pytest.mark.asyncio
async def test_not_logged_in_is_fatal(test_settings, extractor):
    store = FakeStepStore(logged_in=False)
    runtime = _runtime(test_settings, store, extractor)

    with pytest.raises(AuthenticationError, match="Failed to login"):
        await runtime.run_forever()
    assert store.disconnected


def test_from_settings_requires_configuration(monkeypatch):
    for name in ("NVM_API_KEY", "AGENT_DID", "ANTHROPIC_API_KEY", "ANTHROPIC_AUTH_TOKEN"):
        monkeypatch.delenv(name, raising=False)

    with pytest.raises(ConfigurationError, match="NVM_API_KEY") as exc_info:
        AgentRuntime.from_settings(Settings())
    assert exc_info.value.details["missing"] == ["NVM_API_KEY", "AGENT_DID", "ANTHROPIC_API_KEY"]


@pytest.mark.asyncio
async def test_from_settings_wires_collaborators(test_settings):
    runtime = AgentRuntime.from_settings(test_settings)

    assert isinstance(runtime.store, StepStoreClient)
    assert runtime.processor.store is runtime.store
    await runtime.store.disconnect()


def test_main_returns_1_on_fatal_error(monkeypatch, caplog, test_settings):
    async def failing_run(settings):
        raise AuthenticationError("Login rejected")

    monkeypatch.setattr(main_module, "get_settings", lambda: test_settings)
    monkeypatch.setattr(main_module, "setup_logging", lambda level: None)
    monkeypatch.setattr(main_module, "run_agent", failing_run)

    with caplog.at_level(logging.ERROR, logger="character_agent.main"):
        assert main_module.main() == 1

    record = caplog.records[-1]
    assert record.msg == "Error in main function: %s"
    assert record.getMessage() == "Error in main function: Login rejected"
    assert record.exc_info is not None
