"""Tests for startup and shutdown ordering."""

import asyncio

import pytest
from unittest.mock import AsyncMock, patch

from conftest import CONTRACT_ADDRESS
from verdict_service.commitment import CommitterState
from verdict_service.config import VerdictServiceConfig
from verdict_service.coordinator import AnswerCoordinator
from verdict_service.errors import ChainConnectivityFailure, ConfigurationMissing
from verdict_service.identity import AgentIdentity
from verdict_service.job_store import question_key
from verdict_service.lifecycle import LifecycleController
from verdict_service.reveal_listener import ListenerState, RevealListener

SIGNING_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


@pytest.fixture
def config():
    return VerdictServiceConfig(
        rpc_url="http://localhost:8545",
        signing_key=SIGNING_KEY,
        commitment_contract_address=CONTRACT_ADDRESS,
        generator_api_key="sk-test",
        attach_retry_interval=0.01,
        shutdown_grace_period=0.2,
        poll_interval=60,
    )


@pytest.fixture
def listener(chain, committer, correlation, audit):
    return RevealListener(chain, committer, correlation, audit)


@pytest.fixture
def coordinator(store, audit):
    fetcher = AsyncMock()
    fetcher.fetch.return_value = "content"
    generator = AsyncMock()
    generator.generate_answer.return_value = "an answer"
    return AnswerCoordinator(store, AgentIdentity.from_private_key(SIGNING_KEY), fetcher, generator, audit=audit, poll_interval=60)


@pytest.mark.asyncio
async def test_start_and_shutdown_order(config, committer, listener, chain):
    closer = AsyncMock()
    controller = LifecycleController(config, committer=committer, listener=listener, closers=[closer])

    await controller.start()

    assert committer.state == CommitterState.READY
    assert listener.state == ListenerState.ATTACHED
    assert controller.started is True

    await controller.shutdown()

    assert listener.state == ListenerState.DETACHED
    assert chain.handles[0].active is False
    closer.assert_awaited_once()
    assert controller.started is False

    # Shutdown twice is harmless
    await controller.shutdown()
    closer.assert_awaited_once()


@pytest.mark.asyncio
async def test_missing_configuration_is_fatal_before_chain_access(committer, listener, chain):
    controller = LifecycleController(VerdictServiceConfig(rpc_url="http://localhost:8545"), committer=committer, listener=listener)

    with pytest.raises(ConfigurationMissing) as exc_info:
        await controller.start()

    assert "signing_key" in exc_info.value.missing
    assert chain.connect_calls == 0


@pytest.mark.asyncio
async def test_chain_failure_halts_startup(config, unreachable_chain, encryptor, correlation, audit):
    from verdict_service.commitment import VerdictCommitter

    committer = VerdictCommitter(unreachable_chain, encryptor, correlation, audit=audit)
    listener = RevealListener(unreachable_chain, committer, correlation, audit)
    controller = LifecycleController(config, committer=committer, listener=listener)

    with pytest.raises(ChainConnectivityFailure):
        await controller.start()

    assert listener.state == ListenerState.DETACHED
    assert unreachable_chain.handles == []


@pytest.mark.asyncio
async def test_listener_attach_is_retried(config, committer, listener, chain):
    chain.subscribe_failures = 2
    controller = LifecycleController(config, committer=committer, listener=listener)

    await controller.start()
    assert listener.state == ListenerState.ATTACH_FAILED

    for _ in range(100):
        if listener.attached:
            break
        await asyncio.sleep(0.01)

    assert listener.state == ListenerState.ATTACHED
    assert len(chain.handles) == 1
    await controller.shutdown()


@pytest.mark.asyncio
async def test_shutdown_cancels_commits_after_grace_period(config, committer, listener, chain, correlation):
    controller = LifecycleController(config, committer=committer, listener=listener)
    await controller.start()
    chain.receipt_delay = 5.0

    task = asyncio.create_task(committer.commit("Verified", 5, "req_42"))
    await asyncio.sleep(0.01)

    await asyncio.wait_for(controller.shutdown(), timeout=2.0)

    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(correlation) == 0
    # Listener was detached before the drain started
    assert listener.state == ListenerState.DETACHED


@pytest.mark.asyncio
async def test_agent_role_runs_poll_loop(config, coordinator, store):
    await store.put(question_key("req_1"), {"requestContext": "req_1", "question": "Q?", "knowledgeBaseReference": "bafy"})
    controller = LifecycleController(config, coordinator=coordinator)

    await controller.start()
    await asyncio.sleep(0.05)
    await asyncio.wait_for(controller.shutdown(), timeout=1.0)

    assert coordinator.cycles == 1
    assert await store.list_by_prefix("answers/req_1/") != []


@pytest.mark.asyncio
async def test_run_until_signalled(config, committer, listener):
    controller = LifecycleController(config, committer=committer, listener=listener)

    task = asyncio.create_task(controller.run_until_signalled())
    await asyncio.sleep(0.05)
    assert listener.attached

    controller.stop_event.set()
    await asyncio.wait_for(task, timeout=1.0)

    assert listener.state == ListenerState.DETACHED
    assert controller.started is False


def test_from_config_wires_roles(config, encryptor):
    controller = LifecycleController.from_config(config, encryptor=encryptor, run_agent=True)

    assert controller.committer is not None
    assert controller.listener is not None
    assert controller.coordinator is not None
    assert controller.coordinator.identity.address == AgentIdentity.from_private_key(SIGNING_KEY).address
    assert controller.committer.default_delay == 5


def test_from_config_requires_agent_options():
    with pytest.raises(ConfigurationMissing):
        LifecycleController.from_config(VerdictServiceConfig(signing_key=SIGNING_KEY), run_agent=True)


@pytest.mark.asyncio
async def test_shutdown_grace_period_is_shared_by_poll_and_commits(config, committer, listener, chain, store, audit):
    """A hung poll job and a hung commit are both cut off within one grace period."""

    async def hang(*args, **kwargs):
        await asyncio.sleep(30)

    fetcher = AsyncMock()
    fetcher.fetch.side_effect = hang
    coordinator = AnswerCoordinator(
        store, AgentIdentity.from_private_key(SIGNING_KEY), fetcher, AsyncMock(), audit=audit, poll_interval=60
    )
    await store.put(question_key("req_1"), {"requestContext": "req_1", "question": "Q?", "knowledgeBaseReference": "bafy"})
    controller = LifecycleController(config, committer=committer, listener=listener, coordinator=coordinator)
    await controller.start()

    chain.receipt_delay = 30.0
    commit_task = asyncio.create_task(committer.commit("Verified", 5, "req_42"))
    await asyncio.sleep(0.02)
    assert fetcher.fetch.called
    assert committer.inflight == 1

    loop = asyncio.get_running_loop()
    started = loop.time()
    await asyncio.wait_for(controller.shutdown(), timeout=2.0)
    elapsed = loop.time() - started

    assert elapsed <= config.shutdown_grace_period * 1.25
    with pytest.raises(asyncio.CancelledError):
        await commit_task
    assert controller.started is False


def test_agent_on_memory_store_warns(config):
    with patch("verdict_service.lifecycle.logger") as mock_logger:
        LifecycleController.from_config(config, run_agent=True)

    events = [c.args[0] for c in mock_logger.warning.call_args_list]
    assert "lifecycle.memory_job_store" in events


def test_agent_on_shared_store_does_not_warn(config, tmp_path):
    config.job_store_backend = "file"
    config.job_store_path = str(tmp_path)
    with patch("verdict_service.lifecycle.logger") as mock_logger:
        LifecycleController.from_config(config, run_agent=True)

    mock_logger.warning.assert_not_called()
