"""Tests for the authorization coordinator: racing detectors, timeout, cleanup."""

import asyncio
import random
import sys
import threading
import time

import pytest

from oauth_coordinator import (
    AuthCoordinator,
    AuthorizationInProgress,
    AuthState,
    BrowserProcessLauncher,
    MessageChannel,
)

TRUSTED = "https://app.example"


class FakeAgent:
    def __init__(self) -> None:
        self.closed = False
        self.close_calls = 0

    def close(self) -> None:
        self.close_calls += 1


class FakeLauncher:
    def __init__(self) -> None:
        self.agents: list[FakeAgent] = []
        self.urls: list[str] = []

    def launch(self, url: str) -> FakeAgent:
        agent = FakeAgent()
        self.urls.append(url)
        self.agents.append(agent)
        return agent


class BrokenLauncher:
    def launch(self, url: str):
        raise OSError("no browser available")


class FlakyChannel(MessageChannel):
    def unsubscribe(self, token: int) -> None:
        raise RuntimeError("listener removal failed")


def make_coordinator(*, launcher=None, channel=None, timeout=2.0, grace=0.02, complete=None):
    transitions = []
    completed = []

    def record_complete(user_id, code):
        completed.append((user_id, code))

    coordinator = AuthCoordinator(
        channel=channel or MessageChannel(),
        launcher=launcher or FakeLauncher(),
        authorization_url=lambda state: f"https://auth.example/authorize?state={state}",
        complete=complete or record_complete,
        trusted_origins=frozenset({TRUSTED}),
        timeout=timeout,
        poll_interval=0.01,
        grace=grace,
        on_transition=lambda session, state: transitions.append((session.user_id, state)),
    )
    return coordinator, transitions, completed


async def _started(coordinator, user_id="user-1"):
    session = coordinator.begin(user_id)
    task = asyncio.create_task(coordinator.run(session))
    while coordinator.channel.listener_count == 0 and not task.done():
        await asyncio.sleep(0)
    return session, task


def _assert_disposed(coordinator):
    assert coordinator.channel.listener_count == 0
    assert coordinator.active_poll_tasks == 0


async def test_message_authorizes_and_exchanges_code():
    coordinator, transitions, completed = make_coordinator()
    session, task = await _started(coordinator)

    coordinator.channel.publish(TRUSTED, {"state": session.correlation_token, "code": "abc"})
    result = await task

    assert result.state is AuthState.AUTHORIZED
    assert result.token_stored is True
    assert completed == [("user-1", "abc")]
    assert transitions == [("user-1", AuthState.AUTHORIZED)]
    assert coordinator.launcher.agents[0].close_calls == 1
    assert session.correlation_token in coordinator.launcher.urls[0]
    _assert_disposed(coordinator)


async def test_closed_agent_fails_after_grace_period():
    coordinator, transitions, _ = make_coordinator()
    session, task = await _started(coordinator)

    coordinator.launcher.agents[0].closed = True
    result = await task

    assert result.state is AuthState.FAILED
    assert transitions == [("user-1", AuthState.FAILED)]
    _assert_disposed(coordinator)


async def test_message_during_grace_period_wins():
    coordinator, transitions, _ = make_coordinator(grace=0.2)
    session, task = await _started(coordinator)

    coordinator.launcher.agents[0].closed = True
    await asyncio.sleep(0.05)
    coordinator.channel.publish(TRUSTED, {"state": session.correlation_token, "code": "late"})
    result = await task

    assert result.state is AuthState.AUTHORIZED
    assert transitions == [("user-1", AuthState.AUTHORIZED)]


@pytest.mark.parametrize("seed", range(10))
async def test_message_and_poll_racing_resolve_exactly_once(seed):
    rng = random.Random(seed)
    coordinator, transitions, _ = make_coordinator(grace=0.0)
    session, task = await _started(coordinator)
    agent = coordinator.launcher.agents[0]

    def publish_from_thread():
        coordinator.channel.publish(TRUSTED, {"state": session.correlation_token, "code": "race"})

    publisher = threading.Timer(rng.uniform(0, 0.01), publish_from_thread)
    agent.closed = True
    publisher.start()
    result = await task
    publisher.join()
    publish_from_thread()

    assert len(transitions) == 1
    assert result.state in (AuthState.AUTHORIZED, AuthState.FAILED)
    assert transitions[0][1] is result.state
    _assert_disposed(coordinator)
    assert agent.close_calls == 1


async def test_untrusted_origin_is_ignored():
    coordinator, transitions, completed = make_coordinator()
    session, task = await _started(coordinator)

    coordinator.channel.publish("https://evil.example", {"state": session.correlation_token, "code": "stolen"})
    await asyncio.sleep(0.03)
    assert session.state is AuthState.PENDING
    assert transitions == []

    coordinator.channel.publish(TRUSTED, {"state": session.correlation_token, "code": "good"})
    result = await task
    assert result.state is AuthState.AUTHORIZED
    assert completed == [("user-1", "good")]


async def test_message_for_another_session_is_ignored():
    coordinator, transitions, _ = make_coordinator()
    session, task = await _started(coordinator)

    coordinator.channel.publish(TRUSTED, {"state": "someone-else", "code": "x"})
    await asyncio.sleep(0.03)
    assert session.state is AuthState.PENDING

    coordinator.channel.publish(TRUSTED, {"state": session.correlation_token, "error": "access_denied"})
    result = await task
    assert result.state is AuthState.FAILED
    assert "access_denied" in result.error


async def test_hard_timeout_forces_timed_out_and_cleans_up():
    coordinator, transitions, _ = make_coordinator(timeout=0.1)
    session, task = await _started(coordinator)

    result = await task

    assert result.state is AuthState.TIMED_OUT
    assert transitions == [("user-1", AuthState.TIMED_OUT)]
    assert coordinator.launcher.agents[0].close_calls == 1
    _assert_disposed(coordinator)


async def test_repeated_failed_attempts_do_not_leak_detectors():
    coordinator, transitions, _ = make_coordinator(timeout=0.05)
    for _ in range(5):
        result = await coordinator.start("user-1")
        assert result.state is AuthState.TIMED_OUT
        _assert_disposed(coordinator)

    assert len(transitions) == 5
    assert all(agent.close_calls == 1 for agent in coordinator.launcher.agents)


async def test_only_one_pending_session_per_user():
    coordinator, _, _ = make_coordinator()
    session, task = await _started(coordinator)

    with pytest.raises(AuthorizationInProgress):
        coordinator.begin("user-1")
    other = coordinator.begin("user-2")
    assert other.state is AuthState.PENDING

    coordinator.channel.publish(TRUSTED, {"state": session.correlation_token, "code": "abc"})
    await task
    assert coordinator.status("user-1").state is AuthState.AUTHORIZED
    assert coordinator.begin("user-1").state is AuthState.PENDING


async def test_launch_failure_is_terminal():
    coordinator, transitions, _ = make_coordinator(launcher=BrokenLauncher())
    result = await coordinator.start("user-1")
    assert result.state is AuthState.FAILED
    assert "no browser available" in result.error
    assert transitions == [("user-1", AuthState.FAILED)]
    assert coordinator.channel.listener_count == 0


async def test_cleanup_failure_still_completes_teardown():
    coordinator, transitions, _ = make_coordinator(channel=FlakyChannel(), timeout=0.05)
    result = await coordinator.start("user-1")

    assert result.state is AuthState.TIMED_OUT
    assert coordinator.active_poll_tasks == 0
    assert coordinator.launcher.agents[0].close_calls == 1
    assert coordinator.begin("user-1").state is AuthState.PENDING


async def test_token_exchange_failure_is_reported():
    def failing_exchange(user_id, code):
        raise RuntimeError("invalid_grant")

    coordinator, transitions, _ = make_coordinator(complete=failing_exchange)
    session, task = await _started(coordinator)
    coordinator.channel.publish(TRUSTED, {"state": session.correlation_token, "code": "abc"})
    result = await task

    assert result.state is AuthState.AUTHORIZED
    assert result.token_stored is False
    assert "invalid_grant" in result.error
    assert len(transitions) == 1


async def test_failing_transition_hook_does_not_stall_the_session():
    def broken_hook(session, state):
        raise RuntimeError("audit log unavailable")

    coordinator = AuthCoordinator(
        channel=MessageChannel(),
        launcher=FakeLauncher(),
        authorization_url=lambda state: f"https://auth.example/authorize?state={state}",
        complete=lambda user_id, code: None,
        trusted_origins=frozenset({TRUSTED}),
        timeout=5.0,
        poll_interval=0.01,
        grace=0.02,
        on_transition=broken_hook,
    )
    session, task = await _started(coordinator)

    coordinator.channel.publish(TRUSTED, {"state": session.correlation_token, "code": "abc"})
    result = await asyncio.wait_for(task, 1.0)

    assert result.state is AuthState.AUTHORIZED
    assert result.token_stored is True


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell and SIGTERM")
async def test_closing_a_stubborn_browser_does_not_block_the_loop():
    launcher = BrowserProcessLauncher("sh -c 'trap \"\" TERM; sleep 30'")
    coordinator, _, _ = make_coordinator(launcher=launcher, timeout=0.3)
    gaps = []

    async def ticker():
        last = time.monotonic()
        while True:
            await asyncio.sleep(0.01)
            now = time.monotonic()
            gaps.append(now - last)
            last = now

    ticking = asyncio.create_task(ticker())
    try:
        result = await coordinator.start("user-1")
    finally:
        ticking.cancel()

    assert result.state is AuthState.TIMED_OUT
    assert max(gaps) < 1.0
    _assert_disposed(coordinator)
