"""Authorization handshake with the ranking provider.

One session per attempt:

    Idle --start--> Pending --{message | agent closed}--> Authorized | Failed
                    Pending --timeout--> TimedOut

Two detectors race while the session is Pending: a listener on the
in-process message channel (fed by the OAuth callback endpoint) and a
poll task watching the spawned agent. The first terminal transition wins
under a lock; both detectors are torn down on every exit path.
"""

import asyncio
import logging
import os
import secrets
import shlex
import subprocess
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import urlparse

from dotenv import load_dotenv

import database
import ranking_client

load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

logger = logging.getLogger(__name__)

OAUTH_TIMEOUT_SECONDS = float(os.getenv("OAUTH_TIMEOUT_SECONDS", "300"))
OAUTH_POLL_INTERVAL_SECONDS = float(os.getenv("OAUTH_POLL_INTERVAL_SECONDS", "1.0"))
OAUTH_GRACE_SECONDS = float(os.getenv("OAUTH_GRACE_SECONDS", "0.5"))
OAUTH_BROWSER = os.getenv("OAUTH_BROWSER", "").strip()


def _origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}".lower() if parsed.scheme and parsed.netloc else ""


def callback_origin() -> str:
    """Public origin of the OAuth callback endpoint, taken from the configured redirect URI."""
    return _origin(ranking_client.GSC_REDIRECT_URI)


def default_trusted_origins() -> frozenset[str]:
    origins = {o.strip().rstrip("/").lower() for o in os.getenv("OAUTH_TRUSTED_ORIGINS", "").split(",") if o.strip()}
    redirect_origin = callback_origin()
    if redirect_origin:
        origins.add(redirect_origin)
    return frozenset(origins)


class AuthState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    AUTHORIZED = "authorized"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class AuthorizationInProgress(Exception):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"An authorization attempt is already pending for user {user_id}")
        self.user_id = user_id


@dataclass
class AuthSession:
    user_id: str
    correlation_token: str
    started_at: datetime
    state: AuthState = AuthState.IDLE
    authorization_url: str = ""
    code: str | None = None
    error: str | None = None
    finished_at: datetime | None = None
    token_stored: bool = False


MessageListener = Callable[[str, dict], None]


class MessageChannel:
    """Thread-safe in-process channel carrying completion payloads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[int, MessageListener] = {}
        self._next_id = 0

    def subscribe(self, listener: MessageListener) -> int:
        with self._lock:
            self._next_id += 1
            self._listeners[self._next_id] = listener
            return self._next_id

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._listeners.pop(token, None)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def publish(self, origin: str, payload: dict) -> int:
        """Deliver to every current listener; returns how many were called."""
        with self._lock:
            listeners = list(self._listeners.values())
        for listener in listeners:
            try:
                listener(origin, payload)
            except Exception:
                logger.exception("Message listener failed")
        return len(listeners)


class Agent(Protocol):
    @property
    def closed(self) -> bool: ...

    def close(self) -> None: ...


class ProcessAgent:
    """An external browser process pointed at the authorization URL."""

    def __init__(self, process: subprocess.Popen) -> None:
        self._process = process

    @property
    def closed(self) -> bool:
        return self._process.poll() is not None

    def close(self) -> None:
        if self._process.poll() is None:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()


class DetachedAgent:
    """Used when no browser command is configured; the user opens the URL."""

    closed = False

    def close(self) -> None:
        return None


class BrowserProcessLauncher:
    def __init__(self, command: str = OAUTH_BROWSER) -> None:
        self.command = command

    def launch(self, url: str) -> Agent:
        if not self.command:
            logger.info("No OAUTH_BROWSER configured; waiting for the user to open %s", url)
            return DetachedAgent()
        process = subprocess.Popen(
            [*shlex.split(self.command), url],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        return ProcessAgent(process)


def _store_tokens(user_id: str, code: str) -> None:
    tokens = ranking_client.exchange_code(code)
    ranking_client.store_tokens(user_id, tokens)


class AuthCoordinator:
    def __init__(
        self,
        *,
        channel: MessageChannel | None = None,
        launcher: Any = None,
        authorization_url: Callable[[str], str] = ranking_client.authorization_url,
        complete: Callable[[str, str], None] = _store_tokens,
        trusted_origins: frozenset[str] | None = None,
        timeout: float = OAUTH_TIMEOUT_SECONDS,
        poll_interval: float = OAUTH_POLL_INTERVAL_SECONDS,
        grace: float = OAUTH_GRACE_SECONDS,
        on_transition: Callable[[AuthSession, AuthState], None] | None = None,
    ) -> None:
        self.channel = channel or MessageChannel()
        self.launcher = launcher or BrowserProcessLauncher()
        self._authorization_url = authorization_url
        self._complete = complete
        self.trusted_origins = trusted_origins if trusted_origins is not None else default_trusted_origins()
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.grace = grace
        self._on_transition = on_transition

        self._lock = threading.Lock()
        self._pending: dict[str, AuthSession] = {}
        self._finished: dict[str, AuthSession] = {}
        self._poll_tasks: set[asyncio.Task] = set()
        self._background: set[asyncio.Task] = set()

    @property
    def active_poll_tasks(self) -> int:
        return sum(1 for task in self._poll_tasks if not task.done())

    def status(self, user_id: str) -> AuthSession | None:
        with self._lock:
            return self._pending.get(user_id) or self._finished.get(user_id)

    def begin(self, user_id: str) -> AuthSession:
        """Register a Pending session; at most one per user."""
        token = secrets.token_urlsafe(24)
        url = self._authorization_url(token)
        with self._lock:
            if user_id in self._pending:
                raise AuthorizationInProgress(user_id)
            session = AuthSession(
                user_id=user_id,
                correlation_token=token,
                started_at=database.utcnow(),
                state=AuthState.PENDING,
                authorization_url=url,
            )
            self._pending[user_id] = session
        logger.info("Authorization session started for user %s", user_id)
        return session

    def launch(self, user_id: str) -> AuthSession:
        """Begin a session and drive it in a background task on the running loop."""
        session = self.begin(user_id)
        task = asyncio.get_running_loop().create_task(self.run(session))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return session

    async def start(self, user_id: str) -> AuthSession:
        return await self.run(self.begin(user_id))

    async def run(self, session: AuthSession) -> AuthSession:
        loop = asyncio.get_running_loop()
        done: asyncio.Future = loop.create_future()

        def _wake() -> None:
            if not done.done():
                done.set_result(None)

        def resolve(state: AuthState, *, code: str | None = None, error: str | None = None) -> bool:
            with self._lock:
                if session.state is not AuthState.PENDING:
                    return False
                session.state = state
                session.code = code
                session.error = error
                session.finished_at = database.utcnow()
            logger.info("Authorization session for user %s resolved: %s", session.user_id, state.value)
            loop.call_soon_threadsafe(_wake)
            if self._on_transition is not None:
                try:
                    self._on_transition(session, state)
                except Exception:
                    logger.exception("Authorization transition hook failed for user %s", session.user_id)
            return True

        def on_message(origin: str, payload: dict) -> None:
            if origin.rstrip("/").lower() not in self.trusted_origins:
                logger.warning("Ignoring authorization message from untrusted origin %s", origin)
                return
            if payload.get("state") != session.correlation_token:
                return
            if payload.get("error"):
                resolve(AuthState.FAILED, error=f"Provider returned an error: {payload['error']}")
            elif payload.get("code"):
                resolve(AuthState.AUTHORIZED, code=str(payload["code"]))

        listener = self.channel.subscribe(on_message)
        agent = None
        poll_task = None
        try:
            agent = self.launcher.launch(session.authorization_url)
            poll_task = loop.create_task(self._poll(session, agent, resolve))
            self._poll_tasks.add(poll_task)
            try:
                await asyncio.wait_for(asyncio.shield(done), self.timeout)
            except asyncio.TimeoutError:
                resolve(AuthState.TIMED_OUT, error="Authorization timed out. Please try again.")
        except Exception as e:
            logger.warning("Authorization session for user %s aborted: %s", session.user_id, e)
            resolve(AuthState.FAILED, error=f"Authorization failed: {e}. Please try again.")
        finally:
            await self._teardown(listener, poll_task, agent)
            if poll_task is not None:
                try:
                    await poll_task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.exception("Authorization poll task failed")
                self._poll_tasks.discard(poll_task)
            resolve(AuthState.FAILED, error="Authorization was cancelled.")
            with self._lock:
                if self._pending.get(session.user_id) is session:
                    del self._pending[session.user_id]
                self._finished[session.user_id] = session

        if session.state is AuthState.AUTHORIZED and session.code:
            try:
                await asyncio.to_thread(self._complete, session.user_id, session.code)
                session.token_stored = True
            except Exception as e:
                logger.warning("Token exchange failed for user %s: %s", session.user_id, e)
                session.error = f"Token exchange failed: {e}"
        return session

    async def _poll(self, session: AuthSession, agent: Agent, resolve) -> None:
        while session.state is AuthState.PENDING:
            await asyncio.sleep(self.poll_interval)
            if session.state is not AuthState.PENDING:
                return
            if agent.closed:
                # Give a late completion message a chance to win.
                await asyncio.sleep(self.grace)
                resolve(AuthState.FAILED, error="Authorization window closed before completing.")
                return

    async def _teardown(self, listener: int, poll_task: asyncio.Task | None, agent: Agent | None) -> None:
        """Best effort: each step runs even if an earlier one raised.

        Closing the agent may wait on a child process, so it runs off the loop.
        """
        try:
            self.channel.unsubscribe(listener)
        except Exception:
            logger.exception("Failed to remove authorization message listener")
        if poll_task is not None and not poll_task.done():
            poll_task.cancel()
        if agent is not None:
            try:
                await asyncio.to_thread(agent.close)
            except Exception:
                logger.exception("Failed to close authorization agent")
