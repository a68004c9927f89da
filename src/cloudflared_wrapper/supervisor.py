"""Lifecycle supervision of a cloudflared quick tunnel."""

import threading
from collections.abc import Callable
from concurrent.futures import Future
from types import TracebackType
from typing import Literal, NamedTuple

from pydantic import BaseModel, ConfigDict

from .config import INSTALL_INSTRUCTIONS, SupervisorConfig
from .dispatch import ScheduledCall, SerialDispatcher
from .events import EventBus, EventKind
from .exceptions import (
    BinaryNotFoundError,
    CloudflaredWrapperError,
    DiscoveryTimeoutError,
    LaunchError,
    UnexpectedTerminationError,
)
from .logging import get_logger, get_output_logger
from .process import ProcessLauncher, TunnelProcessHandle
from .resolver import ExecutableResolver
from .scanner import OutcomeClaim, decode_chunk, find_tunnel_url
from .utils import validate_port

logger = get_logger(__name__)

Completion = Callable[[bool, str | None], None]

# OutcomeClaim owners besides the stream names
TIMEOUT_OWNER = "timeout"
CLOSE_OWNER = "close"


class StartResult(NamedTuple):
    """Outcome of a start attempt"""
    success: bool
    url: str | None


class TunnelState(BaseModel):
    """Immutable snapshot of the supervisor's observable state"""

    model_config = ConfigDict(frozen=True)

    is_running: bool = False
    public_url: str | None = None


class _TunnelSession:
    """Per-start bookkeeping; only touched while holding the supervisor lock"""

    def __init__(self, port: int, completion: Completion | None, future: Future[StartResult]):
        self.port = port
        self.completion = completion
        self.future = future
        self.claim = OutcomeClaim()
        self.handle: TunnelProcessHandle | None = None
        self.public_url: str | None = None
        self.timeout_call: ScheduledCall | None = None


class TunnelSupervisor:
    """Starts, watches and stops a single cloudflared quick tunnel.

    Outcomes of a start attempt (URL found on stdout or stderr, or startup
    timeout) are funnelled through one OutcomeClaim so the caller's completion
    runs exactly once. Completions, state changes caused by the process and
    event notifications all happen on the supervisor's SerialDispatcher.
    """

    def __init__(
        self,
        config: SupervisorConfig | None = None,
        events: EventBus | None = None,
        dispatcher: SerialDispatcher | None = None,
        resolver: ExecutableResolver | None = None,
        on_binary_missing: Callable[[str], None] | None = None,
    ):
        """Initialize the supervisor.

        Args:
            config: Lookup, launch and timeout settings
            events: Bus receiving TUNNEL_STATE_CHANGED (a private one if None)
            dispatcher: Serialized context for callbacks (owned if None)
            resolver: Executable resolver (built from config if None)
            on_binary_missing: Called with install instructions when
                cloudflared cannot be found
        """
        self.config = config or SupervisorConfig()
        self.events = events or EventBus()
        self._owns_dispatcher = dispatcher is None
        self.dispatcher = dispatcher or SerialDispatcher()
        self.resolver = resolver or ExecutableResolver(self.config)
        self.on_binary_missing = on_binary_missing
        self._url_pattern = self.config.url_pattern()
        self._lock = threading.RLock()
        self._session: _TunnelSession | None = None
        self._latest_session: _TunnelSession | None = None
        self._last_error: CloudflaredWrapperError | None = None

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._session is not None

    @property
    def public_url(self) -> str | None:
        with self._lock:
            return self._session.public_url if self._session else None

    @property
    def state(self) -> TunnelState:
        with self._lock:
            if self._session is None:
                return TunnelState()
            return TunnelState(is_running=True, public_url=self._session.public_url)

    @property
    def pid(self) -> int | None:
        with self._lock:
            if self._session and self._session.handle:
                return self._session.handle.pid
            return None

    @property
    def last_error(self) -> CloudflaredWrapperError | None:
        """Why the most recent start attempt failed, if it did"""
        with self._lock:
            return self._last_error

    def start(self, port: int, completion: Completion | None = None) -> Future[StartResult]:
        """Start a quick tunnel to ``http://localhost:<port>``.

        Calling this while a tunnel is running resolves immediately with the
        current state instead of launching a second process.

        Args:
            port: Local port to expose
            completion: Optional callback receiving ``(success, url)`` once

        Returns:
            Future resolved exactly once with a StartResult

        Raises:
            ValueError: If port is out of range
        """
        validate_port(port)
        future: Future[StartResult] = Future()

        with self._lock:
            if self._session is not None:
                logger.debug("Tunnel already running", url=self._session.public_url)
                immediate = StartResult(True, self._session.public_url)
            else:
                immediate = self._launch(port, completion, future)

        if immediate is not None:
            self._deliver(completion, future, immediate)
        return future

    def stop(self) -> None:
        """Stop the tunnel. Does nothing when no tunnel is running.

        State is cleared and TUNNEL_STATE_CHANGED is published before this
        returns, on the calling thread rather than the dispatcher.
        """
        self._stop_session()

    def close(self) -> None:
        """Stop the tunnel, wait for cloudflared to exit and release the dispatcher.

        Safe to call from a completion or subscriber running on the dispatcher;
        the dispatcher is then shut down without joining its own thread.
        """
        with self._lock:
            pending = self._latest_session
        handle = self._stop_session()
        if handle is not None and handle.wait(self.config.terminate_timeout) is None:
            logger.warning(
                "Process did not terminate gracefully", timeout=self.config.terminate_timeout
            )
            handle.kill()

        if pending is not None:
            if pending.timeout_call is not None:
                pending.timeout_call.cancel()
            if pending.claim.claim(CLOSE_OWNER):
                self._complete(pending, StartResult(False, None))

        if self._owns_dispatcher:
            self.dispatcher.shutdown()

    def _launch(
        self, port: int, completion: Completion | None, future: Future[StartResult]
    ) -> StartResult | None:
        """Resolve and spawn cloudflared. Returns a result to deliver now, or None."""
        try:
            binary_path = self.resolver.resolve()
        except BinaryNotFoundError as e:
            logger.warning("cloudflared is not installed", error=str(e))
            self._last_error = e
            hook = self.on_binary_missing
            if hook is not None:
                self.dispatcher.submit(lambda: hook(INSTALL_INSTRUCTIONS))
            return StartResult(False, None)

        session = _TunnelSession(port, completion, future)
        launcher = ProcessLauncher(binary_path, self.config)
        try:
            session.handle = launcher.launch(
                port,
                on_stdout=lambda data: self._on_output(session, "stdout", data),
                on_stderr=lambda data: self._on_output(session, "stderr", data),
                on_termination=lambda code: self._on_termination(session, code),
            )
        except LaunchError as e:
            self._last_error = e
            return StartResult(False, None)

        self._session = session
        self._latest_session = session
        self._last_error = None
        session.timeout_call = self.dispatcher.call_later(
            self.config.startup_timeout, lambda: self._on_startup_timeout(session)
        )
        return None

    def _stop_session(self) -> TunnelProcessHandle | None:
        with self._lock:
            session = self._session
            if session is None:
                logger.debug("Tunnel not running, nothing to stop")
                return None
            self._session = None
            handle = session.handle
            session.handle = None
            session.public_url = None

        if handle is not None:
            handle.detach_callbacks()
            handle.terminate()
        logger.info("Tunnel stopped", port=session.port)
        self.events.publish(EventKind.TUNNEL_STATE_CHANGED)
        return handle

    # Reader threads

    def _on_output(self, session: _TunnelSession, stream: str, data: bytes) -> None:
        text = decode_chunk(data)
        if text is None:
            return
        get_output_logger(stream).debug(
            "cloudflared output", port=session.port, output=text.rstrip()
        )

        url = find_tunnel_url(text, self._url_pattern)
        if url is None:
            return
        won = session.claim.claim(stream)
        self.dispatcher.submit(lambda: self._handle_url(session, url, won))

    def _on_termination(self, session: _TunnelSession, returncode: int) -> None:
        self.dispatcher.submit(lambda: self._handle_termination(session, returncode))

    # Dispatcher thread

    def _handle_url(self, session: _TunnelSession, url: str, won: bool) -> None:
        with self._lock:
            current = self._session is session
            # a late URL after a timeout failure still becomes visible
            late = (
                not won
                and session.claim.owner == TIMEOUT_OWNER
                and session.public_url is None
            )
            changed = current and (won or late)
            if changed:
                session.public_url = url

        if won:
            if current:
                logger.info("Tunnel URL discovered", url=url, port=session.port)
                self._complete(session, StartResult(True, url))
            else:
                logger.info("Tunnel stopped before its URL was reported", url=url)
                self._complete(session, StartResult(False, None))
        elif changed:
            logger.info("Tunnel URL discovered after startup timeout", url=url)

        if changed:
            self.events.publish(EventKind.TUNNEL_STATE_CHANGED)

    def _handle_termination(self, session: _TunnelSession, returncode: int) -> None:
        with self._lock:
            if self._session is not session:
                return
            self._session = None
            if session.public_url is None:
                self._last_error = UnexpectedTerminationError(returncode)
            session.public_url = None
            session.handle = None

        logger.warning("cloudflared exited", returncode=returncode, port=session.port)
        self.events.publish(EventKind.TUNNEL_STATE_CHANGED)

    def _on_startup_timeout(self, session: _TunnelSession) -> None:
        if not session.claim.claim(TIMEOUT_OWNER):
            return
        logger.warning(
            "Timed out waiting for tunnel URL", timeout=self.config.startup_timeout
        )
        with self._lock:
            if self._session is session:
                self._last_error = DiscoveryTimeoutError(
                    f"No tunnel URL within {self.config.startup_timeout:g}s"
                )
        self._complete(session, StartResult(False, None))

    def _complete(self, session: _TunnelSession, result: StartResult) -> None:
        self._deliver(session.completion, session.future, result)

    @staticmethod
    def _deliver(
        completion: Completion | None, future: Future[StartResult], result: StartResult
    ) -> None:
        if completion is not None:
            try:
                completion(result.success, result.url)
            except Exception as e:
                logger.error("Start completion failed", error=str(e), exc_info=True)
        future.set_result(result)

    def __enter__(self) -> "TunnelSupervisor":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        """Context manager exit - stop the tunnel and release resources"""
        try:
            self.close()
        except Exception as e:
            logger.error("Error during context exit", error=str(e))
        return False
