"""Process management for the cloudflared binary."""

import subprocess
import threading
from collections.abc import Callable
from typing import IO

from .config import SupervisorConfig
from .exceptions import LaunchError
from .logging import get_logger

logger = get_logger(__name__)

ChunkCallback = Callable[[bytes], None]
TerminationCallback = Callable[[int], None]


class TunnelProcessHandle:
    """Owning handle to a running cloudflared process and its stream readers.

    Each output stream is drained by its own daemon thread which hands every
    chunk to the registered callback as soon as it is read. A watcher thread
    waits for the process to exit, detaches the stream callbacks and then calls
    the termination callback exactly once.
    """

    def __init__(
        self,
        process: subprocess.Popen[bytes],
        on_stdout: ChunkCallback,
        on_stderr: ChunkCallback,
        on_termination: TerminationCallback,
        chunk_size: int = 4096,
    ):
        self._process = process
        self._chunk_size = chunk_size
        self._lock = threading.Lock()
        self._callbacks: dict[str, ChunkCallback | None] = {
            "stdout": on_stdout,
            "stderr": on_stderr,
        }
        self._on_termination: TerminationCallback | None = on_termination
        self._threads: list[threading.Thread] = []

    def start_monitoring(self) -> None:
        """Start the stream reader and exit watcher threads"""
        for name, stream in (("stdout", self._process.stdout), ("stderr", self._process.stderr)):
            if stream is None:
                continue
            self._spawn_thread(f"cloudflared-{name}-{self.pid}", self._pump, stream, name)
        self._spawn_thread(f"cloudflared-wait-{self.pid}", self._watch)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.poll()

    def is_alive(self) -> bool:
        """Check if process is currently running"""
        return self._process.poll() is None

    def detach_callbacks(self) -> None:
        """Stop delivering output and termination events.

        Readers keep draining the pipes until EOF so the child never blocks on
        a full pipe, but their data is discarded from now on.
        """
        with self._lock:
            self._callbacks = {"stdout": None, "stderr": None}
            self._on_termination = None

    def terminate(self) -> None:
        """Ask cloudflared to exit (SIGTERM). Never force-kills."""
        if not self.is_alive():
            return
        logger.info("Terminating cloudflared process", pid=self.pid)
        try:
            self._process.terminate()
        except ProcessLookupError:
            logger.debug("Process already gone", pid=self.pid)

    def kill(self) -> None:
        if self.is_alive():
            logger.warning("Force killing cloudflared process", pid=self.pid)
            try:
                self._process.kill()
            except ProcessLookupError:
                pass

    def wait(self, timeout: float | None = None) -> int | None:
        """Wait for exit. Returns the return code, or None on timeout."""
        try:
            return self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def _spawn_thread(self, name: str, target: Callable[..., None], *args: object) -> None:
        thread = threading.Thread(target=target, args=args, name=name, daemon=True)
        self._threads.append(thread)
        thread.start()

    def _pump(self, stream: IO[bytes], name: str) -> None:
        try:
            while True:
                data = stream.read1(self._chunk_size)  # type: ignore[attr-defined]
                if not data:
                    break
                with self._lock:
                    callback = self._callbacks[name]
                if callback is None:
                    continue
                try:
                    callback(data)
                except Exception as e:
                    logger.error("Output callback failed", stream=name, error=str(e), exc_info=True)
        except (OSError, ValueError) as e:
            logger.debug("Stream closed", stream=name, error=str(e))
        finally:
            try:
                stream.close()
            except OSError:
                pass

    def _watch(self) -> None:
        returncode = self._process.wait()
        logger.info("cloudflared process exited", pid=self.pid, returncode=returncode)
        with self._lock:
            on_termination = self._on_termination
            self._callbacks = {"stdout": None, "stderr": None}
            self._on_termination = None
        if on_termination is not None:
            try:
                on_termination(returncode)
            except Exception as e:
                logger.error("Termination callback failed", error=str(e), exc_info=True)


class ProcessLauncher:
    """Spawns cloudflared quick tunnels"""

    def __init__(self, binary_path: str, config: SupervisorConfig | None = None):
        self.binary_path = binary_path
        self.config = config or SupervisorConfig()

    def launch(
        self,
        port: int,
        on_stdout: ChunkCallback,
        on_stderr: ChunkCallback,
        on_termination: TerminationCallback,
    ) -> TunnelProcessHandle:
        """Start ``cloudflared tunnel --url http://localhost:<port>``.

        Args:
            port: Local port to expose
            on_stdout: Called with each chunk read from standard output
            on_stderr: Called with each chunk read from standard error
            on_termination: Called once with the return code when the process exits

        Returns:
            Handle owning the process and its reader threads

        Raises:
            LaunchError: If the process cannot be spawned
        """
        command = [self.binary_path, *self.config.launch_arguments(port)]
        logger.info("Starting cloudflared process", binary_path=self.binary_path, port=port)
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            logger.error("Failed to start cloudflared process", error=str(e))
            raise LaunchError(f"Failed to start cloudflared process: {e}") from e

        handle = TunnelProcessHandle(
            process,
            on_stdout=on_stdout,
            on_stderr=on_stderr,
            on_termination=on_termination,
            chunk_size=self.config.read_chunk_size,
        )
        handle.start_monitoring()
        logger.info("cloudflared process started", pid=process.pid)
        return handle
