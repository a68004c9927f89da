"""Integration tests running TunnelSupervisor against a fake cloudflared script."""

import os
import signal
import threading
import time

import pytest

from cloudflared_wrapper.config import SupervisorConfig
from cloudflared_wrapper.events import EventBus, EventKind
from cloudflared_wrapper.supervisor import StartResult, TunnelSupervisor

TUNNEL_URL = "https://my-tunnel-abc123.trycloudflare.com"


@pytest.fixture
def run_supervisor(fake_cloudflared):
    """Factory creating supervisors around a fake cloudflared script"""
    created = []

    def make(body: str, startup_timeout: float = 5.0):
        script = fake_cloudflared(body)
        bus = EventBus()
        supervisor = TunnelSupervisor(
            config=SupervisorConfig(candidate_paths=[script], startup_timeout=startup_timeout),
            events=bus,
        )
        created.append(supervisor)
        return supervisor, bus

    yield make
    for supervisor in created:
        supervisor.close()


@pytest.mark.integration
class TestTunnelSupervisorIntegration:
    """Full discovery-launch-monitor-teardown cycle"""

    def test_url_on_stdout(self, run_supervisor):
        supervisor, _ = run_supervisor(
            f'echo "2024 INF |  {TUNNEL_URL}  |"\n'
            "exec sleep 30"
        )

        result = supervisor.start(8080).result(timeout=5)

        assert result == StartResult(True, TUNNEL_URL)
        assert supervisor.is_running
        assert supervisor.public_url == TUNNEL_URL
        assert supervisor.pid is not None

    def test_url_on_both_streams(self, run_supervisor):
        """cloudflared-like output on stderr and stdout yields one completion"""
        supervisor, _ = run_supervisor(
            f'echo "{TUNNEL_URL}" >&2\n'
            f'echo "{TUNNEL_URL}"\n'
            "exec sleep 30"
        )
        calls = []

        supervisor.start(8080, lambda ok, url: calls.append((ok, url))).result(timeout=5)
        supervisor.dispatcher.flush(timeout=2)

        assert calls == [(True, TUNNEL_URL)]

    def test_external_kill_resets_state(self, run_supervisor):
        supervisor, bus = run_supervisor(f'echo "{TUNNEL_URL}" >&2\nexec sleep 30')
        calls = []
        assert supervisor.start(8080, lambda ok, url: calls.append(ok)).result(timeout=5).success
        supervisor.dispatcher.flush(timeout=2)

        stopped = threading.Event()
        bus.subscribe(
            EventKind.TUNNEL_STATE_CHANGED,
            lambda kind: None if supervisor.is_running else stopped.set(),
        )
        os.kill(supervisor.pid, signal.SIGKILL)

        assert stopped.wait(timeout=5)
        assert supervisor.public_url is None
        assert calls == [True]

    def test_stop_terminates_process(self, run_supervisor):
        supervisor, bus = run_supervisor(f'echo "{TUNNEL_URL}"\nexec sleep 30')
        supervisor.start(8080).result(timeout=5)
        supervisor.dispatcher.flush(timeout=2)
        pid = supervisor.pid
        events = []
        bus.subscribe(EventKind.TUNNEL_STATE_CHANGED, events.append)

        supervisor.stop()
        supervisor.stop()

        assert not supervisor.is_running
        assert events == [EventKind.TUNNEL_STATE_CHANGED]
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            try:
                os.kill(pid, 0)
            except ProcessLookupError:
                break
            time.sleep(0.05)
        else:
            pytest.fail("cloudflared still running after stop()")

    def test_no_url_times_out(self, run_supervisor):
        supervisor, _ = run_supervisor("echo starting\nexec sleep 30", startup_timeout=0.3)

        assert supervisor.start(8080).result(timeout=5) == StartResult(False, None)
        assert supervisor.is_running

    def test_missing_binary(self, tmp_path):
        """No candidate and nothing on PATH"""
        config = SupervisorConfig(
            candidate_paths=[str(tmp_path / "cloudflared")],
            binary_name="cloudflared-definitely-not-installed",
        )
        missing = []
        with TunnelSupervisor(config=config, on_binary_missing=missing.append) as supervisor:
            assert supervisor.start(8080).result(timeout=5) == StartResult(False, None)
            supervisor.dispatcher.flush(timeout=2)

        assert len(missing) == 1
        assert "brew install cloudflared" in missing[0]
