"""Shared pytest fixtures for cloudflared wrapper tests."""

import stat
from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from cloudflared_wrapper.dispatch import SerialDispatcher
from cloudflared_wrapper.events import EventBus, EventKind
from cloudflared_wrapper.process import TunnelProcessHandle
from cloudflared_wrapper.resolver import ExecutableResolver


@pytest.fixture
def dispatcher():
    """Serialized dispatcher shut down after the test"""
    d = SerialDispatcher(name="test-dispatch")
    yield d
    d.shutdown()


@pytest.fixture
def event_log():
    """List receiving every TUNNEL_STATE_CHANGED event"""
    return []


@pytest.fixture
def events(event_log):
    """EventBus whose tunnel events are recorded in event_log"""
    bus = EventBus()
    bus.subscribe(EventKind.TUNNEL_STATE_CHANGED, event_log.append)
    return bus


@pytest.fixture
def mock_resolver():
    """Resolver that always finds cloudflared"""
    resolver = Mock(spec=ExecutableResolver)
    resolver.resolve.return_value = "/usr/local/bin/cloudflared"
    return resolver


@pytest.fixture
def launched(monkeypatch):
    """Replace ProcessLauncher in the supervisor and capture its callbacks.

    Returns:
        SimpleNamespace with ``launcher_cls``, ``handle`` and ``callbacks``
        (the callbacks of the most recent launch, keyed by name)
    """
    handle = Mock(spec=TunnelProcessHandle)
    handle.pid = 4242
    handle.wait.return_value = 0
    callbacks = {}

    def launch(port, on_stdout, on_stderr, on_termination):
        callbacks.update(
            port=port, stdout=on_stdout, stderr=on_stderr, termination=on_termination
        )
        return handle

    launcher_cls = Mock()
    launcher_cls.return_value.launch.side_effect = launch
    monkeypatch.setattr("cloudflared_wrapper.supervisor.ProcessLauncher", launcher_cls)
    return SimpleNamespace(launcher_cls=launcher_cls, handle=handle, callbacks=callbacks)


@pytest.fixture
def fake_cloudflared(tmp_path):
    """Factory writing an executable /bin/sh script that stands in for cloudflared.

    Returns:
        Callable taking the script body and returning its path as str
    """

    def make(body: str, name: str = "cloudflared") -> str:
        script = tmp_path / name
        script.write_text(f"#!/bin/sh\n{body}\n")
        script.chmod(script.stat().st_mode | stat.S_IEXEC | stat.S_IXGRP | stat.S_IXOTH)
        return str(script)

    return make


@pytest.fixture
def mock_process():
    """Create a mock Popen object for testing.

    Returns:
        Mock: Mock process with common attributes
    """
    process = Mock()
    process.pid = 12345
    process.poll.return_value = None
    process.terminate.return_value = None
    process.kill.return_value = None
    process.wait.return_value = 0
    process.stdout = Mock()
    process.stderr = Mock()
    return process
