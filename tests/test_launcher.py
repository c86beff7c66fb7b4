from __future__ import annotations

import pytest

from mcp_servers.chat_bridge.config import BridgeConfig
from mcp_servers.chat_bridge.errors import LaunchError
from mcp_servers.chat_bridge.launcher import AppLauncher


def _launcher(clock, **overrides) -> AppLauncher:
    config = BridgeConfig(binary_path="/opt/comet/comet", **overrides)
    return AppLauncher(config, clock)


def test_build_launch_command(clock) -> None:
    launcher = _launcher(clock, profile_path="/tmp/profile", extra_flags=["--no-first-run"])
    assert launcher.build_launch_command() == [
        "/opt/comet/comet",
        "--remote-debugging-port=9223",
        "--remote-allow-origins=*",
        "--user-data-dir=/tmp/profile",
        "--no-first-run",
    ]


def test_ensure_running_is_noop_when_reachable(clock, monkeypatch) -> None:
    launcher = _launcher(clock)
    monkeypatch.setattr(launcher, "cdp_ready", lambda timeout=0.4: True)
    monkeypatch.setattr(launcher, "_spawn", lambda: pytest.fail("must not spawn"))

    result = launcher.ensure_running()

    assert result.started is False
    assert result.message == "App already running with debug port 9223"


def test_attach_mode_never_launches(clock, monkeypatch) -> None:
    launcher = _launcher(clock, mode="attach")
    monkeypatch.setattr(launcher, "cdp_ready", lambda timeout=0.4: False)
    monkeypatch.setattr(launcher, "_spawn", lambda: pytest.fail("must not spawn"))

    with pytest.raises(LaunchError) as excinfo:
        launcher.ensure_running()
    assert "--remote-debugging-port=9223" in excinfo.value.remediation


def test_running_without_debug_port_is_restarted(clock, monkeypatch) -> None:
    launcher = _launcher(clock)
    readiness = iter([False, False, True])
    killed: list[bool] = []
    monkeypatch.setattr(launcher, "cdp_ready", lambda timeout=0.4: next(readiness))
    monkeypatch.setattr(launcher, "is_process_running", lambda: True)
    monkeypatch.setattr(launcher, "kill_running", lambda: killed.append(True))
    monkeypatch.setattr(launcher, "_spawn", lambda: ["/opt/comet/comet"])

    result = launcher.ensure_running()

    assert killed == [True]
    assert result.started is True
    assert result.message == "App restarted with debug port 9223"
    assert clock.sleeps == [pytest.approx(0.5)]


def test_busy_port_is_reported(clock, monkeypatch) -> None:
    launcher = _launcher(clock)
    monkeypatch.setattr(launcher, "cdp_ready", lambda timeout=0.4: False)
    monkeypatch.setattr(launcher, "is_process_running", lambda: False)
    monkeypatch.setattr(launcher, "_port_available", lambda: False)

    with pytest.raises(LaunchError, match="in use"):
        launcher.ensure_running()


def test_wait_ready_times_out(clock, monkeypatch) -> None:
    launcher = _launcher(clock)
    launcher.ready_attempts = 3
    monkeypatch.setattr(launcher, "cdp_ready", lambda timeout=0.4: False)
    monkeypatch.setattr(launcher, "is_process_running", lambda: False)
    monkeypatch.setattr(launcher, "_port_available", lambda: True)
    monkeypatch.setattr(launcher, "_spawn", lambda: ["/opt/comet/comet"])

    with pytest.raises(LaunchError, match="Timeout waiting"):
        launcher.ensure_running()
    assert len(clock.sleeps) == 3


def test_spawn_failure_carries_remediation(clock, monkeypatch) -> None:
    import subprocess

    launcher = _launcher(clock)

    def boom(*args, **kwargs):  # noqa: ANN002, ANN003
        raise FileNotFoundError("no such file")

    monkeypatch.setattr(subprocess, "Popen", boom)

    with pytest.raises(LaunchError) as excinfo:
        launcher._spawn()
    assert "Cannot launch /opt/comet/comet" in str(excinfo.value)
    assert excinfo.value.remediation.startswith("Try starting it manually:")


def test_restart_kills_foreign_process_and_relaunches(clock, monkeypatch) -> None:
    launcher = _launcher(clock)
    killed: list[bool] = []
    monkeypatch.setattr(launcher, "cdp_ready", lambda timeout=0.4: True)
    monkeypatch.setattr(launcher, "is_process_running", lambda: True)
    monkeypatch.setattr(launcher, "kill_running", lambda: killed.append(True))
    monkeypatch.setattr(launcher, "_spawn", lambda: ["/opt/comet/comet"])

    result = launcher.restart()

    assert killed == [True]
    assert result.started is True
    assert result.message == "App restarted with debug port 9223"


def test_restart_in_attach_mode_only_checks(clock, monkeypatch) -> None:
    launcher = _launcher(clock, mode="attach")
    monkeypatch.setattr(launcher, "cdp_ready", lambda timeout=0.4: True)
    monkeypatch.setattr(launcher, "_spawn", lambda: pytest.fail("must not spawn"))

    assert launcher.restart().started is False
