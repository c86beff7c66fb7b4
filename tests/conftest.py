from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from mcp_servers.chat_bridge.browser_session import EvalResult
from mcp_servers.chat_bridge.config import BridgeConfig
from mcp_servers.chat_bridge.http_client import HttpClientError
from mcp_servers.chat_bridge.launcher import LaunchResult
from mcp_servers.chat_bridge.state import BridgeContext, Target

APP_URL = "https://app.example/"


class FakeClock:
    """Virtual time: ``sleep`` advances ``now`` instantly."""

    def __init__(self) -> None:
        self.t = 0.0
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.t

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.t += seconds

    def advance(self, seconds: float) -> None:
        self.t += seconds


class FakeSession:
    """Stands in for ``BrowserSession``; page scripts are answered by ``responder``."""

    def __init__(self, target: Target, responder: Callable[[str], Any] | None = None) -> None:
        self.tab_id = target.id
        self.tab_url = target.url
        self.responder = responder
        self.closed = False
        self.enabled: list[str] = []
        self.probes = 0
        self.probe_error: Exception | None = None
        self.evaluations: list[str] = []
        self.navigations: list[str] = []
        self.nav_results: list[Any] = []
        self.keys: list[str] = []
        self.files: list[tuple[str, list[str]]] = []
        self.file_selectors: set[str] = set()
        self.shot = "aGVsbG8="

    def enable_domains(self, *domains: str) -> None:
        self.enabled.extend(domains)

    def set_viewport(self, width: int, height: int) -> str:
        return "window"

    def get_url(self) -> str:
        return self.tab_url

    def evaluate(self, expression: str, *, timeout: float | None = None) -> EvalResult:
        if expression == "1+1":
            self.probes += 1
            if self.probe_error is not None:
                raise self.probe_error
            return EvalResult(value=2)
        self.evaluations.append(expression)
        value = self.responder(expression) if self.responder is not None else None
        if isinstance(value, EvalResult):
            return value
        return EvalResult(value=value)

    def navigate(self, url: str, wait_load: bool = True, timeout: float = 15.0) -> dict[str, Any]:
        self.navigations.append(url)
        if self.nav_results:
            outcome = self.nav_results.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        self.tab_url = url
        return {}

    def press_key(self, key: str) -> None:
        self.keys.append(key)

    def screenshot(self, format: str = "png") -> str:
        return self.shot

    def set_file_input_files(self, selector: str, paths: list[str]) -> bool:
        if selector not in self.file_selectors:
            return False
        self.files.append((selector, list(paths)))
        return True

    def close(self) -> None:
        self.closed = True


class FakeTransport:
    def __init__(self, targets: list[Target] | None = None) -> None:
        self.targets: list[Target] = list(targets or [])
        self.down = False
        self.listings = 0
        self.opened: list[str] = []
        self.closed: list[str] = []
        self.sessions: dict[str, FakeSession] = {}
        self.responder: Callable[[str], Any] | None = None

    def version(self) -> dict[str, Any]:
        if self.down:
            raise HttpClientError("connection refused")
        return {"Browser": "Fake/1.0"}

    def list_targets(self) -> list[Target]:
        if self.down:
            raise HttpClientError("connection refused")
        self.listings += 1
        return list(self.targets)

    def open_session(self, target_id: str, target: Target | None = None) -> FakeSession:
        target = target or next(t for t in self.targets if t.id == target_id)
        session = FakeSession(target, self.responder)
        self.opened.append(target_id)
        self.sessions[target_id] = session
        return session

    def new_target(self, url: str = "about:blank") -> Target:
        target = Target(id=f"new{len(self.targets)}", type="page", url=url)
        self.targets.append(target)
        return target

    def close_target(self, target_id: str) -> bool:
        self.closed.append(target_id)
        self.targets = [t for t in self.targets if t.id != target_id]
        return True


class FakeLauncher:
    def __init__(self, transport: FakeTransport | None = None) -> None:
        self.transport = transport
        self.calls = 0
        self.ready = True
        self.restarts = 0
        self.on_restart: Callable[[], None] | None = None

    def ensure_running(self) -> LaunchResult:
        self.calls += 1
        if self.transport is not None:
            self.transport.down = False
        return LaunchResult([], False, "App already running with debug port 9223")

    def restart(self) -> LaunchResult:
        self.restarts += 1
        if self.on_restart is not None:
            self.on_restart()
        return LaunchResult([], True, "App restarted with debug port 9223")

    def cdp_ready(self, timeout: float = 0.4) -> bool:
        return self.ready


def page(target_id: str, url: str) -> Target:
    return Target(id=target_id, type="page", url=url, title=target_id)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport([page("A", "https://app.example/chat")])


@pytest.fixture
def config() -> BridgeConfig:
    return BridgeConfig(binary_path="comet", app_url=APP_URL)


@pytest.fixture
def ctx(config: BridgeConfig, transport: FakeTransport, clock: FakeClock) -> BridgeContext:
    return BridgeContext(config=config, transport=transport, clock=clock)  # type: ignore[arg-type]
