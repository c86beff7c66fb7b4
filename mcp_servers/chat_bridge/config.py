from __future__ import annotations

import os
import urllib.parse
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_APP_URL = "https://www.perplexity.ai/"
DEFAULT_CDP_PORT = 9223

DEFAULT_BINARY_CANDIDATES: list[str] = [
    # The assistant browser itself comes first.
    "/Applications/Comet.app/Contents/MacOS/Comet",
    str(Path(os.environ.get("LOCALAPPDATA", "")) / "Perplexity" / "Comet" / "Application" / "comet.exe"),
    str(Path(os.environ.get("APPDATA", "")) / "Perplexity" / "Comet" / "Application" / "comet.exe"),
    "C:\\Program Files\\Perplexity\\Comet\\Application\\comet.exe",
    "C:\\Program Files (x86)\\Perplexity\\Comet\\Application\\comet.exe",
    # Chromium-family fallbacks (useful for driving the web app in a plain browser).
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
]


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def domain_of(url: str) -> str:
    """Registrable-ish host for the app URL (leading ``www.`` stripped)."""
    host = (urllib.parse.urlparse(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name) or default)
    except ValueError:
        return default


def _parse_viewport(raw: str | None) -> tuple[int, int]:
    try:
        w, h = (int(part.strip()) for part in (raw or "").split(",", 1))
    except ValueError:
        return 1440, 900
    if w <= 0 or h <= 0:
        return 1440, 900
    return w, h


@dataclass(frozen=True)
class RetryPolicy:
    """Reconnect/backoff constants for ``ConnectionManager.with_retry``."""

    max_attempts: int = 10
    backoff_base: float = 0.3
    backoff_factor: float = 1.3
    backoff_cap: float = 2.0
    reconnect_wait_interval: float = 0.3
    reconnect_wait_max_polls: int = 20
    health_ttl: float = 2.0
    probe_timeout: float = 3.0
    cold_start_settle: float = 1.5
    relaunch_settle: float = 2.0

    def backoff(self, attempt: int) -> float:
        """Delay before reconnect attempt ``attempt`` (1-based)."""
        n = max(1, int(attempt))
        return min(self.backoff_base * self.backoff_factor ** (n - 1), self.backoff_cap)


@dataclass(frozen=True)
class PollPolicy:
    """Timing and thresholds for the ask/poll loop and completion detection."""

    interval: float = 1.5
    idle_timeout: float = 6.0
    max_consecutive_errors: int = 5
    stability_threshold: int = 2
    substantial_chars: int = 50
    idle_response_chars: int = 100
    response_cap: int = 8000


@dataclass
class BridgeConfig:
    binary_path: str
    profile_path: str = ""
    cdp_port: int = DEFAULT_CDP_PORT
    cdp_host: str = "127.0.0.1"
    mode: str = "launch"
    app_url: str = DEFAULT_APP_URL
    app_domain: str = ""
    extra_flags: list[str] = field(default_factory=list)
    http_timeout: float = 5.0
    cdp_timeout: float = 10.0
    ask_timeout: float = 120.0
    viewport: tuple[int, int] = (1440, 900)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    poll: PollPolicy = field(default_factory=PollPolicy)

    def __post_init__(self) -> None:
        if not self.app_domain:
            self.app_domain = domain_of(self.app_url)

    @staticmethod
    def normalize_mode(raw: str | None) -> str:
        mode = (raw or "").strip().lower()
        if mode in {"attach", "connect", "external"}:
            return "attach"
        return "launch"

    @classmethod
    def detect_binary(cls) -> str:
        env_path = os.environ.get("MCP_BRIDGE_BINARY")
        if env_path:
            return expand_path(env_path)
        for candidate in DEFAULT_BINARY_CANDIDATES:
            path = Path(candidate)
            if path.is_file() and os.access(str(path), os.X_OK):
                return str(path)
        # Last resort: rely on PATH lookup
        return "comet"

    @classmethod
    def from_env(cls) -> BridgeConfig:
        profile_raw = os.environ.get("MCP_BRIDGE_PROFILE", "")
        flags_raw = os.environ.get("MCP_BRIDGE_FLAGS", "")
        app_url = os.environ.get("MCP_BRIDGE_APP_URL") or DEFAULT_APP_URL
        poll = PollPolicy(interval=_env_float("MCP_BRIDGE_POLL_INTERVAL", 1.5))
        return cls(
            binary_path=cls.detect_binary(),
            profile_path=expand_path(profile_raw) if profile_raw.strip() else "",
            cdp_port=int(os.environ.get("MCP_BRIDGE_PORT", str(DEFAULT_CDP_PORT))),
            cdp_host=os.environ.get("MCP_BRIDGE_HOST", "127.0.0.1"),
            mode=cls.normalize_mode(os.environ.get("MCP_BRIDGE_MODE")),
            app_url=app_url,
            app_domain=(os.environ.get("MCP_BRIDGE_APP_DOMAIN") or "").strip().lower(),
            extra_flags=[flag.strip() for flag in flags_raw.split(",") if flag.strip()],
            http_timeout=_env_float("MCP_BRIDGE_HTTP_TIMEOUT", 5.0),
            cdp_timeout=_env_float("MCP_BRIDGE_CDP_TIMEOUT", 10.0),
            ask_timeout=_env_float("MCP_BRIDGE_ASK_TIMEOUT", 120.0),
            viewport=_parse_viewport(os.environ.get("MCP_BRIDGE_VIEWPORT")),
            poll=poll,
        )

    @property
    def http_base(self) -> str:
        return f"http://{self.cdp_host}:{self.cdp_port}"

    def is_app_url(self, url: str) -> bool:
        """True if ``url`` belongs to the primary chat application."""
        host = (urllib.parse.urlparse(url or "").hostname or "").lower()
        if not host or not self.app_domain:
            return False
        return host == self.app_domain or host.endswith("." + self.app_domain)
