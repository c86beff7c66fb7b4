from __future__ import annotations

import contextlib
import logging
import os
import socket
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

from .clock import Clock, SystemClock
from .config import BridgeConfig
from .errors import LaunchError
from .http_client import http_ok

logger = logging.getLogger("mcp.chat_bridge.launcher")


@dataclass
class LaunchResult:
    command: list[str]
    started: bool
    message: str


class AppLauncher:
    """Starts the host app with its remote debugging port open.

    ``ensure_running`` is idempotent: a reachable endpoint is a no-op. A host
    process that is running without the debug port is killed and relaunched
    with the flag.
    """

    ready_attempts = 40
    ready_interval = 0.5

    def __init__(self, config: BridgeConfig, clock: Clock | None = None) -> None:
        self.config = config
        self.clock = clock or SystemClock()
        self.process: subprocess.Popen | None = None

    def cdp_ready(self, timeout: float = 0.4) -> bool:
        """Return True if the CDP HTTP endpoint responds."""
        return http_ok(f"{self.config.http_base}/json/version", timeout=timeout)

    def build_launch_command(self) -> list[str]:
        flags = [f"--remote-debugging-port={self.config.cdp_port}", "--remote-allow-origins=*"]
        if self.config.profile_path:
            flags.append(f"--user-data-dir={self.config.profile_path}")
        return [self.config.binary_path, *flags, *self.config.extra_flags]

    def remediation(self) -> str:
        cmd = " ".join(f'"{part}"' if " " in part else part for part in self.build_launch_command())
        return f"Try starting it manually: {cmd}"

    def _port_available(self) -> bool:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(0.2)
            try:
                return sock.connect_ex((self.config.cdp_host, self.config.cdp_port)) != 0
            except OSError:
                return False

    def _process_name(self) -> str:
        return Path(self.config.binary_path).name or "comet"

    def is_process_running(self) -> bool:
        """Best-effort check for a host process started outside this launcher."""
        name = self._process_name()
        try:
            if sys.platform == "win32":
                out = subprocess.run(
                    ["tasklist", "/FI", f"IMAGENAME eq {name}", "/NH"],
                    capture_output=True,
                    text=True,
                    timeout=5,
                )
                return name.lower() in out.stdout.lower()
            out = subprocess.run(["pgrep", "-f", self.config.binary_path], capture_output=True, timeout=5)
            return out.returncode == 0
        except (OSError, subprocess.SubprocessError):
            return False

    def kill_running(self) -> None:
        """Kill any host process (needed when it runs without the debug port)."""
        name = self._process_name()
        cmd = ["taskkill", "/F", "/IM", name] if sys.platform == "win32" else ["pkill", "-f", self.config.binary_path]
        logger.info("Killing host process without debug port: %s", " ".join(cmd))
        with contextlib.suppress(OSError, subprocess.SubprocessError):
            subprocess.run(cmd, capture_output=True, timeout=5)
        self.clock.sleep(1.0)

    def stop(self) -> bool:
        """Stop the launcher-owned process, if any."""
        proc = self.process
        if proc is None:
            return False
        self.process = None
        if proc.poll() is not None:
            return True
        with contextlib.suppress(OSError):
            proc.terminate()
        try:
            proc.wait(timeout=2.0)
        except subprocess.TimeoutExpired:
            with contextlib.suppress(OSError):
                proc.kill()
        return True

    def _spawn(self) -> list[str]:
        cmd = self.build_launch_command()
        popen_kwargs: dict[str, object] = {
            "stdout": subprocess.DEVNULL,
            "stderr": subprocess.DEVNULL,
            "stdin": subprocess.DEVNULL,
        }
        if os.name == "posix":
            popen_kwargs["start_new_session"] = True
        try:
            self.process = subprocess.Popen(cmd, **popen_kwargs)  # type: ignore[arg-type]
        except OSError as exc:
            raise LaunchError(f"Cannot launch {self.config.binary_path}: {exc}", self.remediation()) from exc
        logger.info("Launched host app: %s", " ".join(cmd))
        return cmd

    def _wait_ready(self, cmd: list[str], message: str) -> LaunchResult:
        for _ in range(self.ready_attempts):
            if self.cdp_ready():
                return LaunchResult(cmd, True, message)
            self.clock.sleep(self.ready_interval)
        raise LaunchError(f"Timeout waiting for the app on port {self.config.cdp_port}", self.remediation())

    def ensure_running(self) -> LaunchResult:
        if self.cdp_ready():
            return LaunchResult([], False, f"App already running with debug port {self.config.cdp_port}")

        if self.config.mode == "attach":
            raise LaunchError(
                f"Attach mode: nothing is listening on CDP port {self.config.cdp_port}",
                self.remediation(),
            )

        relaunch = False
        if self.is_process_running():
            # Running without the debug port: it must be restarted with the flag.
            self.kill_running()
            relaunch = True
        elif not self._port_available():
            raise LaunchError(
                f"Port {self.config.cdp_port} is in use but CDP is not reachable",
                "Free the port or set MCP_BRIDGE_PORT to another value.",
            )

        cmd = self._spawn()
        message = "restarted" if relaunch else "started"
        return self._wait_ready(cmd, f"App {message} with debug port {self.config.cdp_port}")

    def restart(self) -> LaunchResult:
        """Hard recovery: stop the owned process (or kill a foreign one) and relaunch."""
        if self.config.mode == "attach":
            return self.ensure_running()
        if not self.stop() and self.is_process_running():
            self.kill_running()
        cmd = self._spawn()
        return self._wait_ready(cmd, f"App restarted with debug port {self.config.cdp_port}")


__all__ = ["AppLauncher", "LaunchResult"]
