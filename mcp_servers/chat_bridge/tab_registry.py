"""Registry of the external tabs the app opened while working.

The registry lives on ``BridgeContext.tabs`` and only ever holds external
tabs: system pages, blank tabs and the app's own pages are filtered out on
every refresh.
"""

from __future__ import annotations

import logging
import urllib.parse
from typing import Any

from .connection import SIDECAR_MARKER, ConnectionManager
from .errors import CloseGuardViolation
from .state import BridgeContext, TabContext, TabPurpose, Target

logger = logging.getLogger("mcp.chat_bridge.tabs")

SYSTEM_SCHEMES = ("chrome://", "chrome-extension://", "devtools://", "edge://", "about:")
OVERLAY_MARKER = "overlay"
SUMMARY_URL_CHARS = 80
NEW_TAB_SETTLE = 1.5


def extract_domain(url: str) -> str:
    try:
        host = urllib.parse.urlparse(url).hostname
    except ValueError:
        return "unknown"
    return host or "unknown"


def is_internal(url: str, app_domain: str) -> bool:
    """System pages, blank tabs and the app's own UI are not browsing tabs."""
    if not url or url.startswith(SYSTEM_SCHEMES):
        return True
    host = extract_domain(url).lower()
    if host == "unknown":
        return False
    app = app_domain.lower()
    return bool(app) and (host == app or host.endswith("." + app))


def infer_purpose(url: str, app_domain: str) -> TabPurpose:
    if is_internal(url, app_domain):
        return TabPurpose.UNCLASSIFIED
    return TabPurpose.AUTONOMOUS_BROWSING


class TabRegistry:
    def __init__(self, ctx: BridgeContext, connection: ConnectionManager) -> None:
        self.ctx = ctx
        self.connection = connection

    @property
    def app_domain(self) -> str:
        return self.ctx.config.app_domain

    def classify(self, url: str) -> bool:
        """True if ``url`` is internal."""
        return is_internal(url, self.app_domain)

    def refresh(self) -> list[TabContext]:
        """Sync the registry with a fresh listing; returns the external tabs."""
        tabs = self.ctx.tabs
        now = self.ctx.clock.now()
        seen: set[str] = set()

        for target in self.connection.list_targets():
            if not target.is_page or self.classify(target.url):
                continue
            seen.add(target.id)
            domain = extract_domain(target.url)
            entry = tabs.get(target.id)
            if entry is None:
                tabs[target.id] = TabContext(
                    id=target.id,
                    url=target.url,
                    title=target.title,
                    purpose=infer_purpose(target.url, self.app_domain),
                    domain=domain,
                    last_activity=now,
                )
                continue
            if entry.domain != domain:
                entry.purpose = infer_purpose(target.url, self.app_domain)
            entry.url = target.url
            entry.title = target.title
            entry.domain = domain
            entry.last_activity = now

        for tab_id in [tid for tid in tabs if tid not in seen]:
            logger.debug("Evicting closed tab %s", tab_id)
            del tabs[tab_id]
        return list(tabs.values())

    # ─────────────────────────────────────────────────────────────────────────
    # Lookup
    # ─────────────────────────────────────────────────────────────────────────

    def find_by_domain(self, domain: str) -> TabContext | None:
        self.refresh()
        needle = domain.lower()
        for tab in self.ctx.tabs.values():
            have = tab.domain.lower()
            if needle in have or have in needle:
                return tab
        return None

    def find_by_url_substring(self, pattern: str) -> TabContext | None:
        self.refresh()
        return next((tab for tab in self.ctx.tabs.values() if pattern in tab.url), None)

    def find_by_purpose(self, purpose: TabPurpose | str) -> list[TabContext]:
        wanted = TabPurpose.parse(purpose)
        self.refresh()
        return [tab for tab in self.ctx.tabs.values() if tab.purpose is wanted]

    # ─────────────────────────────────────────────────────────────────────────
    # Annotation
    # ─────────────────────────────────────────────────────────────────────────

    def set_purpose(self, tab_id: str, purpose: TabPurpose | str, task_id: str | None = None) -> bool:
        tab = self.ctx.tabs.get(tab_id)
        if tab is None:
            return False
        tab.purpose = TabPurpose.parse(purpose)
        if task_id:
            tab.task_id = task_id
        tab.last_activity = self.ctx.clock.now()
        return True

    def set_content_summary(self, tab_id: str, summary: str) -> bool:
        tab = self.ctx.tabs.get(tab_id)
        if tab is None:
            return False
        tab.content_summary = summary
        tab.last_activity = self.ctx.clock.now()
        return True

    # ─────────────────────────────────────────────────────────────────────────
    # Close guard
    # ─────────────────────────────────────────────────────────────────────────

    def external_count(self) -> int:
        return len(self.ctx.tabs)

    def check_close_allowed(self) -> None:
        """Raise ``CloseGuardViolation`` unless more than one external tab is open.

        Callers refresh first; closing never runs this check on its own.
        """
        count = self.external_count()
        if count <= 1:
            raise CloseGuardViolation(count)

    def close(self, tab_id: str) -> bool:
        closed = self.connection.close_target(tab_id)
        if closed:
            self.ctx.tabs.pop(tab_id, None)
        return closed

    # ─────────────────────────────────────────────────────────────────────────
    # Views
    # ─────────────────────────────────────────────────────────────────────────

    def categorize(self, targets: list[Target] | None = None) -> dict[str, Any]:
        """Split a listing into primary, sidecar, autonomous, overlay and other tabs."""
        if targets is None:
            targets = self.connection.list_targets()
        is_app = self.ctx.config.is_app_url
        pages = [t for t in targets if t.is_page]

        def external(t: Target) -> bool:
            return not is_app(t.url) and not self.classify(t.url)

        return {
            "primary": next((t for t in pages if is_app(t.url) and SIDECAR_MARKER not in t.url), None),
            "sidecar": next((t for t in pages if SIDECAR_MARKER in t.url), None),
            "autonomous": next((t for t in pages if external(t)), None),
            "overlay": next(
                (t for t in targets if t.url.startswith("chrome-extension://") and OVERLAY_MARKER in t.url),
                None,
            ),
            "others": [t for t in pages if not is_app(t.url) and not t.url.startswith("chrome-extension://")],
        }

    def autonomous_url(self) -> str:
        target = self.categorize()["autonomous"]
        return target.url if target is not None else ""

    def summary(self) -> str:
        tabs = [tab for tab in self.refresh() if not self.classify(tab.url)]
        if not tabs:
            return "No browsing tabs open"
        active_id = self.ctx.state.active_tab_id
        lines = [f"{len(tabs)} browsing tab(s) open:"]
        for tab in tabs:
            active = " [ACTIVE]" if tab.id == active_id else ""
            task = f" (task: {tab.task_id})" if tab.task_id else ""
            note = f" - {tab.content_summary}" if tab.content_summary else ""
            url = tab.url if len(tab.url) <= SUMMARY_URL_CHARS else tab.url[:SUMMARY_URL_CHARS] + "..."
            lines.append(f"  • {tab.purpose.value.upper()}: {tab.domain}{active}{task}{note}")
            lines.append(f"    URL: {url}")
        return "\n".join(lines)

    def navigate_or_reuse(
        self, url: str, purpose: TabPurpose | str = TabPurpose.AUTONOMOUS_BROWSING
    ) -> tuple[str, bool]:
        """Reuse a tab already open on the same domain, else open a new one."""
        wanted = TabPurpose.parse(purpose)
        domain = extract_domain(url)
        existing = self.find_by_domain(domain)
        if existing is not None and existing.purpose is not TabPurpose.PRIMARY:
            self.connection.connect(existing.id)
            self.connection.navigate(url, wait_load=True)
            self.set_purpose(existing.id, wanted)
            return existing.id, True

        target = self.connection.new_target(url)
        self.ctx.clock.sleep(NEW_TAB_SETTLE)
        self.connection.connect(target.id)
        self.ctx.tabs[target.id] = TabContext(
            id=target.id,
            url=target.url or url,
            title=target.title,
            purpose=wanted,
            domain=domain,
            last_activity=self.ctx.clock.now(),
        )
        logger.info("Opened tab %s for %s", target.id, domain)
        return target.id, False


__all__ = ["TabRegistry", "extract_domain", "infer_purpose", "is_internal"]
