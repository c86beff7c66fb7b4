"""Rule tables for reading the chat UI.

Everything markup-specific lives here as plain data: selector lists, phrase
markers and regexes. ``completion``, ``submission`` and ``page_scripts`` only
interpret these tables, so a different chat UI can be targeted by swapping
them without touching the state machine.
"""

from __future__ import annotations

import re

# ─────────────────────────────────────────────────────────────────────────────
# Prompt input
# ─────────────────────────────────────────────────────────────────────────────

# Priority order: the contenteditable composer is the primary surface.
INPUT_SELECTORS: tuple[str, ...] = (
    '[contenteditable="true"]',
    'textarea[placeholder*="Ask"]',
    'textarea[placeholder*="Search"]',
    "textarea",
    'input[type="text"]',
)

# An input holding fewer characters than this after a commit counts as emptied.
EMPTIED_INPUT_CHARS = 5

SUBMIT_SELECTORS: tuple[str, ...] = (
    'button[aria-label*="Submit"]',
    'button[aria-label*="Send"]',
    'button[aria-label*="Ask"]',
    'button[type="submit"]',
    'form button[type="button"]:last-of-type',
)

# Buttons near the input whose label contains one of these are mode, attachment,
# voice or menu controls, never the submit control.
SUBMIT_EXCLUDE_LABELS: tuple[str, ...] = (
    "search",
    "research",
    "labs",
    "learn",
    "attach",
    "voice",
    "menu",
    "more",
)

# How many ancestors above the input are searched for a submit control.
SUBMIT_SEARCH_DEPTH = 5

# ─────────────────────────────────────────────────────────────────────────────
# Activity signals
# ─────────────────────────────────────────────────────────────────────────────

STOP_LABEL_TOKENS: tuple[str, ...] = ("stop", "cancel")
STOP_BUTTON_TEXT = "stop"
STOP_CLICK_SELECTORS: tuple[str, ...] = (
    'button[aria-label*="Stop"]',
    'button[aria-label*="Cancel"]',
)

LOADING_SELECTORS: tuple[str, ...] = (
    '[class*="animate-spin"]',
    '[class*="animate-pulse"]',
    '[class*="loading"]',
    '[class*="thinking"]',
)

# Narrower set used right after a submit: any animation means the prompt landed.
SUBMIT_LOADING_SELECTORS: tuple[str, ...] = (
    '[class*="animate-spin"]',
    '[class*="animate-pulse"]',
)

THINKING_PATTERN = re.compile(r"Thinking(?!\s+about)")

IN_PROGRESS_PHRASES: tuple[str, ...] = (
    "Working",
    "Searching",
    "Reviewing sources",
    "Preparing to assist",
    "Clicking",
    "Typing:",
    "Navigating to",
    "Reading",
    "Analyzing",
    "Browsing",
    "Looking at",
    "Checking",
    "Opening",
    "Scrolling",
    "Waiting",
    "Processing",
)

STEP_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"Preparing to assist[^\n]*",
        r"Clicking[^\n]*",
        r"Typing:[^\n]*",
        r"Navigating[^\n]*",
        r"Reading[^\n]*",
        r"Searching[^\n]*",
        r"Found[^\n]*",
    )
)
STEP_MAX_CHARS = 100
STEP_HISTORY = 5

# ─────────────────────────────────────────────────────────────────────────────
# Completion markers and response boundaries
# ─────────────────────────────────────────────────────────────────────────────

STEPS_COMPLETED_PATTERN = re.compile(r"\d+\s*steps?\s*completed", re.IGNORECASE)
REVIEWED_SOURCES_PATTERN = re.compile(r"Reviewed\s+\d+\s+sources?", re.IGNORECASE)
FINISHED_MARKER = "Finished"
FOLLOW_UP_PHRASES: tuple[str, ...] = ("Ask a follow-up", "Ask follow-up")

# The response ends where the composer UI begins.
RESPONSE_END_MARKERS: tuple[str, ...] = (
    "Ask anything",
    "Ask a follow-up",
    "Add details",
    "Type a message",
)

LEADING_ARROWS = re.compile(r"^[>›→\s]+")

# Content blocks holding assistant prose.
CONTENT_BLOCK_SELECTOR = '[class*="prose"]'
# Blocks inside these containers are page chrome, not answers.
CONTENT_CHROME_ANCESTORS = "nav, aside, header, footer, form, [contenteditable]"
UI_CHROME_PREFIXES: tuple[str, ...] = (
    "Library",
    "Discover",
    "Spaces",
    "Finance",
    "Account",
    "Upgrade",
    "Home",
    "Search",
)
CONTENT_BLOCK_MIN_CHARS = 30
FALLBACK_BLOCK_COUNT = 3
SNAPSHOT_PREFIX_CHARS = 100

# ─────────────────────────────────────────────────────────────────────────────
# Sanitization
# ─────────────────────────────────────────────────────────────────────────────

BOILERPLATE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"View All", re.IGNORECASE),
    re.compile(r"Show more", re.IGNORECASE),
    re.compile(r"Ask a follow-up", re.IGNORECASE),
    re.compile(r"Ask anything\.*", re.IGNORECASE),
    re.compile(r"Add details to this task\.*", re.IGNORECASE),
    re.compile(r"\d+\s*sources?\s*\Z", re.IGNORECASE),
)
EMOJI_PATTERN = re.compile("[\U0001f300-\U0001f9ff]")
LINE_LEADING_ARROWS = re.compile(r"^[>›→ \t]+", re.MULTILINE)
BLANK_LINE_RUN = re.compile(r"\n{3,}")

# ─────────────────────────────────────────────────────────────────────────────
# Modes and uploads
# ─────────────────────────────────────────────────────────────────────────────

MODES: dict[str, str] = {
    "search": "Basic web search",
    "research": "Deep research with comprehensive analysis",
    "labs": "Analytics, visualizations, and coding",
    "learn": "Educational content and explanations",
}
MODE_DROPDOWN_SELECTOR = 'button[class*="gap"]'
MODE_MENU_ITEM_SELECTOR = '[role="menuitem"], [role="option"], button'

FILE_INPUT_SELECTORS: tuple[str, ...] = (
    'input[type="file"]:not([disabled])',
    'input[type="file"]',
    '[data-testid*="file"] input',
    '[class*="upload"] input[type="file"]',
    '[class*="dropzone"] input[type="file"]',
)

# ─────────────────────────────────────────────────────────────────────────────
# Prompt normalization
# ─────────────────────────────────────────────────────────────────────────────

URL_PATTERN = re.compile(r"https?://\S+")
BROWSING_ACTION_PATTERN = re.compile(
    r"\b(go to|visit|navigate|open|browse|check|look at|read from|click|fill|submit|login|sign in|download from)\b",
    re.IGNORECASE,
)
SITE_REFERENCE_PATTERN = re.compile(r"(\.com|\.org|\.io|\.net|\.ai|\bwebsite\b|\bwebpage\b|\bpage\b|\bsite\b)", re.IGNORECASE)
ALREADY_AGENTIC_PATTERN = re.compile(
    r"^(use your browser|using your browser|open a browser|navigate to|browse to)", re.IGNORECASE
)
BULLET_PREFIX = re.compile(r"^[-*•]\s*", re.MULTILINE)
