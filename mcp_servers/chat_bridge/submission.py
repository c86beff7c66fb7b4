"""Prompt submission with a verified fallback chain."""

from __future__ import annotations

import logging
from typing import Any

from . import page_scripts
from .clock import Clock
from .connection import ConnectionManager
from .errors import BridgeError, InputNotFoundError, SubmissionVerificationFailure

logger = logging.getLogger("mcp.chat_bridge.submit")


class PromptSubmitter:
    """Types a prompt into the chat input and makes sure it was sent.

    Submission strategies run in order (key commit, submit control, form
    submit event); each one only runs if the previous one could not be
    verified.
    """

    type_settle = 0.3

    def __init__(self, connection: ConnectionManager, clock: Clock) -> None:
        self.connection = connection
        self.clock = clock

    def _run(self, script: str) -> Any:
        res = self.connection.evaluate(script)
        if not res.ok:
            raise BridgeError(f"Page script failed: {res.exception}")
        return res.value

    def find_input(self) -> str:
        selector = self._run(page_scripts.find_input_script())
        if not selector:
            raise InputNotFoundError()
        return str(selector)

    def _verified(self, selector: str) -> bool:
        return bool(self._run(page_scripts.submission_verified_script(selector)))

    def submit(self, prompt: str) -> str:
        """Send ``prompt``; returns the name of the strategy that worked."""
        selector = self.find_input()
        if not self._run(page_scripts.inject_prompt_script(selector, prompt)):
            raise BridgeError("Failed to type into the input element")
        self.clock.sleep(self.type_settle)
        if not self._run(page_scripts.input_has_content_script(selector)):
            raise BridgeError("Prompt text not found in input - typing may have failed")

        strategies = (
            ("key-commit", page_scripts.key_commit_script(selector), 0.8),
            ("submit-control", page_scripts.click_submit_control_script(selector), 0.5),
            ("form-submit", page_scripts.form_submit_script(), 0.5),
        )
        tried: list[str] = []
        for name, script, settle in strategies:
            tried.append(name)
            outcome = self._run(script)
            logger.debug("Submission strategy %s -> %s", name, outcome)
            self.clock.sleep(settle)
            if self._verified(selector):
                logger.info("Prompt submitted via %s", name)
                return name
            logger.info("Submission via %s not verified", name)
        raise SubmissionVerificationFailure(tried)


__all__ = ["PromptSubmitter"]
