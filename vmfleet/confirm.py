"""Confirmation providers for destructive actions."""

from __future__ import annotations

from typing import Callable

from vmfleet.constants import CONFIRM_RE
from vmfleet.utils import has_controlling_tty, log


class ConfirmationProvider:
    def confirm(self, prompt: str) -> bool:
        raise NotImplementedError


class AutoConfirm(ConfirmationProvider):
    """Answers every prompt the same way (``--yes`` or tests)."""

    def __init__(self, answer: bool) -> None:
        self.answer = answer
        self.prompts = []

    def confirm(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        return self.answer


class ConsoleConfirmation(ConfirmationProvider):
    def __init__(self, reader: Callable[[str], str] = input, require_tty: bool = True) -> None:
        self.reader = reader
        self.require_tty = require_tty

    def confirm(self, prompt: str) -> bool:
        if self.require_tty and not has_controlling_tty():
            log("WARN", "No TTY available to confirm; pass --yes to proceed non-interactively")
            return False
        log("WARN", prompt)
        try:
            answer = self.reader("Are you sure? (y/N): ")
        except EOFError:
            return False
        return bool(CONFIRM_RE.match(answer.strip()))
