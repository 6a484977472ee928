"""Operator interaction: confirmations, plain answers and hidden secrets."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

import typer
from rich.console import Console

from .errors import ValidationError


class Prompter(Protocol):
    """Capability used wherever provisioning needs a human decision."""

    def confirm(self, question: str) -> bool: ...
    def ask(self, prompt: str) -> str: ...
    def read_secret(self, prompt: str) -> str: ...
    def notify(self, message: str) -> None: ...


@dataclass(slots=True)
class ConsolePrompter:
    """Blocking terminal prompts backed by typer."""

    console: Console = field(default_factory=Console)

    def confirm(self, question: str) -> bool:
        return typer.confirm(question, default=False)

    def ask(self, prompt: str) -> str:
        return str(typer.prompt(prompt, default="", show_default=False))

    def read_secret(self, prompt: str) -> str:
        return str(typer.prompt(prompt, default="", show_default=False, hide_input=True))

    def notify(self, message: str) -> None:
        self.console.print(f"[yellow]{message}[/yellow]")


@dataclass(slots=True)
class NonInteractivePrompter:
    """Prompter for unattended runs: never blocks, approves every confirmation."""

    secret: str | None = None
    console: Console | None = None

    def confirm(self, question: str) -> bool:
        return True

    def ask(self, prompt: str) -> str:
        raise ValidationError(f"{prompt} is required in non-interactive mode.")

    def read_secret(self, prompt: str) -> str:
        if self.secret is None:
            raise ValidationError(
                "The SMTP password must be supplied with --secret-stdin in non-interactive mode."
            )
        return self.secret

    def notify(self, message: str) -> None:
        if self.console is not None:
            self.console.print(message)


__all__ = ["ConsolePrompter", "NonInteractivePrompter", "Prompter"]
