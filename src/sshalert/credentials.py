"""Collection and validation of the SMTP account credentials.

Credentials are gathered and validated in full before any provisioning step
runs, so a typo never leaves the host half-configured.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from .errors import ValidationError
from .prompts import Prompter

FROM_PROMPT = "Enter the 'from' email address"
USER_PROMPT = "Enter the 'user' email address"
SECRET_PROMPT = "Enter the 'password'"
SECRET_CONFIRM_PROMPT = "Confirm the 'password'"
RECIPIENT_PROMPT = "Enter the recipient email address"


@dataclass(frozen=True, slots=True)
class Credentials:
    """SMTP account details plus the alert recipient."""

    from_address: str
    user_address: str
    secret: str = field(repr=False)
    recipient_address: str

    def redacted(self) -> dict[str, str]:
        """Return the loggable fields; the secret is never included."""
        return {
            "from": self.from_address,
            "user": self.user_address,
            "recipient": self.recipient_address,
        }


def collect_credentials(
    prompter: Prompter,
    *,
    from_address: str | None = None,
    user_address: str | None = None,
    recipient_address: str | None = None,
    secret: str | None = None,
    secret_attempts: int = 3,
) -> Credentials:
    """Fill missing values through *prompter* and return validated credentials."""
    if from_address is None:
        from_address = prompter.ask(FROM_PROMPT)
    if user_address is None:
        user_address = prompter.ask(USER_PROMPT)
    if secret is None:
        secret = read_confirmed_secret(prompter, attempts=secret_attempts)
    if recipient_address is None:
        recipient_address = prompter.ask(RECIPIENT_PROMPT)
    return validate_credentials(
        from_address=from_address,
        user_address=user_address,
        secret=secret,
        recipient_address=recipient_address,
    )


def read_confirmed_secret(prompter: Prompter, *, attempts: int = 3) -> str:
    """Read the secret twice, re-prompting on mismatch up to *attempts* times."""
    for attempt in range(1, attempts + 1):
        first = prompter.read_secret(SECRET_PROMPT)
        second = prompter.read_secret(SECRET_CONFIRM_PROMPT)
        if first == second:
            return first
        if attempt < attempts:
            prompter.notify("Passwords do not match. Please try again.")
    raise ValidationError(f"Passwords did not match after {attempts} attempts.")


def validate_credentials(
    *,
    from_address: str,
    user_address: str,
    secret: str,
    recipient_address: str,
) -> Credentials:
    """Return :class:`Credentials` or raise :class:`ValidationError` listing every problem."""
    problems: list[str] = []
    addresses = {
        "from address": from_address.strip(),
        "user address": user_address.strip(),
        "recipient address": recipient_address.strip(),
    }
    for label, value in addresses.items():
        if not value:
            problems.append(f"{label} must not be empty")
        elif any(char.isspace() for char in value):
            problems.append(f"{label} must not contain whitespace")

    if not secret.strip():
        problems.append("password must not be empty")
    elif "\n" in secret or "\r" in secret:
        problems.append("password must be a single line")

    if problems:
        raise ValidationError("Invalid email configuration: " + "; ".join(problems) + ".")

    return Credentials(
        from_address=addresses["from address"],
        user_address=addresses["user address"],
        secret=secret,
        recipient_address=addresses["recipient address"],
    )


__all__ = [
    "Credentials",
    "collect_credentials",
    "read_confirmed_secret",
    "validate_credentials",
]
