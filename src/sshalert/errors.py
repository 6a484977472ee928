"""Exception hierarchy shared by providers and convergence steps.

Every failure a convergence step can report derives from :class:`HostError`
so the provisioner can turn it into a ``FAILED`` outcome. Input problems are
reported separately through :class:`ValidationError` and never reach a step.
"""
from __future__ import annotations


class HostError(RuntimeError):
    """Raised when a host mutation or inspection fails."""


class PackageManagerError(HostError):
    """Raised when the package manager exits unsuccessfully."""

    def __init__(self, message: str, *, returncode: int | None = None) -> None:
        """Store the package manager exit code alongside the message."""
        super().__init__(message)
        self.returncode = returncode


class FilesystemError(HostError):
    """Raised when a filesystem path cannot be converged."""


class WriteError(FilesystemError):
    """Raised when file content cannot be written into place."""


class AccountError(HostError):
    """Raised when user or group database updates fail."""


class GroupCreateFailed(AccountError):
    """Raised when a group cannot be created."""


class AccessControlError(HostError):
    """Raised when AppArmor commands fail."""


class ValidationError(RuntimeError):
    """Raised when operator input is empty, mismatched or malformed."""


__all__ = [
    "AccessControlError",
    "AccountError",
    "FilesystemError",
    "GroupCreateFailed",
    "HostError",
    "PackageManagerError",
    "ValidationError",
    "WriteError",
]
