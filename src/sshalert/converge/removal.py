"""Steps used by ``sshalert deprovision`` to undo what provisioning installed."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

from .models import ConvergenceStep
from .steps import has_marker, symlink_points_to

if TYPE_CHECKING:
    from ..host import HostEnvironment


def remove_marker(text: str, marker: str) -> str:
    """Return *text* without any line equal to *marker*.

    A blank line left directly in front of ``exit 0`` by the insertion is
    dropped along with the marker.
    """
    wanted = marker.strip()
    lines = text.splitlines()
    kept: list[str] = []
    index = 0
    while index < len(lines):
        line = lines[index]
        index += 1
        if line.strip() != wanted:
            kept.append(line)
            continue
        rest = lines[index:index + 2]
        if len(rest) == 2 and not rest[0].strip() and rest[1].strip() == "exit 0":
            index += 1
    if not kept:
        return ""
    return "\n".join(kept) + "\n"


def is_effectively_empty(text: str) -> bool:
    """Return ``True`` when *text* holds only comments, blank lines or ``exit 0``."""
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or stripped == "exit 0":
            continue
        return False
    return True


@dataclass(frozen=True)
class RemoveSymlink(ConvergenceStep):
    """Remove *link* when it is a symlink resolving to *expected_target*.

    Anything else at the path belongs to someone else and is left alone.
    """

    link: Path
    expected_target: Path
    kind: ClassVar[str] = "remove-symlink"

    @property
    def target(self) -> str:
        return str(self.link)

    def needs_work(self, host: HostEnvironment) -> bool:
        fact = host.inspect_path(self.link)
        if fact.kind != "symlink":
            return False
        return symlink_points_to(self.link, fact.link_target, self.expected_target)

    def apply(self, host: HostEnvironment) -> str | None:
        host.remove_path(self.link)
        return "removed"


@dataclass(frozen=True)
class RemoveDisableLink(RemoveSymlink):
    """Remove an AppArmor ``disable/`` link and load the profile it disabled."""

    kind: ClassVar[str] = "remove-disable-link"

    def apply(self, host: HostEnvironment) -> str | None:
        host.remove_path(self.link)
        if host.inspect_path(self.expected_target).kind != "file":
            return "removed"
        host.reload_profile(self.expected_target)
        return "removed, profile reloaded"


@dataclass(frozen=True)
class RemovePackages(ConvergenceStep):
    """Purge every installed package in *packages*."""

    packages: tuple[str, ...]
    autoremove: bool = True
    kind: ClassVar[str] = "remove-packages"

    @property
    def target(self) -> str:
        return ",".join(self.packages)

    def _installed(self, host: HostEnvironment) -> list[str]:
        return [name for name in self.packages if host.package_installed(name)]

    def needs_work(self, host: HostEnvironment) -> bool:
        return bool(self._installed(host))

    def apply(self, host: HostEnvironment) -> str | None:
        installed = self._installed(host)
        host.purge_packages(installed)
        if self.autoremove:
            host.autoremove_packages()
        return "purged " + " ".join(installed)


@dataclass(frozen=True)
class RemovePath(ConvergenceStep):
    """Remove the file, link or directory tree at *path*."""

    path: Path
    kind: ClassVar[str] = "remove-path"

    @property
    def target(self) -> str:
        return str(self.path)

    def needs_work(self, host: HostEnvironment) -> bool:
        return host.inspect_path(self.path).exists

    def apply(self, host: HostEnvironment) -> str | None:
        kind = host.inspect_path(self.path).kind
        host.remove_path(self.path)
        return f"removed {kind}"


@dataclass(frozen=True)
class RemoveHookScript(ConvergenceStep):
    """Drop *marker* from *path*; delete the file when nothing meaningful remains."""

    path: Path
    marker: str
    kind: ClassVar[str] = "remove-hook"

    @property
    def target(self) -> str:
        return str(self.path)

    def needs_work(self, host: HostEnvironment) -> bool:
        text = host.read_text(self.path)
        return text is not None and has_marker(text, self.marker)

    def apply(self, host: HostEnvironment) -> str | None:
        text = host.read_text(self.path) or ""
        remaining = remove_marker(text, self.marker)
        if is_effectively_empty(remaining):
            host.remove_path(self.path)
            return "file removed"
        fact = host.inspect_path(self.path)
        host.write_atomic(
            self.path,
            remaining,
            mode=fact.mode if fact.mode is not None else 0o644,
            owner=fact.owner,
            group=fact.group,
        )
        return "marker removed"


@dataclass(frozen=True)
class RemoveGroupMember(ConvergenceStep):
    """User *user* no longer belongs to *group*."""

    user: str
    group: str
    kind: ClassVar[str] = "remove-group-member"

    @property
    def target(self) -> str:
        return f"{self.user}@{self.group}"

    def needs_work(self, host: HostEnvironment) -> bool:
        return host.group_exists(self.group) and self.user in host.group_members(self.group)

    def apply(self, host: HostEnvironment) -> str | None:
        host.remove_group_member(self.user, self.group)
        return f"removed {self.user} from {self.group}"


@dataclass(frozen=True)
class RemoveUser(ConvergenceStep):
    """System user *user* does not exist."""

    user: str
    kind: ClassVar[str] = "remove-user"

    @property
    def target(self) -> str:
        return self.user

    def needs_work(self, host: HostEnvironment) -> bool:
        return host.user_exists(self.user)

    def apply(self, host: HostEnvironment) -> str | None:
        host.delete_user(self.user)
        return f"deleted user {self.user}"


@dataclass(frozen=True)
class RemoveGroup(ConvergenceStep):
    """Group *group* does not exist."""

    group: str
    kind: ClassVar[str] = "remove-group"

    @property
    def target(self) -> str:
        return self.group

    def needs_work(self, host: HostEnvironment) -> bool:
        return host.group_exists(self.group)

    def apply(self, host: HostEnvironment) -> str | None:
        host.delete_group(self.group)
        return f"deleted group {self.group}"


__all__ = [
    "RemoveDisableLink",
    "RemoveGroup",
    "RemoveGroupMember",
    "RemoveHookScript",
    "RemovePackages",
    "RemovePath",
    "RemoveSymlink",
    "RemoveUser",
    "is_effectively_empty",
    "remove_marker",
]
