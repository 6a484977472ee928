"""Convergence steps used by ``sshalert provision``."""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

from ..errors import FilesystemError
from .models import ConvergenceStep

if TYPE_CHECKING:
    from ..host import HostEnvironment, PathFact


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EnsureGroup(ConvergenceStep):
    """Group *group* exists."""

    group: str
    kind: ClassVar[str] = "ensure-group"

    @property
    def target(self) -> str:
        return self.group

    def needs_work(self, host: HostEnvironment) -> bool:
        return not host.group_exists(self.group)

    def apply(self, host: HostEnvironment) -> str | None:
        host.create_group(self.group)
        return f"created group {self.group}"


@dataclass(frozen=True)
class EnsureGroupMember(ConvergenceStep):
    """User *user* belongs to group *group*."""

    user: str
    group: str
    kind: ClassVar[str] = "ensure-group-member"

    @property
    def target(self) -> str:
        return f"{self.user}@{self.group}"

    def needs_work(self, host: HostEnvironment) -> bool:
        return self.user not in host.group_members(self.group)

    def apply(self, host: HostEnvironment) -> str | None:
        host.add_group_member(self.user, self.group)
        return f"added {self.user} to {self.group}"


# ---------------------------------------------------------------------------
# Filesystem
# ---------------------------------------------------------------------------


def _ownership_drift(fact: PathFact, owner: str | None, group: str | None, mode: int) -> list[str]:
    drift: list[str] = []
    if owner is not None and fact.owner != owner:
        drift.append(f"owner {fact.owner} != {owner}")
    if group is not None and fact.group != group:
        drift.append(f"group {fact.group} != {group}")
    if fact.mode != mode:
        current = f"{fact.mode:04o}" if fact.mode is not None else "unknown"
        drift.append(f"mode {current} != {mode:04o}")
    return drift


@dataclass(frozen=True)
class EnsureDirectory(ConvergenceStep):
    """Directory *path* exists with the requested owner, group and mode."""

    path: Path
    mode: int
    owner: str | None = None
    group: str | None = None
    kind: ClassVar[str] = "ensure-directory"

    @property
    def target(self) -> str:
        return str(self.path)

    @property
    def description(self) -> str:
        return f"{self.path} {self.owner or '-'}:{self.group or '-'} {self.mode:04o}"

    def needs_work(self, host: HostEnvironment) -> bool:
        fact = host.inspect_path(self.path)
        if not fact.exists:
            return True
        if fact.kind != "directory":
            raise FilesystemError(f"{self.path} exists but is not a directory ({fact.kind}).")
        return bool(_ownership_drift(fact, self.owner, self.group, self.mode))

    def apply(self, host: HostEnvironment) -> str | None:
        fact = host.inspect_path(self.path)
        if not fact.exists:
            host.make_directory(self.path)
            detail = "created"
        else:
            detail = "; ".join(_ownership_drift(fact, self.owner, self.group, self.mode))
        host.set_owner(self.path, self.owner, self.group)
        host.set_mode(self.path, self.mode)
        return detail


@dataclass(frozen=True)
class EnsureFile(ConvergenceStep):
    """Regular file *path* exists with the requested owner, group and mode.

    Existing content is never touched; a missing file is created empty.
    """

    path: Path
    mode: int
    owner: str | None = None
    group: str | None = None
    kind: ClassVar[str] = "ensure-file"

    @property
    def target(self) -> str:
        return str(self.path)

    @property
    def description(self) -> str:
        return f"{self.path} {self.owner or '-'}:{self.group or '-'} {self.mode:04o}"

    def needs_work(self, host: HostEnvironment) -> bool:
        fact = host.inspect_path(self.path)
        if not fact.exists:
            return True
        if fact.kind != "file":
            raise FilesystemError(f"{self.path} exists but is not a regular file ({fact.kind}).")
        return bool(_ownership_drift(fact, self.owner, self.group, self.mode))

    def apply(self, host: HostEnvironment) -> str | None:
        fact = host.inspect_path(self.path)
        if not fact.exists:
            host.create_empty_file(self.path)
            detail = "created"
        else:
            detail = "; ".join(_ownership_drift(fact, self.owner, self.group, self.mode))
        host.set_owner(self.path, self.owner, self.group)
        host.set_mode(self.path, self.mode)
        return detail


@dataclass(frozen=True)
class RenderConfigFile(ConvergenceStep):
    """File *path* holds freshly rendered content.

    Content is derived from the current inputs on every run, so this step
    always applies; the write itself is atomic.
    """

    path: Path
    render: Callable[[], str] = field(compare=False, repr=False)
    mode: int = 0o644
    owner: str | None = None
    group: str | None = None
    kind: ClassVar[str] = "render-config"

    @property
    def target(self) -> str:
        return str(self.path)

    def needs_work(self, host: HostEnvironment) -> bool:
        return True

    def apply(self, host: HostEnvironment) -> str | None:
        content = self.render()
        previous = host.read_text(self.path)
        host.write_atomic(
            self.path,
            content,
            mode=self.mode,
            owner=self.owner,
            group=self.group,
        )
        if previous == content:
            return "unchanged"
        return "written" if previous is None else "updated"


@dataclass(frozen=True)
class EnsureSymlink(ConvergenceStep):
    """*link* is a symlink resolving to *link_target*."""

    link: Path
    link_target: Path
    confirmation: str | None = None
    kind: ClassVar[str] = "ensure-symlink"

    @property
    def target(self) -> str:
        return str(self.link)

    @property
    def description(self) -> str:
        return f"{self.link} -> {self.link_target}"

    def needs_work(self, host: HostEnvironment) -> bool:
        fact = host.inspect_path(self.link)
        if fact.kind == "directory":
            raise FilesystemError(f"{self.link} is a directory; refusing to replace it.")
        return not symlink_points_to(self.link, fact.link_target, self.link_target)

    def apply(self, host: HostEnvironment) -> str | None:
        fact = host.inspect_path(self.link)
        host.replace_symlink(self.link, self.link_target)
        if fact.kind == "missing":
            return "created"
        return f"replaced existing {fact.kind}"


def symlink_points_to(link: Path, raw_target: str | None, expected: Path) -> bool:
    """Return ``True`` when a link at *link* storing *raw_target* resolves to *expected*."""
    if raw_target is None:
        return False
    resolved = os.path.normpath(os.path.join(str(link.parent), raw_target))
    return resolved == os.path.normpath(str(expected))


# ---------------------------------------------------------------------------
# Hook scripts
# ---------------------------------------------------------------------------


def has_marker(text: str, marker: str) -> bool:
    """Return ``True`` when *marker* appears as a line of *text*."""
    wanted = marker.strip()
    return any(line.strip() == wanted for line in text.splitlines())


def insert_marker(text: str, marker: str, *, before_exit: bool = False) -> str:
    """Return *text* with *marker* added, keeping every existing line.

    With *before_exit* the marker goes in front of a trailing ``exit 0`` so
    the command still runs; otherwise it is appended.
    """
    lines = text.splitlines()
    if before_exit:
        for index in range(len(lines) - 1, -1, -1):
            stripped = lines[index].strip()
            if not stripped:
                continue
            if stripped == "exit 0":
                lines[index:index] = [marker, ""]
                return "\n".join(lines) + "\n"
            break
    lines.append(marker)
    return "\n".join(lines) + "\n"


@dataclass(frozen=True)
class EnsureHookScript(ConvergenceStep):
    """Script *path* exists and contains *marker* as one of its lines."""

    path: Path
    marker: str
    initial_content: Callable[[], str] = field(compare=False, repr=False)
    mode: int = 0o755
    owner: str | None = None
    group: str | None = None
    before_exit: bool = False
    kind: ClassVar[str] = "ensure-hook"

    @property
    def target(self) -> str:
        return str(self.path)

    def needs_work(self, host: HostEnvironment) -> bool:
        text = host.read_text(self.path)
        return text is None or not has_marker(text, self.marker)

    def apply(self, host: HostEnvironment) -> str | None:
        text = host.read_text(self.path)
        if text is None:
            host.write_atomic(
                self.path,
                self.initial_content(),
                mode=self.mode,
                owner=self.owner,
                group=self.group,
            )
            return "created"
        fact = host.inspect_path(self.path)
        host.write_atomic(
            self.path,
            insert_marker(text, self.marker, before_exit=self.before_exit),
            mode=fact.mode if fact.mode is not None else self.mode,
            owner=fact.owner,
            group=fact.group,
        )
        return "marker added"


# ---------------------------------------------------------------------------
# Packages and access control
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EnsurePackage(ConvergenceStep):
    """Package *package* is installed."""

    package: str
    confirmation: str | None = None
    kind: ClassVar[str] = "ensure-package"

    @property
    def target(self) -> str:
        return self.package

    def needs_work(self, host: HostEnvironment) -> bool:
        return not host.package_installed(self.package)

    def apply(self, host: HostEnvironment) -> str | None:
        host.install_package(self.package)
        return f"installed {self.package}"


@dataclass(frozen=True)
class EnsureComplainMode(ConvergenceStep):
    """AppArmor profile *profile_name* (stored at *profile*) runs in complain mode."""

    profile: Path
    profile_name: str
    confirmation: str | None = None
    kind: ClassVar[str] = "ensure-complain-mode"

    @property
    def target(self) -> str:
        return str(self.profile)

    def needs_work(self, host: HostEnvironment) -> bool:
        return host.profile_mode(self.profile_name) != "complain"

    def apply(self, host: HostEnvironment) -> str | None:
        host.set_complain_mode(self.profile)
        return "complain mode set"


__all__ = [
    "EnsureComplainMode",
    "EnsureDirectory",
    "EnsureFile",
    "EnsureGroup",
    "EnsureGroupMember",
    "EnsureHookScript",
    "EnsurePackage",
    "EnsureSymlink",
    "RenderConfigFile",
    "has_marker",
    "insert_marker",
    "symlink_points_to",
]
