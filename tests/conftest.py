"""Shared fixtures: an in-memory host and a scripted prompter."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from sshalert.config import AppConfig, load_config
from sshalert.errors import AccountError, FilesystemError, HostError
from sshalert.host import PathFact, PathKind
from sshalert.templates import TemplateEngine

MSMTP_PROFILE = Path("/etc/apparmor.d/usr.bin.msmtp")


@dataclass
class FakeNode:
    """A single filesystem entry held by :class:`FakeHost`."""

    kind: PathKind
    content: str = ""
    owner: str = "root"
    group: str = "root"
    mode: int = 0o644
    link_target: str | None = None


@dataclass
class FakeHost:
    """In-memory :class:`~sshalert.host.HostEnvironment` that records mutations.

    ``fail_on`` maps a mutating method name to the error it should raise.
    """

    groups: dict[str, set[str]] = field(default_factory=dict)
    users: set[str] = field(default_factory=set)
    installed: set[str] = field(default_factory=set)
    profile_modes: dict[str, str] = field(default_factory=lambda: {"/usr/bin/msmtp": "enforce"})
    profile_names: dict[Path, str] = field(
        default_factory=lambda: {MSMTP_PROFILE: "/usr/bin/msmtp"}
    )
    nodes: dict[Path, FakeNode] = field(default_factory=dict)
    fail_on: dict[str, HostError] = field(default_factory=dict)
    mutations: list[tuple[str, tuple[object, ...]]] = field(default_factory=list)

    def _mutate(self, name: str, *args: object) -> None:
        self.mutations.append((name, args))
        error = self.fail_on.get(name)
        if error is not None:
            raise error

    def mutation_names(self) -> list[str]:
        return [name for name, _ in self.mutations]

    # test helpers -------------------------------------------------------
    def seed_file(
        self,
        path: Path,
        content: str = "",
        *,
        mode: int = 0o644,
        owner: str = "root",
        group: str = "root",
    ) -> None:
        self.nodes[path] = FakeNode("file", content, owner, group, mode)

    def seed_directory(
        self,
        path: Path,
        *,
        mode: int = 0o755,
        owner: str = "root",
        group: str = "root",
    ) -> None:
        self.nodes[path] = FakeNode("directory", owner=owner, group=group, mode=mode)

    def seed_symlink(self, link: Path, target: str) -> None:
        self.nodes[link] = FakeNode("symlink", mode=0o777, link_target=target)

    def text(self, path: Path) -> str:
        return self.nodes[path].content

    # accounts -----------------------------------------------------------
    def group_exists(self, name: str) -> bool:
        return name in self.groups

    def user_exists(self, name: str) -> bool:
        return name in self.users

    def group_members(self, name: str) -> frozenset[str]:
        return frozenset(self.groups.get(name, ()))

    def create_group(self, name: str) -> None:
        self._mutate("create_group", name)
        self.groups[name] = set()

    def add_group_member(self, user: str, group: str) -> None:
        self._mutate("add_group_member", user, group)
        if group not in self.groups:
            raise AccountError(f"usermod failed: group '{group}' does not exist")
        self.groups[group].add(user)

    def remove_group_member(self, user: str, group: str) -> None:
        self._mutate("remove_group_member", user, group)
        self.groups[group].discard(user)

    def delete_user(self, name: str) -> None:
        self._mutate("delete_user", name)
        self.users.discard(name)

    def delete_group(self, name: str) -> None:
        self._mutate("delete_group", name)
        self.groups.pop(name, None)

    # packages -----------------------------------------------------------
    def package_installed(self, name: str) -> bool:
        return name in self.installed

    def install_package(self, name: str) -> None:
        self._mutate("install_package", name)
        self.installed.add(name)
        if name == "msmtp":
            self.users.add("msmtp")

    def purge_packages(self, names: Sequence[str]) -> None:
        self._mutate("purge_packages", tuple(names))
        self.installed.difference_update(names)

    def autoremove_packages(self) -> None:
        self._mutate("autoremove_packages")

    # access control -----------------------------------------------------
    def profile_mode(self, profile_name: str) -> str | None:
        return self.profile_modes.get(profile_name)

    def set_complain_mode(self, profile: Path) -> None:
        self._mutate("set_complain_mode", profile)
        self.profile_modes[self.profile_names.get(profile, str(profile))] = "complain"

    def reload_profile(self, profile: Path) -> None:
        self._mutate("reload_profile", profile)

    # filesystem ---------------------------------------------------------
    def inspect_path(self, path: Path) -> PathFact:
        node = self.nodes.get(path)
        if node is None:
            return PathFact(path=path)
        return PathFact(
            path=path,
            kind=node.kind,
            owner=node.owner,
            group=node.group,
            mode=node.mode,
            link_target=node.link_target,
        )

    def read_text(self, path: Path) -> str | None:
        node = self.nodes.get(path)
        if node is None:
            return None
        if node.kind != "file":
            raise FilesystemError(f"Cannot read {path}: not a regular file")
        return node.content

    def make_directory(self, path: Path) -> None:
        self._mutate("make_directory", path)
        self.nodes.setdefault(path, FakeNode("directory", mode=0o755))

    def create_empty_file(self, path: Path) -> None:
        self._mutate("create_empty_file", path)
        self.nodes.setdefault(path, FakeNode("file", mode=0o600))

    def set_owner(self, path: Path, owner: str | None, group: str | None) -> None:
        self._mutate("set_owner", path, owner, group)
        node = self.nodes[path]
        if owner is not None:
            node.owner = owner
        if group is not None:
            node.group = group

    def set_mode(self, path: Path, mode: int) -> None:
        self._mutate("set_mode", path, mode)
        self.nodes[path].mode = mode

    def write_atomic(
        self,
        path: Path,
        content: str,
        *,
        mode: int,
        owner: str | None = None,
        group: str | None = None,
    ) -> None:
        self._mutate("write_atomic", path)
        self.nodes[path] = FakeNode("file", content, owner or "root", group or "root", mode)

    def replace_symlink(self, link: Path, target: Path) -> None:
        self._mutate("replace_symlink", link, target)
        self.nodes[link] = FakeNode("symlink", mode=0o777, link_target=str(target))

    def remove_path(self, path: Path) -> None:
        self._mutate("remove_path", path)
        for candidate in list(self.nodes):
            if candidate == path or path in candidate.parents:
                del self.nodes[candidate]


@dataclass
class ScriptedPrompter:
    """Prompter that replays canned answers and records every question."""

    answers: list[str] = field(default_factory=list)
    secrets: list[str] = field(default_factory=list)
    confirmations: list[bool] = field(default_factory=list)
    default_confirm: bool = True
    asked: list[str] = field(default_factory=list)
    notices: list[str] = field(default_factory=list)

    def confirm(self, question: str) -> bool:
        self.asked.append(question)
        if self.confirmations:
            return self.confirmations.pop(0)
        return self.default_confirm

    def ask(self, prompt: str) -> str:
        self.asked.append(prompt)
        return self.answers.pop(0)

    def read_secret(self, prompt: str) -> str:
        self.asked.append(prompt)
        return self.secrets.pop(0)

    def notify(self, message: str) -> None:
        self.notices.append(message)


@pytest.fixture
def fake_host() -> FakeHost:
    """Return an empty in-memory host."""
    return FakeHost()


@pytest.fixture
def prompter() -> ScriptedPrompter:
    """Return a prompter that approves every confirmation."""
    return ScriptedPrompter()


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Return the built-in configuration, ignoring any host config file."""
    return load_config(config_file=tmp_path / "absent.yml", env={})


@pytest.fixture
def templates() -> TemplateEngine:
    """Return a template engine using only the packaged templates."""
    return TemplateEngine.with_overrides(None)
