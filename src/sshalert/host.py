"""Host capability interface and its implementation for a real system.

Convergence steps never touch ``os``, ``subprocess`` or the account databases
directly. They receive a :class:`HostEnvironment`, which lets the test-suite
substitute an in-memory host, and they query it afresh on every check because
earlier steps change the facts later steps depend on.
"""
from __future__ import annotations

import grp
import os
import pwd
import shutil
import stat
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Protocol

from .errors import FilesystemError, WriteError
from .providers import AccountsProvider, AppArmorProvider, AptProvider

PathKind = Literal["missing", "file", "directory", "symlink", "other"]


@dataclass(slots=True, frozen=True)
class PathFact:
    """Snapshot of a filesystem path as observed by ``lstat``."""

    path: Path
    kind: PathKind = "missing"
    owner: str | None = None
    group: str | None = None
    mode: int | None = None
    link_target: str | None = None

    @property
    def exists(self) -> bool:
        """Return ``True`` when something exists at the path."""
        return self.kind != "missing"


class HostEnvironment(Protocol):
    """Everything a convergence step may observe or change on the host."""

    # accounts
    def group_exists(self, name: str) -> bool: ...
    def user_exists(self, name: str) -> bool: ...
    def group_members(self, name: str) -> frozenset[str]: ...
    def create_group(self, name: str) -> None: ...
    def add_group_member(self, user: str, group: str) -> None: ...
    def remove_group_member(self, user: str, group: str) -> None: ...
    def delete_user(self, name: str) -> None: ...
    def delete_group(self, name: str) -> None: ...

    # packages
    def package_installed(self, name: str) -> bool: ...
    def install_package(self, name: str) -> None: ...
    def purge_packages(self, names: Sequence[str]) -> None: ...
    def autoremove_packages(self) -> None: ...

    # access control
    def profile_mode(self, profile_name: str) -> str | None: ...
    def set_complain_mode(self, profile: Path) -> None: ...
    def reload_profile(self, profile: Path) -> None: ...

    # filesystem
    def inspect_path(self, path: Path) -> PathFact: ...
    def read_text(self, path: Path) -> str | None: ...
    def make_directory(self, path: Path) -> None: ...
    def create_empty_file(self, path: Path) -> None: ...
    def set_owner(self, path: Path, owner: str | None, group: str | None) -> None: ...
    def set_mode(self, path: Path, mode: int) -> None: ...
    def write_atomic(
        self,
        path: Path,
        content: str,
        *,
        mode: int,
        owner: str | None = None,
        group: str | None = None,
    ) -> None: ...
    def replace_symlink(self, link: Path, target: Path) -> None: ...
    def remove_path(self, path: Path) -> None: ...


@dataclass(slots=True)
class SystemHost:
    """:class:`HostEnvironment` backed by the running operating system."""

    packages: AptProvider = field(default_factory=AptProvider)
    apparmor: AppArmorProvider = field(default_factory=AppArmorProvider)
    accounts: AccountsProvider = field(default_factory=AccountsProvider)

    # accounts ---------------------------------------------------------
    def group_exists(self, name: str) -> bool:
        return self.accounts.group_exists(name)

    def user_exists(self, name: str) -> bool:
        return self.accounts.user_exists(name)

    def group_members(self, name: str) -> frozenset[str]:
        return self.accounts.group_members(name)

    def create_group(self, name: str) -> None:
        self.accounts.create_group(name)

    def add_group_member(self, user: str, group: str) -> None:
        self.accounts.add_member(user, group)

    def remove_group_member(self, user: str, group: str) -> None:
        self.accounts.remove_member(user, group)

    def delete_user(self, name: str) -> None:
        self.accounts.delete_user(name)

    def delete_group(self, name: str) -> None:
        self.accounts.delete_group(name)

    # packages ---------------------------------------------------------
    def package_installed(self, name: str) -> bool:
        return self.packages.is_installed(name)

    def install_package(self, name: str) -> None:
        self.packages.install(name)

    def purge_packages(self, names: Sequence[str]) -> None:
        self.packages.purge(names)

    def autoremove_packages(self) -> None:
        self.packages.autoremove()

    # access control ---------------------------------------------------
    def profile_mode(self, profile_name: str) -> str | None:
        return self.apparmor.profile_mode(profile_name)

    def set_complain_mode(self, profile: Path) -> None:
        self.apparmor.set_complain(profile)

    def reload_profile(self, profile: Path) -> None:
        self.apparmor.reload(profile)

    # filesystem -------------------------------------------------------
    def inspect_path(self, path: Path) -> PathFact:
        """Return a fresh :class:`PathFact` for *path* without following links."""
        try:
            st = os.lstat(path)
        except FileNotFoundError:
            return PathFact(path=path)
        except OSError as exc:
            raise FilesystemError(f"Cannot inspect {path}: {exc}") from exc

        link_target: str | None = None
        kind: PathKind
        if stat.S_ISLNK(st.st_mode):
            kind = "symlink"
            link_target = os.readlink(path)
        elif stat.S_ISDIR(st.st_mode):
            kind = "directory"
        elif stat.S_ISREG(st.st_mode):
            kind = "file"
        else:
            kind = "other"
        return PathFact(
            path=path,
            kind=kind,
            owner=_user_name(st.st_uid),
            group=_group_name(st.st_gid),
            mode=stat.S_IMODE(st.st_mode),
            link_target=link_target,
        )

    def read_text(self, path: Path) -> str | None:
        """Return the text stored at *path*, or ``None`` when it is missing."""
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise FilesystemError(f"Cannot read {path}: {exc}") from exc

    def make_directory(self, path: Path) -> None:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(f"Cannot create directory {path}: {exc}") from exc

    def create_empty_file(self, path: Path) -> None:
        """Create *path* if it is absent; existing content is never truncated."""
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT, 0o600)
        except OSError as exc:
            raise FilesystemError(f"Cannot create file {path}: {exc}") from exc
        os.close(fd)

    def set_owner(self, path: Path, owner: str | None, group: str | None) -> None:
        if owner is None and group is None:
            return
        try:
            shutil.chown(path, user=owner, group=group)
        except (LookupError, OSError) as exc:
            raise FilesystemError(
                f"Cannot set ownership {owner or ''}:{group or ''} on {path}: {exc}"
            ) from exc

    def set_mode(self, path: Path, mode: int) -> None:
        try:
            os.chmod(path, mode)
        except OSError as exc:
            raise FilesystemError(f"Cannot set mode {mode:04o} on {path}: {exc}") from exc

    def write_atomic(
        self,
        path: Path,
        content: str,
        *,
        mode: int,
        owner: str | None = None,
        group: str | None = None,
    ) -> None:
        """Write *content* to a temporary sibling, then rename it over *path*.

        Permissions and ownership are applied to the temporary file before the
        rename, so readers only ever see the previous file or the complete new
        one with its final mode.
        """
        tmp_name: str | None = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, mode)
            if owner is not None or group is not None:
                shutil.chown(tmp_name, user=owner, group=group)
            os.replace(tmp_name, path)
            tmp_name = None
        except (LookupError, OSError) as exc:
            raise WriteError(f"Cannot write {path}: {exc}") from exc
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

    def replace_symlink(self, link: Path, target: Path) -> None:
        """Point *link* at *target*, replacing an existing file or link atomically."""
        tmp_link = link.with_name(f".{link.name}.sshalert-tmp")
        try:
            tmp_link.unlink(missing_ok=True)
            os.symlink(target, tmp_link)
            os.replace(tmp_link, link)
        except OSError as exc:
            tmp_link.unlink(missing_ok=True)
            raise FilesystemError(f"Cannot link {link} -> {target}: {exc}") from exc

    def remove_path(self, path: Path) -> None:
        """Remove a file, symlink or directory tree; missing paths are ignored."""
        try:
            if path.is_symlink() or path.is_file():
                path.unlink()
            elif path.is_dir():
                shutil.rmtree(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise FilesystemError(f"Cannot remove {path}: {exc}") from exc


def _user_name(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


def _group_name(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)


__all__ = ["HostEnvironment", "PathFact", "PathKind", "SystemHost"]
