"""User and group database provider."""
from __future__ import annotations

import grp
import pwd
import subprocess
from dataclasses import dataclass

from ..errors import AccountError, GroupCreateFailed
from .commands import run_command


@dataclass(slots=True)
class AccountsProvider:
    """Inspect passwd/group databases and run the shadow-utils commands."""

    groupadd_bin: str = "groupadd"
    groupdel_bin: str = "groupdel"
    usermod_bin: str = "usermod"
    userdel_bin: str = "userdel"
    gpasswd_bin: str = "gpasswd"

    def group_exists(self, name: str) -> bool:
        """Return ``True`` when group *name* exists."""
        try:
            grp.getgrnam(name)
        except KeyError:
            return False
        return True

    def user_exists(self, name: str) -> bool:
        """Return ``True`` when user *name* exists."""
        try:
            pwd.getpwnam(name)
        except KeyError:
            return False
        return True

    def group_members(self, name: str) -> frozenset[str]:
        """Return supplementary and primary members of group *name*."""
        try:
            entry = grp.getgrnam(name)
        except KeyError:
            return frozenset()
        members = set(entry.gr_mem)
        for user in pwd.getpwall():
            if user.pw_gid == entry.gr_gid:
                members.add(user.pw_name)
        return frozenset(members)

    def create_group(self, name: str, *, system: bool = True) -> subprocess.CompletedProcess[str]:
        """Create group *name*."""
        command = [self.groupadd_bin]
        if system:
            command.append("--system")
        command.append(name)
        return run_command(command, error=GroupCreateFailed)

    def add_member(self, user: str, group: str) -> subprocess.CompletedProcess[str]:
        """Append *group* to the supplementary groups of *user*."""
        return run_command([self.usermod_bin, "-a", "-G", group, user], error=AccountError)

    def remove_member(self, user: str, group: str) -> subprocess.CompletedProcess[str]:
        """Drop *user* from the supplementary members of *group*."""
        return run_command([self.gpasswd_bin, "-d", user, group], error=AccountError)

    def delete_user(self, name: str) -> subprocess.CompletedProcess[str]:
        """Delete user *name*."""
        return run_command([self.userdel_bin, name], error=AccountError)

    def delete_group(self, name: str) -> subprocess.CompletedProcess[str]:
        """Delete group *name*."""
        return run_command([self.groupdel_bin, name], error=AccountError)


__all__ = ["AccountsProvider"]
