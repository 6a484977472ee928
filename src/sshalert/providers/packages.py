"""APT/dpkg provider for installing and purging the mail packages."""
from __future__ import annotations

import os
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field

from ..errors import PackageManagerError
from .commands import describe_failure, run_command


@dataclass(slots=True)
class AptProvider:
    """Query the dpkg database and drive ``apt-get``."""

    apt_get_bin: str = "apt-get"
    dpkg_query_bin: str = "dpkg-query"
    debconf_set_selections_bin: str = "debconf-set-selections"
    update_before_install: bool = True
    debconf_selections: tuple[str, ...] = ()
    _prepared: bool = field(default=False, init=False, repr=False)

    def is_installed(self, name: str) -> bool:
        """Return ``True`` when dpkg reports *name* as installed."""
        result = run_command(
            [self.dpkg_query_bin, "--show", "--showformat=${Status}", name],
            error=PackageManagerError,
            check=False,
        )
        if result.returncode != 0:
            # dpkg-query exits 1 for packages it has never heard of.
            return False
        words = (result.stdout or "").split()
        return bool(words) and words[0] in {"install", "hold"} and words[-1] == "installed"

    def install(self, name: str) -> subprocess.CompletedProcess[str]:
        """Install *name*, preparing debconf and package lists on first use."""
        self._prepare()
        return self._apt_get(["install", "-y", name])

    def purge(self, names: Sequence[str]) -> subprocess.CompletedProcess[str]:
        """Purge *names* including their configuration files."""
        return self._apt_get(["purge", "-y", *names])

    def autoremove(self) -> subprocess.CompletedProcess[str]:
        """Remove packages that are no longer required."""
        return self._apt_get(["autoremove", "-y"])

    # ------------------------------------------------------------------
    def _prepare(self) -> None:
        if self._prepared:
            return
        if self.debconf_selections:
            run_command(
                [self.debconf_set_selections_bin],
                error=PackageManagerError,
                input_text="\n".join(self.debconf_selections) + "\n",
            )
        if self.update_before_install:
            self._apt_get(["update"])
        self._prepared = True

    def _apt_get(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        command = [self.apt_get_bin, *args]
        env = dict(os.environ)
        env["DEBIAN_FRONTEND"] = "noninteractive"
        result = run_command(command, error=PackageManagerError, check=False, env=env)
        if result.returncode != 0:
            raise PackageManagerError(
                describe_failure(command, result),
                returncode=result.returncode,
            )
        return result


__all__ = ["AptProvider"]
