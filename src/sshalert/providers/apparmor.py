"""AppArmor provider used to relax the msmtp profile."""
from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from pathlib import Path

from ..errors import AccessControlError
from .commands import run_command


@dataclass(slots=True)
class AppArmorProvider:
    """Inspect profile modes, switch profiles to complain mode and reload them."""

    aa_complain_bin: str = "aa-complain"
    aa_status_bin: str = "aa-status"
    apparmor_parser_bin: str = "apparmor_parser"

    def profile_mode(self, profile_name: str) -> str | None:
        """Return the loaded mode of *profile_name*, or ``None`` when unknown.

        ``aa-status`` is missing on hosts without apparmor-utils and needs root
        to read the kernel policy; both cases report ``None`` so the caller
        treats the profile as not yet relaxed.
        """
        try:
            result = run_command(
                [self.aa_status_bin, "--json"],
                error=AccessControlError,
                check=False,
            )
        except AccessControlError:
            return None
        if result.returncode != 0:
            return None
        try:
            payload = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            return None
        profiles = payload.get("profiles") if isinstance(payload, dict) else None
        if not isinstance(profiles, dict):
            return None
        mode = profiles.get(profile_name)
        return mode if isinstance(mode, str) else None

    def set_complain(self, profile: Path) -> subprocess.CompletedProcess[str]:
        """Put the profile stored at *profile* into complain mode."""
        return run_command([self.aa_complain_bin, str(profile)], error=AccessControlError)

    def reload(self, profile: Path) -> subprocess.CompletedProcess[str]:
        """Replace the loaded policy with the profile stored at *profile*."""
        return run_command([self.apparmor_parser_bin, "-r", str(profile)], error=AccessControlError)


__all__ = ["AppArmorProvider"]
