"""Host providers wrapping the package manager, AppArmor and account tools."""
from __future__ import annotations

from .accounts import AccountsProvider
from .apparmor import AppArmorProvider
from .packages import AptProvider

__all__ = [
    "AccountsProvider",
    "AppArmorProvider",
    "AptProvider",
]
