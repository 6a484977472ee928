"""Configuration loader for sshalert.

Configuration values are read from multiple sources, later ones winning:

1. Built-in defaults.
2. ``/etc/sshalert/config.yml`` (or an override path).
3. Environment variables prefixed with ``SSHALERT_``.
4. Explicit overrides supplied programmatically (CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export SSHALERT_MAIL__PORT=587
    export SSHALERT_APPARMOR__COMPLAIN=true

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load sshalert configuration. Install with "
        "`pip install sshalert` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "SSHALERT_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class MailConfig:
    """msmtp account and file locations."""

    config_path: Path = Path("/etc/msmtprc")
    log_dir: Path = Path("/var/log/msmtp")
    log_file: str = "msmtp.log"
    account: str = "gmail"
    host: str = "smtp.gmail.com"
    port: int = 465
    tls: bool = True
    starttls: bool = False
    tls_trust_file: Path = Path("/etc/ssl/certs/ca-certificates.crt")
    msmtp_bin: Path = Path("/usr/bin/msmtp")
    sendmail_link: Path = Path("/usr/sbin/sendmail")
    manage_sendmail_link: bool = True

    @property
    def log_path(self) -> Path:
        """Return the msmtp log file path."""
        return self.log_dir / self.log_file

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "config_path": str(self.config_path),
            "log_dir": str(self.log_dir),
            "log_file": self.log_file,
            "account": self.account,
            "host": self.host,
            "port": self.port,
            "tls": self.tls,
            "starttls": self.starttls,
            "tls_trust_file": str(self.tls_trust_file),
            "msmtp_bin": str(self.msmtp_bin),
            "sendmail_link": str(self.sendmail_link),
            "manage_sendmail_link": self.manage_sendmail_link,
        }


@dataclass(frozen=True)
class AlertConfig:
    """Locations of the generated alert script and login hook."""

    script: Path = Path("/usr/local/bin/ssh-login-alert.sh")
    profile_hook: Path = Path("/etc/profile.d/ssh-login-alert.sh")
    subject: str = "SSH Login Alert"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "script": str(self.script),
            "profile_hook": str(self.profile_hook),
            "subject": self.subject,
        }


@dataclass(frozen=True)
class PackagesConfig:
    """Package manager integration values."""

    names: tuple[str, ...] = ("msmtp", "msmtp-mta")
    apt_get_bin: str = "apt-get"
    dpkg_query_bin: str = "dpkg-query"
    debconf_set_selections_bin: str = "debconf-set-selections"
    update: bool = True
    autoremove: bool = True
    debconf_selections: tuple[str, ...] = ("msmtp msmtp/armor boolean false",)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "names": list(self.names),
            "apt_get_bin": self.apt_get_bin,
            "dpkg_query_bin": self.dpkg_query_bin,
            "debconf_set_selections_bin": self.debconf_set_selections_bin,
            "update": self.update,
            "autoremove": self.autoremove,
            "debconf_selections": list(self.debconf_selections),
        }


@dataclass(frozen=True)
class AppArmorConfig:
    """AppArmor complain-mode relaxation for the msmtp profile."""

    complain: bool = False
    profile: Path = Path("/etc/apparmor.d/usr.bin.msmtp")
    profile_name: str = "/usr/bin/msmtp"
    rc_local: Path = Path("/etc/rc.local")
    utils_package: str = "apparmor-utils"
    aa_complain_bin: str = "aa-complain"
    aa_status_bin: str = "aa-status"
    apparmor_parser_bin: str = "apparmor_parser"

    @property
    def boot_command(self) -> str:
        """Return the command re-applied from rc.local at boot."""
        return f"{self.aa_complain_bin} {self.profile}"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "complain": self.complain,
            "profile": str(self.profile),
            "profile_name": self.profile_name,
            "rc_local": str(self.rc_local),
            "utils_package": self.utils_package,
            "aa_complain_bin": self.aa_complain_bin,
            "aa_status_bin": self.aa_status_bin,
            "apparmor_parser_bin": self.apparmor_parser_bin,
        }


@dataclass(frozen=True)
class PromptsConfig:
    """Interactive prompt tunables."""

    secret_attempts: int = 3

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"secret_attempts": self.secret_attempts}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for sshalert."""

    config_file: Path
    logs_dir: Path
    templates_dir: Path
    log_group: str
    system_user: str
    mail: MailConfig
    alert: AlertConfig
    packages: PackagesConfig
    apparmor: AppArmorConfig
    prompts: PromptsConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "log_group": self.log_group,
            "system_user": self.system_user,
            "mail": self.mail.to_dict(),
            "alert": self.alert.to_dict(),
            "packages": self.packages.to_dict(),
            "apparmor": self.apparmor.to_dict(),
            "prompts": self.prompts.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/sshalert/config.yml",
    "logs_dir": "/var/log/sshalert",
    "templates_dir": "/etc/sshalert/templates",
    "log_group": "msmtp",
    "system_user": "msmtp",
    "mail": {
        "config_path": "/etc/msmtprc",
        "log_dir": "/var/log/msmtp",
        "log_file": "msmtp.log",
        "account": "gmail",
        "host": "smtp.gmail.com",
        "port": 465,
        "tls": True,
        "starttls": False,
        "tls_trust_file": "/etc/ssl/certs/ca-certificates.crt",
        "msmtp_bin": "/usr/bin/msmtp",
        "sendmail_link": "/usr/sbin/sendmail",
        "manage_sendmail_link": True,
    },
    "alert": {
        "script": "/usr/local/bin/ssh-login-alert.sh",
        "profile_hook": "/etc/profile.d/ssh-login-alert.sh",
        "subject": "SSH Login Alert",
    },
    "packages": {
        "names": ["msmtp", "msmtp-mta"],
        "apt_get_bin": "apt-get",
        "dpkg_query_bin": "dpkg-query",
        "debconf_set_selections_bin": "debconf-set-selections",
        "update": True,
        "autoremove": True,
        "debconf_selections": ["msmtp msmtp/armor boolean false"],
    },
    "apparmor": {
        "complain": False,
        "profile": "/etc/apparmor.d/usr.bin.msmtp",
        "profile_name": "/usr/bin/msmtp",
        "rc_local": "/etc/rc.local",
        "utils_package": "apparmor-utils",
        "aa_complain_bin": "aa-complain",
        "aa_status_bin": "aa-status",
        "apparmor_parser_bin": "apparmor_parser",
    },
    "prompts": {
        "secret_attempts": 3,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_SECTION_KEYS: dict[str, set[str]] = {
    section: set(cast(Mapping[str, object], DEFAULTS[section]).keys())
    for section in ("mail", "alert", "packages", "apparmor", "prompts")
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _SECTION_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    for key in ("log_group", "system_user"):
        value = raw.get(key)
        if not isinstance(value, str) or not value.strip():
            raise ConfigError(f"{key} must be a non-empty string.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    mail_mapping = _as_dict(raw.get("mail"), "mail")
    port = _expect_int(mail_mapping.get("port"), "mail.port", default=465)
    if not 0 < port < 65536:
        raise ConfigError(f"mail.port must be between 1 and 65535. Got {port}.")
    log_file = _expect_str(mail_mapping.get("log_file", "msmtp.log"), "mail.log_file")
    if not log_file or "/" in log_file:
        raise ConfigError("mail.log_file must be a bare file name.")
    mail = MailConfig(
        config_path=_to_path(mail_mapping.get("config_path")),
        log_dir=_to_path(mail_mapping.get("log_dir")),
        log_file=log_file,
        account=_expect_word(mail_mapping.get("account"), "mail.account"),
        host=_expect_word(mail_mapping.get("host"), "mail.host"),
        port=port,
        tls=_expect_bool(mail_mapping.get("tls"), "mail.tls", default=True),
        starttls=_expect_bool(mail_mapping.get("starttls"), "mail.starttls", default=False),
        tls_trust_file=_to_path(mail_mapping.get("tls_trust_file")),
        msmtp_bin=_to_path(mail_mapping.get("msmtp_bin")),
        sendmail_link=_to_path(mail_mapping.get("sendmail_link")),
        manage_sendmail_link=_expect_bool(
            mail_mapping.get("manage_sendmail_link"),
            "mail.manage_sendmail_link",
            default=True,
        ),
    )

    alert_mapping = _as_dict(raw.get("alert"), "alert")
    alert = AlertConfig(
        script=_to_path(alert_mapping.get("script")),
        profile_hook=_to_path(alert_mapping.get("profile_hook")),
        subject=_expect_str(alert_mapping.get("subject", "SSH Login Alert"), "alert.subject"),
    )
    if "\n" in alert.subject:
        raise ConfigError("alert.subject must be a single line.")

    packages_mapping = _as_dict(raw.get("packages"), "packages")
    names = _expect_str_tuple(packages_mapping.get("names"), "packages.names")
    if not names:
        raise ConfigError("packages.names must list at least one package.")
    packages = PackagesConfig(
        names=names,
        apt_get_bin=str(packages_mapping.get("apt_get_bin", "apt-get")),
        dpkg_query_bin=str(packages_mapping.get("dpkg_query_bin", "dpkg-query")),
        debconf_set_selections_bin=str(
            packages_mapping.get("debconf_set_selections_bin", "debconf-set-selections")
        ),
        update=_expect_bool(packages_mapping.get("update"), "packages.update", default=True),
        autoremove=_expect_bool(
            packages_mapping.get("autoremove"), "packages.autoremove", default=True
        ),
        debconf_selections=_expect_str_tuple(
            packages_mapping.get("debconf_selections") or [],
            "packages.debconf_selections",
        ),
    )

    apparmor_mapping = _as_dict(raw.get("apparmor"), "apparmor")
    apparmor = AppArmorConfig(
        complain=_expect_bool(apparmor_mapping.get("complain"), "apparmor.complain", default=False),
        profile=_to_path(apparmor_mapping.get("profile")),
        profile_name=str(apparmor_mapping.get("profile_name", "/usr/bin/msmtp")),
        rc_local=_to_path(apparmor_mapping.get("rc_local")),
        utils_package=str(apparmor_mapping.get("utils_package", "apparmor-utils")),
        aa_complain_bin=str(apparmor_mapping.get("aa_complain_bin", "aa-complain")),
        aa_status_bin=str(apparmor_mapping.get("aa_status_bin", "aa-status")),
        apparmor_parser_bin=str(apparmor_mapping.get("apparmor_parser_bin", "apparmor_parser")),
    )

    prompts_mapping = _as_dict(raw.get("prompts"), "prompts")
    secret_attempts = _expect_int(
        prompts_mapping.get("secret_attempts"), "prompts.secret_attempts", default=3
    )
    if secret_attempts < 1:
        raise ConfigError("prompts.secret_attempts must be at least 1.")

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        log_group=str(raw.get("log_group")).strip(),
        system_user=str(raw.get("system_user")).strip(),
        mail=mail,
        alert=alert,
        packages=packages,
        apparmor=apparmor,
        prompts=PromptsConfig(secret_attempts=secret_attempts),
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_word(value: object, key: str) -> str:
    text = _expect_str(value, key).strip()
    if not text or any(char.isspace() for char in text):
        raise ConfigError(f"{key} must be a non-empty value without whitespace.")
    return text


def _expect_str_tuple(value: object, label: str) -> tuple[str, ...]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    items: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str) or not item.strip():
            raise ConfigError(f"{label}[{index}] must be a non-empty string.")
        items.append(item.strip())
    return tuple(items)


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AlertConfig",
    "AppArmorConfig",
    "AppConfig",
    "ConfigError",
    "MailConfig",
    "PackagesConfig",
    "PromptsConfig",
    "load_config",
]
