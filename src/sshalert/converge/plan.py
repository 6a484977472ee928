"""The fixed provision and deprovision step sequences."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from jinja2 import TemplateError

from ..errors import WriteError
from .models import ConvergenceStep
from .removal import (
    RemoveDisableLink,
    RemoveGroup,
    RemoveGroupMember,
    RemoveHookScript,
    RemovePackages,
    RemovePath,
    RemoveSymlink,
    RemoveUser,
)
from .steps import (
    EnsureComplainMode,
    EnsureDirectory,
    EnsureFile,
    EnsureGroup,
    EnsureGroupMember,
    EnsureHookScript,
    EnsurePackage,
    EnsureSymlink,
    RenderConfigFile,
)

if TYPE_CHECKING:
    from ..config import AppConfig
    from ..credentials import Credentials
    from ..templates import TemplateEngine

LOG_DIR_MODE = 0o2775
LOG_FILE_MODE = 0o664
CONFIG_MODE = 0o644
SCRIPT_MODE = 0o755

MSMTPRC_TEMPLATE = "msmtprc.j2"
ALERT_SCRIPT_TEMPLATE = "ssh-login-alert.sh.j2"
PROFILE_HOOK_TEMPLATE = "profile-hook.sh.j2"
RC_LOCAL_TEMPLATE = "rc.local.j2"

INSTALL_QUESTION = "Package {package} is not installed. Install it now?"
COMPLAIN_QUESTION = "Set AppArmor profile {profile} to complain mode?"
SYMLINK_QUESTION = "Point {link} at {target}?"

APPARMOR_DISABLE_DIR = Path("/etc/apparmor.d/disable")


def profile_hook_marker(script: Path) -> str:
    """Return the line that runs *script* for SSH sessions only."""
    return f'if [ -n "$SSH_CLIENT" ]; then {script}; fi'


def apparmor_remediation(config: AppConfig) -> list[str]:
    """Return the commands that disable the msmtp profile by hand."""
    profile = config.apparmor.profile
    disabled = APPARMOR_DISABLE_DIR / profile.name
    return [
        f"sudo ln -sf {profile} {disabled}",
        f"sudo {config.apparmor.apparmor_parser_bin} -r {profile}",
    ]


def _renderer(
    templates: TemplateEngine,
    template_name: str,
    context: Mapping[str, object],
    destination: Path,
) -> Callable[[], str]:
    def render() -> str:
        try:
            return templates.render_to_string(template_name, context)
        except TemplateError as exc:
            raise WriteError(f"Cannot render {template_name} for {destination}: {exc}") from exc

    return render


def sendmail_command(config: AppConfig, *, sendmail_link: bool) -> Path:
    """Return the binary the alert script pipes mail into."""
    return config.mail.sendmail_link if sendmail_link else config.mail.msmtp_bin


def build_provision_steps(
    config: AppConfig,
    credentials: Credentials | None,
    templates: TemplateEngine,
    *,
    member: str | None,
    apparmor_complain: bool,
    sendmail_link: bool,
) -> list[ConvergenceStep]:
    """Return the ordered provision sequence.

    Without *credentials* (``status``) the two rendered files are only checked
    for presence, ownership and mode.
    """
    mail = config.mail
    alert = config.alert
    group = config.log_group

    steps: list[ConvergenceStep] = [EnsureGroup(group)]
    if member:
        steps.append(EnsureGroupMember(member, group))
    steps.append(EnsureDirectory(mail.log_dir, LOG_DIR_MODE, owner="root", group=group))
    steps.append(EnsureFile(mail.log_path, LOG_FILE_MODE, owner="root", group=group))
    for package in config.packages.names:
        steps.append(
            EnsurePackage(package, confirmation=INSTALL_QUESTION.format(package=package))
        )

    if apparmor_complain:
        apparmor = config.apparmor
        steps.append(
            EnsurePackage(
                apparmor.utils_package,
                confirmation=INSTALL_QUESTION.format(package=apparmor.utils_package),
            )
        )
        steps.append(
            EnsureComplainMode(
                apparmor.profile,
                apparmor.profile_name,
                confirmation=COMPLAIN_QUESTION.format(profile=apparmor.profile),
            )
        )
        rc_context = {"marker": apparmor.boot_command}
        steps.append(
            EnsureHookScript(
                apparmor.rc_local,
                apparmor.boot_command,
                _renderer(templates, RC_LOCAL_TEMPLATE, rc_context, apparmor.rc_local),
                mode=SCRIPT_MODE,
                owner="root",
                group="root",
                before_exit=True,
            )
        )

    if credentials is None:
        steps.append(EnsureFile(mail.config_path, CONFIG_MODE, owner="root", group="root"))
    else:
        msmtprc_context = {
            "from_address": credentials.from_address,
            "user_address": credentials.user_address,
            "secret": credentials.secret,
            "account": mail.account,
            "host": mail.host,
            "port": mail.port,
            "tls": mail.tls,
            "starttls": mail.starttls,
            "tls_trust_file": mail.tls_trust_file,
            "log_file": mail.log_path,
        }
        steps.append(
            RenderConfigFile(
                mail.config_path,
                _renderer(templates, MSMTPRC_TEMPLATE, msmtprc_context, mail.config_path),
                mode=CONFIG_MODE,
                owner="root",
                group="root",
            )
        )

    if sendmail_link:
        steps.append(
            EnsureSymlink(
                mail.sendmail_link,
                mail.msmtp_bin,
                confirmation=SYMLINK_QUESTION.format(
                    link=mail.sendmail_link, target=mail.msmtp_bin
                ),
            )
        )

    if credentials is None:
        steps.append(EnsureFile(alert.script, SCRIPT_MODE, owner="root", group="root"))
    else:
        alert_context = {
            "subject": alert.subject,
            "sendmail": sendmail_command(config, sendmail_link=sendmail_link),
            "recipient": credentials.recipient_address,
        }
        steps.append(
            RenderConfigFile(
                alert.script,
                _renderer(templates, ALERT_SCRIPT_TEMPLATE, alert_context, alert.script),
                mode=SCRIPT_MODE,
                owner="root",
                group="root",
            )
        )

    marker = profile_hook_marker(alert.script)
    steps.append(
        EnsureHookScript(
            alert.profile_hook,
            marker,
            _renderer(
                templates, PROFILE_HOOK_TEMPLATE, {"marker": marker}, alert.profile_hook
            ),
            mode=CONFIG_MODE,
            owner="root",
            group="root",
        )
    )
    return steps


def build_deprovision_steps(
    config: AppConfig,
    *,
    member: str | None,
    keep_packages: bool,
) -> list[ConvergenceStep]:
    """Return the removal sequence, the provision order mirrored."""
    mail = config.mail
    alert = config.alert
    apparmor = config.apparmor

    steps: list[ConvergenceStep] = [
        RemoveSymlink(mail.sendmail_link, mail.msmtp_bin),
        RemoveDisableLink(APPARMOR_DISABLE_DIR / apparmor.profile.name, apparmor.profile),
    ]
    if not keep_packages:
        packages = (*config.packages.names, apparmor.utils_package)
        steps.append(RemovePackages(packages, autoremove=config.packages.autoremove))
    steps.extend(
        [
            RemovePath(mail.config_path),
            RemovePath(alert.script),
            RemovePath(mail.log_dir),
            RemoveHookScript(alert.profile_hook, profile_hook_marker(alert.script)),
            RemoveHookScript(apparmor.rc_local, apparmor.boot_command),
        ]
    )
    if member:
        steps.append(RemoveGroupMember(member, config.log_group))
    steps.append(RemoveUser(config.system_user))
    steps.append(RemoveGroup(config.log_group))
    return steps


__all__ = [
    "CONFIG_MODE",
    "LOG_DIR_MODE",
    "LOG_FILE_MODE",
    "SCRIPT_MODE",
    "apparmor_remediation",
    "build_deprovision_steps",
    "build_provision_steps",
    "profile_hook_marker",
    "sendmail_command",
]
