"""Typer-powered command line for ``sshalert``.

``provision`` converges the host so every SSH login sends an email through
msmtp, ``deprovision`` removes everything provisioning installed, and
``status`` reports which steps would still change the host.
"""
from __future__ import annotations

import json
import os
import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .converge import (
    Provisioner,
    StepOutcome,
    StepPlan,
    StepStatus,
    apparmor_remediation,
    build_deprovision_steps,
    build_provision_steps,
)
from .credentials import collect_credentials
from .errors import ValidationError
from .exit_codes import ExitCode
from .host import HostEnvironment, SystemHost
from .logging import OperationScope, StructuredLogger
from .prompts import ConsolePrompter, NonInteractivePrompter, Prompter
from .providers import AccountsProvider, AppArmorProvider, AptProvider
from .templates import TemplateEngine

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to sshalert's YAML config file.",
)

FROM_OPTION = typer.Option(
    None,
    "--from",
    help="Sender address written into the msmtp config (prompted when omitted).",
)
USER_OPTION = typer.Option(
    None,
    "--user",
    help="SMTP login address (prompted when omitted).",
)
RECIPIENT_OPTION = typer.Option(
    None,
    "--recipient",
    help="Address that receives login alerts (prompted when omitted).",
)
MEMBER_OPTION = typer.Option(
    None,
    "--member",
    help="Operator added to the msmtp group (defaults to $SUDO_USER).",
)
SECRET_STDIN_OPTION = typer.Option(
    False,
    "--secret-stdin",
    help="Read the SMTP password from standard input instead of prompting.",
)
NON_INTERACTIVE_OPTION = typer.Option(
    False,
    "--non-interactive",
    help="Never prompt; approve confirmations and fail on missing input.",
)
APPARMOR_COMPLAIN_OPTION = typer.Option(
    None,
    "--apparmor-complain/--no-apparmor-complain",
    help="Put the msmtp AppArmor profile into complain mode (config default: off).",
)
SENDMAIL_LINK_OPTION = typer.Option(
    None,
    "--sendmail-link/--no-sendmail-link",
    help="Point /usr/sbin/sendmail at msmtp (config default: on).",
)
DRY_RUN_OPTION = typer.Option(
    False,
    "--dry-run",
    help="Check every step and report pending changes without applying them.",
)
DEPROVISION_USER_OPTION = typer.Option(
    None,
    "--user",
    help="Operator removed from the msmtp group (defaults to $SUDO_USER).",
)
KEEP_PACKAGES_OPTION = typer.Option(
    False,
    "--keep-packages",
    help="Leave msmtp, msmtp-mta and apparmor-utils installed.",
)
YES_OPTION = typer.Option(
    False,
    "--yes",
    "-y",
    help="Skip the confirmation before removing anything.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON.",
)

_STATUS_STYLE = {
    StepStatus.APPLIED: "[green]applied[/green]",
    StepStatus.SKIPPED: "[cyan]skipped[/cyan]",
    StepStatus.FAILED: "[red]failed[/red]",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        SSH login email alerts through msmtp.

        Provisioning is idempotent: rerunning it after a failure picks up where
        the previous run stopped.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Objects shared by every command of a single CLI invocation."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine
    host: HostEnvironment


def _build_host(config: AppConfig) -> HostEnvironment:
    packages = config.packages
    apparmor = config.apparmor
    return SystemHost(
        packages=AptProvider(
            apt_get_bin=packages.apt_get_bin,
            dpkg_query_bin=packages.dpkg_query_bin,
            debconf_set_selections_bin=packages.debconf_set_selections_bin,
            update_before_install=packages.update,
            debconf_selections=packages.debconf_selections,
        ),
        apparmor=AppArmorProvider(
            aa_complain_bin=apparmor.aa_complain_bin,
            aa_status_bin=apparmor.aa_status_bin,
            apparmor_parser_bin=apparmor.apparmor_parser_bin,
        ),
        accounts=AccountsProvider(),
    )


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {escape(str(exc))}[/red]")
        raise typer.Exit(code=ExitCode.FAILURE) from exc

    runtime = RuntimeContext(
        config=config,
        logger=StructuredLogger(config.logs_dir),
        templates=TemplateEngine.with_overrides(config.templates_dir),
        host=_build_host(config),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the sshalert version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"sshalert {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.FAILURE,
    errors: Sequence[str] | None = None,
    context: Mapping[str, object] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc, context=context)
    raise typer.Exit(code=rc)


def _require_root(op: OperationScope) -> None:
    if os.geteuid() != 0:
        _command_error(op, "This command changes system files and must be run as root.")


def _default_member() -> str | None:
    return os.environ.get("SUDO_USER") or None


def _read_secret_stdin() -> str:
    stream = typer.get_text_stream("stdin")
    return stream.read().rstrip("\r\n")


def _build_prompter(*, non_interactive: bool, secret: str | None = None) -> Prompter:
    if non_interactive:
        return NonInteractivePrompter(secret=secret, console=console)
    return ConsolePrompter(console=console)


def _render_outcomes(title: str, outcomes: Sequence[StepOutcome]) -> None:
    table = Table("Step", "Status", "Detail", title=title)
    for outcome in outcomes:
        table.add_row(outcome.step, _STATUS_STYLE[outcome.status], escape(outcome.summary or ""))
    console.print(table)


def _render_plans(title: str, plans: Sequence[StepPlan]) -> None:
    table = Table("Step", "State", "Desired", title=title)
    for plan in plans:
        if plan.error:
            state = f"[red]error: {escape(plan.error)}[/red]"
        elif plan.pending:
            state = "[yellow]pending[/yellow]"
        else:
            state = "[green]converged[/green]"
        table.add_row(plan.step, state, escape(plan.description))
    console.print(table)


def _plans_payload(plans: Sequence[StepPlan]) -> list[dict[str, object]]:
    return [
        {
            "step": plan.step,
            "description": plan.description,
            "pending": plan.pending,
            "error": plan.error,
        }
        for plan in plans
    ]


def _print_apparmor_hint(config: AppConfig) -> None:
    console.print(
        "If msmtp reports 'cannot log to "
        f"{config.mail.log_path}: Permission denied', AppArmor is blocking it. "
        "Disable the msmtp profile with:"
    )
    for command in apparmor_remediation(config):
        console.print(f"  {command}")


@app.command()
def provision(
    ctx: typer.Context,
    from_address: str | None = FROM_OPTION,
    user_address: str | None = USER_OPTION,
    recipient: str | None = RECIPIENT_OPTION,
    member: str | None = MEMBER_OPTION,
    secret_stdin: bool = SECRET_STDIN_OPTION,
    non_interactive: bool = NON_INTERACTIVE_OPTION,
    apparmor_complain: bool | None = APPARMOR_COMPLAIN_OPTION,
    sendmail_link: bool | None = SENDMAIL_LINK_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
) -> None:
    """Install msmtp and the SSH login alert hook on this host."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    complain = config.apparmor.complain if apparmor_complain is None else apparmor_complain
    link = config.mail.manage_sendmail_link if sendmail_link is None else sendmail_link
    operator = member or _default_member()

    args: dict[str, object] = {
        "from": from_address,
        "user": user_address,
        "recipient": recipient,
        "member": operator,
        "secret_stdin": secret_stdin,
        "non_interactive": non_interactive,
        "apparmor_complain": complain,
        "sendmail_link": link,
        "dry_run": dry_run,
    }
    with runtime.logger.operation(
        "provision",
        args=args,
        target={"kind": "host", "config": config.mail.config_path},
    ) as op:
        if not dry_run:
            _require_root(op)

        secret = _read_secret_stdin() if secret_stdin else None
        prompter = _build_prompter(non_interactive=non_interactive, secret=secret)
        try:
            credentials = collect_credentials(
                prompter,
                from_address=from_address,
                user_address=user_address,
                recipient_address=recipient,
                secret=secret,
                secret_attempts=config.prompts.secret_attempts,
            )
        except ValidationError as exc:
            _command_error(op, str(exc))

        steps = build_provision_steps(
            config,
            credentials,
            runtime.templates,
            member=operator,
            apparmor_complain=complain,
            sendmail_link=link,
        )

        if dry_run:
            plans = Provisioner(runtime.host, prompter).plan(steps)
            _render_plans("Provision plan", plans)
            pending = sum(1 for plan in plans if plan.pending)
            console.print(
                f"[yellow]Dry run[/yellow]: {pending} of {len(plans)} steps would change the host."
            )
            op.success(
                "Dry run complete.",
                changed=0,
                context={"credentials": credentials.redacted(), "plan": _plans_payload(plans)},
            )
            return

        result = Provisioner(runtime.host, prompter, recorder=op).run(steps)
        _render_outcomes("Provision", result.outcomes)
        if not result.completed:
            runtime.logger.write_run_line(
                f"provision aborted at {result.failed_at}: {result.reason}"
            )
            _command_error(
                op,
                f"Provisioning stopped at {result.failed_at}: {result.reason}",
                context={"applied": result.applied, "skipped": result.skipped},
            )

        if not complain:
            _print_apparmor_hint(config)
        console.print(
            f"[green]Provisioning complete[/green]: {result.applied} applied, "
            f"{result.skipped} already converged."
        )
        op.success(
            "Provisioning complete.",
            changed=result.applied,
            context={"credentials": credentials.redacted(), "skipped": result.skipped},
        )


@app.command()
def deprovision(
    ctx: typer.Context,
    user: str | None = DEPROVISION_USER_OPTION,
    keep_packages: bool = KEEP_PACKAGES_OPTION,
    yes: bool = YES_OPTION,
    non_interactive: bool = NON_INTERACTIVE_OPTION,
) -> None:
    """Remove msmtp, the alert script, its hooks and the msmtp group."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    operator = user or _default_member()

    with runtime.logger.operation(
        "deprovision",
        args={"user": operator, "keep_packages": keep_packages, "yes": yes},
        target={"kind": "host", "config": config.mail.config_path},
    ) as op:
        _require_root(op)
        prompter = _build_prompter(non_interactive=non_interactive or yes)
        if not prompter.confirm(
            "Remove msmtp, the SSH login alert and every file sshalert installed?"
        ):
            _command_error(op, "Deprovisioning declined by operator.")

        steps = build_deprovision_steps(config, member=operator, keep_packages=keep_packages)
        result = Provisioner(runtime.host, prompter, recorder=op).run(steps)
        _render_outcomes("Deprovision", result.outcomes)
        if not result.completed:
            runtime.logger.write_run_line(
                f"deprovision aborted at {result.failed_at}: {result.reason}"
            )
            _command_error(
                op,
                f"Deprovisioning stopped at {result.failed_at}: {result.reason}",
                context={"applied": result.applied, "skipped": result.skipped},
            )

        runtime.logger.truncate_run_log()
        console.print(
            "[green]Deprovisioning complete[/green]. A reboot is recommended to fully "
            "reset AppArmor state."
        )
        op.success("Deprovisioning complete.", changed=result.applied)


@app.command()
def status(
    ctx: typer.Context,
    member: str | None = MEMBER_OPTION,
    apparmor_complain: bool | None = APPARMOR_COMPLAIN_OPTION,
    sendmail_link: bool | None = SENDMAIL_LINK_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Report which provisioning steps would still change the host.

    Pass the same toggles that were given to ``provision``.
    """
    runtime = _get_runtime(ctx)
    config = runtime.config
    complain = config.apparmor.complain if apparmor_complain is None else apparmor_complain
    link = config.mail.manage_sendmail_link if sendmail_link is None else sendmail_link
    operator = member or _default_member()

    with runtime.logger.operation(
        "status",
        args={
            "json": json_output,
            "member": operator,
            "apparmor_complain": complain,
            "sendmail_link": link,
        },
        target={"kind": "host", "config": config.mail.config_path},
    ) as op:
        steps = build_provision_steps(
            config,
            None,
            runtime.templates,
            member=operator,
            apparmor_complain=complain,
            sendmail_link=link,
        )
        plans = Provisioner(runtime.host, NonInteractivePrompter()).plan(steps)
        pending = [plan.step for plan in plans if plan.pending]

        if json_output:
            payload = {"converged": not pending, "steps": _plans_payload(plans)}
            console.print(
                json.dumps(payload, indent=2),
                markup=False,
                highlight=False,
                soft_wrap=True,
            )
        else:
            _render_plans("Status", plans)

        if pending:
            op.warning(
                f"{len(pending)} step(s) pending.",
                warnings=pending,
                context={"pending": len(pending)},
            )
            raise typer.Exit(code=ExitCode.FAILURE)
        op.success("Host is fully provisioned.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["RuntimeContext", "app", "main"]
