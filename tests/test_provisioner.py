"""Tests for the fail-fast provisioner and the provision sequence."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

import pytest
from conftest import FakeHost, ScriptedPrompter

from sshalert.config import AppConfig
from sshalert.converge import (
    ConvergenceStep,
    Provisioner,
    StepStatus,
    build_provision_steps,
)
from sshalert.converge.engine import ALREADY_CONVERGED, DECLINED
from sshalert.credentials import Credentials
from sshalert.errors import PackageManagerError
from sshalert.templates import TemplateEngine

CREDENTIALS = Credentials(
    from_address="alerts@example.com",
    user_address="alerts@example.com",
    secret='s3cr"et',
    recipient_address="admin@example.com",
)

EXPECTED_ORDER = [
    "ensure-group:msmtp",
    "ensure-group-member:alice@msmtp",
    "ensure-directory:/var/log/msmtp",
    "ensure-file:/var/log/msmtp/msmtp.log",
    "ensure-package:msmtp",
    "ensure-package:msmtp-mta",
    "render-config:/etc/msmtprc",
    "ensure-symlink:/usr/sbin/sendmail",
    "render-config:/usr/local/bin/ssh-login-alert.sh",
    "ensure-hook:/etc/profile.d/ssh-login-alert.sh",
]


@dataclass
class ListRecorder:
    entries: list[tuple[str, str, str | None]]

    def add_step(self, step_id: str, *, status: str, detail: str | None = None) -> None:
        self.entries.append((step_id, status, detail))


def _steps(
    config: AppConfig,
    templates: TemplateEngine,
    *,
    apparmor_complain: bool = False,
    sendmail_link: bool = True,
) -> list[ConvergenceStep]:
    return build_provision_steps(
        config,
        CREDENTIALS,
        templates,
        member="alice",
        apparmor_complain=apparmor_complain,
        sendmail_link=sendmail_link,
    )


def test_provision_sequence_order(app_config: AppConfig, templates: TemplateEngine) -> None:
    """Steps follow the fixed dependency order."""
    assert [step.name for step in _steps(app_config, templates)] == EXPECTED_ORDER


def test_first_run_converges_host(
    fake_host: FakeHost,
    prompter: ScriptedPrompter,
    app_config: AppConfig,
    templates: TemplateEngine,
) -> None:
    """A fresh host ends up fully provisioned."""
    result = Provisioner(fake_host, prompter).run(_steps(app_config, templates))

    assert result.completed
    assert result.applied == len(EXPECTED_ORDER)
    assert fake_host.group_members("msmtp") == {"alice"}
    log_dir = fake_host.nodes[Path("/var/log/msmtp")]
    assert (log_dir.kind, log_dir.owner, log_dir.group, log_dir.mode) == (
        "directory",
        "root",
        "msmtp",
        0o2775,
    )
    log_file = fake_host.nodes[Path("/var/log/msmtp/msmtp.log")]
    assert (log_file.group, log_file.mode) == ("msmtp", 0o664)
    assert {"msmtp", "msmtp-mta"} <= fake_host.installed
    assert 'password "s3cr\\"et"' in fake_host.text(Path("/etc/msmtprc"))
    assert fake_host.nodes[Path("/etc/msmtprc")].mode == 0o644
    assert fake_host.nodes[Path("/usr/sbin/sendmail")].link_target == "/usr/bin/msmtp"
    assert fake_host.nodes[Path("/usr/local/bin/ssh-login-alert.sh")].mode == 0o755
    hook = fake_host.text(Path("/etc/profile.d/ssh-login-alert.sh"))
    assert 'if [ -n "$SSH_CLIENT" ]; then /usr/local/bin/ssh-login-alert.sh; fi' in hook


def test_second_run_only_rewrites_rendered_files(
    fake_host: FakeHost,
    prompter: ScriptedPrompter,
    app_config: AppConfig,
    templates: TemplateEngine,
) -> None:
    """Rerunning with identical input skips everything except byte-identical renders."""
    provisioner = Provisioner(fake_host, prompter)
    provisioner.run(_steps(app_config, templates))
    before = {path: node.content for path, node in fake_host.nodes.items()}
    fake_host.mutations.clear()

    result = provisioner.run(_steps(app_config, templates))

    assert result.completed
    applied = [o for o in result.outcomes if o.status is StepStatus.APPLIED]
    assert [o.step for o in applied] == [
        "render-config:/etc/msmtprc",
        "render-config:/usr/local/bin/ssh-login-alert.sh",
    ]
    assert all(o.detail == "unchanged" for o in applied)
    skipped = [o for o in result.outcomes if o.status is StepStatus.SKIPPED]
    assert all(o.reason == ALREADY_CONVERGED and o.detail is None for o in skipped)
    assert fake_host.mutation_names() == ["write_atomic", "write_atomic"]
    assert {path: node.content for path, node in fake_host.nodes.items()} == before


def test_failure_halts_before_later_steps(
    fake_host: FakeHost,
    prompter: ScriptedPrompter,
    app_config: AppConfig,
    templates: TemplateEngine,
) -> None:
    """A failing step stops the run; nothing after it is invoked."""
    fake_host.fail_on["install_package"] = PackageManagerError(
        "apt-get install -y msmtp failed (exit 100): unable to locate package",
        returncode=100,
    )

    result = Provisioner(fake_host, prompter).run(_steps(app_config, templates))

    assert not result.completed
    assert result.failed_at == "ensure-package:msmtp"
    assert result.reason is not None and "exit 100" in result.reason
    assert [o.step for o in result.outcomes] == EXPECTED_ORDER[:5]
    assert result.outcomes[-1].status is StepStatus.FAILED
    assert result.outcomes[-1].reason == result.reason
    assert result.outcomes[-1].detail is None
    assert fake_host.mutation_names()[-1] == "install_package"
    assert fake_host.mutation_names().count("install_package") == 1
    assert Path("/etc/msmtprc") not in fake_host.nodes


def test_rerun_after_failure_resumes(
    fake_host: FakeHost,
    prompter: ScriptedPrompter,
    app_config: AppConfig,
    templates: TemplateEngine,
) -> None:
    """Steps converged before a failure are skipped on the next run."""
    provisioner = Provisioner(fake_host, prompter)
    fake_host.fail_on["install_package"] = PackageManagerError("boom", returncode=1)
    provisioner.run(_steps(app_config, templates))
    fake_host.fail_on.clear()

    result = provisioner.run(_steps(app_config, templates))

    assert result.completed
    statuses = [o.status for o in result.outcomes[:4]]
    assert statuses == [StepStatus.SKIPPED] * 4
    assert result.outcomes[4].status is StepStatus.APPLIED


def test_declined_confirmation_fails_without_mutation(
    fake_host: FakeHost,
    app_config: AppConfig,
    templates: TemplateEngine,
) -> None:
    """Refusing a confirmation is a failure and the step is not applied."""
    prompter = ScriptedPrompter(confirmations=[False])

    result = Provisioner(fake_host, prompter).run(_steps(app_config, templates))

    assert result.failed_at == "ensure-package:msmtp"
    assert result.reason == DECLINED
    assert "install_package" not in fake_host.mutation_names()
    assert prompter.asked == ["Package msmtp is not installed. Install it now?"]


def test_confirmation_only_asked_when_work_is_needed(
    fake_host: FakeHost,
    prompter: ScriptedPrompter,
    app_config: AppConfig,
    templates: TemplateEngine,
) -> None:
    """Converged steps never prompt the operator."""
    fake_host.installed.update({"msmtp", "msmtp-mta"})
    fake_host.seed_symlink(Path("/usr/sbin/sendmail"), "/usr/bin/msmtp")

    result = Provisioner(fake_host, prompter).run(_steps(app_config, templates))

    assert result.completed
    assert prompter.asked == []


def test_recorder_receives_each_outcome_in_order(
    fake_host: FakeHost,
    prompter: ScriptedPrompter,
    app_config: AppConfig,
    templates: TemplateEngine,
) -> None:
    """Every outcome, including the failing one, reaches the recorder."""
    recorder = ListRecorder(entries=[])
    fake_host.fail_on["replace_symlink"] = PackageManagerError("nope")

    result = Provisioner(fake_host, prompter, recorder=recorder).run(
        _steps(app_config, templates)
    )

    assert [entry[0] for entry in recorder.entries] == [o.step for o in result.outcomes]
    assert recorder.entries[-1] == ("ensure-symlink:/usr/sbin/sendmail", "failed", "nope")


@dataclass(frozen=True)
class ExplodingStep(ConvergenceStep):
    kind: ClassVar[str] = "explode"

    @property
    def target(self) -> str:
        return "here"

    def needs_work(self, host: object) -> bool:
        return True

    def apply(self, host: object) -> str | None:
        raise ValueError("boom")


def test_unexpected_exception_becomes_failed_outcome(
    fake_host: FakeHost,
    prompter: ScriptedPrompter,
) -> None:
    """Non-host errors are still reported as a failed step."""
    result = Provisioner(fake_host, prompter).run([ExplodingStep()])

    assert not result.completed
    assert result.outcomes[0].reason == "unexpected error: boom"
    assert result.outcomes[0].detail is None


def test_plan_reports_pending_without_mutating(
    fake_host: FakeHost,
    prompter: ScriptedPrompter,
    app_config: AppConfig,
    templates: TemplateEngine,
) -> None:
    """Planning only runs checks."""
    fake_host.groups["msmtp"] = {"alice"}

    plans = Provisioner(fake_host, prompter).plan(_steps(app_config, templates))

    assert fake_host.mutations == []
    pending = {plan.step: plan.pending for plan in plans}
    assert pending["ensure-group:msmtp"] is False
    assert pending["ensure-group-member:alice@msmtp"] is False
    assert pending["ensure-package:msmtp"] is True
    assert prompter.asked == []


def test_plan_reports_wrong_path_kind_as_error(
    fake_host: FakeHost,
    prompter: ScriptedPrompter,
    app_config: AppConfig,
    templates: TemplateEngine,
) -> None:
    """A file where the log directory belongs is surfaced, not clobbered."""
    fake_host.seed_file(Path("/var/log/msmtp"))

    plans = Provisioner(fake_host, prompter).plan(_steps(app_config, templates))

    by_step = {plan.step: plan for plan in plans}
    assert by_step["ensure-directory:/var/log/msmtp"].error is not None


def test_apparmor_complain_sequence(
    fake_host: FakeHost,
    prompter: ScriptedPrompter,
    app_config: AppConfig,
    templates: TemplateEngine,
) -> None:
    """Complain mode adds apparmor-utils, the mode switch and the rc.local hook."""
    fake_host.seed_file(
        Path("/etc/rc.local"),
        "#!/bin/sh -e\n/usr/local/bin/existing\nexit 0\n",
        mode=0o755,
    )
    steps = _steps(app_config, templates, apparmor_complain=True, sendmail_link=False)
    names = [step.name for step in steps]
    assert names[6:9] == [
        "ensure-package:apparmor-utils",
        "ensure-complain-mode:/etc/apparmor.d/usr.bin.msmtp",
        "ensure-hook:/etc/rc.local",
    ]
    assert "ensure-symlink:/usr/sbin/sendmail" not in names

    result = Provisioner(fake_host, prompter).run(steps)

    assert result.completed
    assert fake_host.profile_mode("/usr/bin/msmtp") == "complain"
    assert fake_host.text(Path("/etc/rc.local")) == (
        "#!/bin/sh -e\n"
        "/usr/local/bin/existing\n"
        "aa-complain /etc/apparmor.d/usr.bin.msmtp\n"
        "\n"
        "exit 0\n"
    )
    alert = fake_host.text(Path("/usr/local/bin/ssh-login-alert.sh"))
    assert "/usr/bin/msmtp -t admin@example.com" in alert


@pytest.mark.parametrize("existing_mode", [0o600, 0o755])
def test_log_file_permission_drift_is_repaired(
    fake_host: FakeHost,
    prompter: ScriptedPrompter,
    app_config: AppConfig,
    templates: TemplateEngine,
    existing_mode: int,
) -> None:
    """An existing log file keeps its content while owner and mode are corrected."""
    fake_host.groups["msmtp"] = {"alice"}
    fake_host.seed_directory(Path("/var/log/msmtp"), mode=0o2775, group="msmtp")
    fake_host.seed_file(Path("/var/log/msmtp/msmtp.log"), "old entries\n", mode=existing_mode)

    result = Provisioner(fake_host, prompter).run(_steps(app_config, templates)[:4])

    assert result.outcomes[3].status is StepStatus.APPLIED
    node = fake_host.nodes[Path("/var/log/msmtp/msmtp.log")]
    assert (node.content, node.group, node.mode) == ("old entries\n", "msmtp", 0o664)
    assert "create_empty_file" not in fake_host.mutation_names()
