from __future__ import annotations

import os

import pytest
from click.testing import CliRunner

from tf_deploy_kit import orchestrator
from tf_deploy_kit.cli import main
from tf_deploy_kit.store import RunStore
from tf_deploy_kit.subprocess_utils import StepResult


SPEC = (
    "RESOURCE_GROUP_NAME=rg1\n"
    "LOCATION=eastus\n"
    "STORAGE_ACCOUNT_NAME=acct123\n"
    "ACCOUNT_TIER=Standard\n"
    "REPLICATION_TYPE=LRS\n"
)


@pytest.fixture
def project(tmp_path, clean_env: pytest.MonkeyPatch, arm_env: dict[str, str]):  # noqa: ANN201
    for key, value in arm_env.items():
        clean_env.setenv(key, value)
    clean_env.setenv("CLI_SHOW_PROGRESS", "false")
    (tmp_path / "spec.env").write_text(SPEC, encoding="utf-8")
    return tmp_path


def _fake_runner(calls: list[str], fail: str | None = None):  # noqa: ANN202
    def runner(step_name, argv, env=None, **kwargs):  # noqa: ANN001, ANN003
        calls.append(step_name)
        code = 1 if step_name == fail else 0
        return StepResult(step_name, code, "", "Error: quota exceeded\n" if code else "", 3)

    return runner


def _invoke(project, *args: str):  # noqa: ANN001, ANN202
    return CliRunner().invoke(main, ["-C", str(project), *args])


def test_deploy_success(project, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []
    monkeypatch.setattr(orchestrator, "run_step", _fake_runner(calls))

    result = _invoke(project, "deploy", "--spec", "spec.env")

    assert result.exit_code == 0, result.output
    assert calls == ["init", "plan", "apply"]
    assert "Succeeded" in result.output


def test_deploy_dry_run_skips_apply(project, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []
    monkeypatch.setattr(orchestrator, "run_step", _fake_runner(calls))

    result = _invoke(project, "deploy", "--spec", "spec.env", "--dry-run")

    assert result.exit_code == 0, result.output
    assert calls == ["init", "plan"]
    assert "(dry-run)" in result.output


def test_deploy_step_failure_exits_2(project, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []
    monkeypatch.setattr(orchestrator, "run_step", _fake_runner(calls, fail="plan"))

    result = _invoke(project, "deploy", "--spec", "spec.env")

    assert result.exit_code == 2
    assert calls == ["init", "plan"]
    assert "quota exceeded" in result.output


def test_deploy_missing_credential_exits_1(project, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []
    monkeypatch.setattr(orchestrator, "run_step", _fake_runner(calls))
    monkeypatch.delenv("ARM_CLIENT_SECRET")

    result = _invoke(project, "deploy", "--spec", "spec.env")

    assert result.exit_code == 1
    assert "ARM_CLIENT_SECRET" in result.output
    assert calls == []


def test_deploy_invalid_spec_exits_1(project, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []
    monkeypatch.setattr(orchestrator, "run_step", _fake_runner(calls))
    (project / "bad.env").write_text(SPEC.replace("acct123", "ACCT-123"), encoding="utf-8")

    result = _invoke(project, "deploy", "--spec", "bad.env")

    assert result.exit_code == 1
    assert "storage_account_name" in result.output
    assert calls == []


def test_deploy_missing_spec_file_exits_1(project) -> None:
    result = _invoke(project, "deploy", "--spec", "nope.env")

    assert result.exit_code == 1


def test_deploy_while_locked_exits_1(project, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []
    monkeypatch.setattr(orchestrator, "run_step", _fake_runner(calls))
    (project / ".tfdeploy").mkdir()
    (project / ".tfdeploy" / ".lock").write_text("other\n", encoding="utf-8")

    result = _invoke(project, "deploy", "--spec", "spec.env")

    assert result.exit_code == 1
    assert calls == []


def test_destroy_runs_init_and_destroy(project, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []
    monkeypatch.setattr(orchestrator, "run_step", _fake_runner(calls))

    result = _invoke(project, "destroy", "--spec", "spec.env")

    assert result.exit_code == 0, result.output
    assert calls == ["init", "destroy"]


def test_status_found_and_not_found(project, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(orchestrator, "run_step", _fake_runner([]))
    assert _invoke(project, "deploy", "--spec", "spec.env").exit_code == 0
    (run,) = RunStore(os.path.join(str(project), ".tfdeploy")).list_runs()

    found = _invoke(project, "status", "--run-id", run.run_id)
    missing = _invoke(project, "status", "--run-id", "does-not-exist")

    assert found.exit_code == 0
    assert run.run_id in found.output
    assert "Succeeded" in found.output
    assert missing.exit_code == 3


def test_history_lists_runs(project, monkeypatch: pytest.MonkeyPatch) -> None:
    assert "(실행 기록이 없습니다)" in _invoke(project, "history").output

    monkeypatch.setattr(orchestrator, "run_step", _fake_runner([], fail="apply"))
    _invoke(project, "deploy", "--spec", "spec.env")

    result = _invoke(project, "history")

    assert result.exit_code == 0
    assert "FailedAt(apply)" in result.output


def test_render_prints_document(project) -> None:
    result = _invoke(project, "render", "--spec", "spec.env")

    assert result.exit_code == 0
    assert '"acct123"' in result.output
    assert 'resource "azurerm_storage_account"' in result.output


def test_ci_workflow_prints_yaml(project) -> None:
    result = _invoke(project, "ci-workflow", "--spec", "infra/spec.env")

    assert result.exit_code == 0
    assert "deploy-tf deploy --spec infra/spec.env" in result.output


def test_ci_workflow_treats_template_syntax_as_data(project) -> None:
    result = _invoke(project, "ci-workflow", "--spec", "{{ spec_path }}")

    assert result.exit_code == 0, result.output
    assert "deploy-tf deploy --spec '{{ spec_path }}'" in result.output


@pytest.mark.parametrize("spec_path", ["infra/spec.env\necho pwned", "${{ secrets.ARM_CLIENT_SECRET }}"])
def test_ci_workflow_rejects_unsafe_path_exits_1(project, spec_path: str) -> None:
    result = _invoke(project, "ci-workflow", "--spec", spec_path)

    assert result.exit_code == 1
    assert "spec_path" in result.output
    assert result.exception is None or isinstance(result.exception, SystemExit)


def test_init_writes_examples_once(project) -> None:
    first = _invoke(project, "init")
    second = _invoke(project, "init")

    assert first.exit_code == 0
    assert (project / "spec.env.example").exists()
    assert (project / "env.secrets.example").exists()
    assert "건너뜀" in second.output
