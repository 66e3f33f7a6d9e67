import os
import sys

import click

from .config import load_env_files, DeployConfig, ResourceSpec
from .errors import (
    ConcurrentRunError,
    ConfigError,
    InvalidSpecError,
    MissingCredentialError,
    RunNotFoundError,
    StepError,
)
from .logging_utils import setup_logging, get_logger
from .orchestrator import format_run, run_action
from .store import RunStore
from .template import render, render_ci_workflow


logger = get_logger(__name__)


EXIT_OK = 0
EXIT_VALIDATION = 1
EXIT_STEP_FAILURE = 2
EXIT_NOT_FOUND = 3

# 스텝 실행 전에 걸러지는 오류들
_VALIDATION_ERRORS = (MissingCredentialError, InvalidSpecError, ConfigError, ConcurrentRunError)


@click.group()
@click.option(
    "-C",
    "--chdir",
    "chdir",
    type=click.Path(file_okay=False, dir_okay=True, exists=True),
    default=".",
    help="작업 디렉토리 (기본: 현재 디렉토리)",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="로그 레벨을 DEBUG로 올립니다.",
)
@click.pass_context
def main(ctx: click.Context, chdir: str, verbose: int) -> None:
    """Terraform 으로 Azure Storage Account 를 배포/삭제하는 CLI"""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["chdir"] = chdir
    ctx.obj["verbose"] = verbose


def _load_config_from_ctx(ctx: click.Context) -> DeployConfig:
    base_dir: str = ctx.obj["chdir"]
    load_env_files(base_dir)
    cfg = DeployConfig.from_env()
    logger.debug("Config loaded: %s", cfg)
    return cfg


def _resolve(ctx: click.Context, path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(ctx.obj["chdir"], path)


def _run(ctx: click.Context, action: str, spec_path: str, dry_run: bool) -> None:
    try:
        cfg = _load_config_from_ctx(ctx)
        spec = ResourceSpec.from_file(_resolve(ctx, spec_path))
        run = run_action(cfg, action, spec, dry_run=dry_run, base_dir=ctx.obj["chdir"])
    except _VALIDATION_ERRORS as e:
        click.echo(f"[ERROR] {e}", err=True)
        sys.exit(EXIT_VALIDATION)

    click.echo(format_run(run))

    try:
        run.raise_for_status()
    except StepError as e:
        click.echo(f"[ERROR] {action} 실패: {e}", err=True)
        sys.exit(EXIT_STEP_FAILURE)


@main.command()
@click.option("--spec", "spec_path", required=True, type=str, help="리소스 스펙 파일 경로 (KEY=value)")
@click.option("--dry-run", "dry_run", is_flag=True, help="init/plan 까지만 실행하고 apply 는 하지 않습니다.")
@click.pass_context
def deploy(ctx: click.Context, spec_path: str, dry_run: bool) -> None:
    """스펙을 렌더링하고 terraform init → plan → apply 를 순서대로 실행"""
    _run(ctx, "deploy", spec_path, dry_run)


@main.command()
@click.option("--spec", "spec_path", required=True, type=str, help="리소스 스펙 파일 경로 (KEY=value)")
@click.pass_context
def destroy(ctx: click.Context, spec_path: str) -> None:
    """스펙을 렌더링하고 terraform init → destroy 를 실행"""
    _run(ctx, "destroy", spec_path, False)


@main.command()
@click.option("--run-id", "run_id", required=True, type=str, help="조회할 실행 ID")
@click.option("-a", "--all", "show_all", is_flag=True, help="스텝별 stdout 까지 출력합니다.")
@click.pass_context
def status(ctx: click.Context, run_id: str, show_all: bool) -> None:
    """저장된 실행 기록을 조회"""
    try:
        cfg = _load_config_from_ctx(ctx)
        run = RunStore(cfg.workspace_path(ctx.obj["chdir"])).load(run_id)
    except RunNotFoundError as e:
        click.echo(f"[ERROR] {e}", err=True)
        sys.exit(EXIT_NOT_FOUND)
    except ConfigError as e:
        click.echo(f"[ERROR] {e}", err=True)
        sys.exit(EXIT_VALIDATION)

    click.echo(format_run(run, show_output=show_all))


@main.command()
@click.option("--limit", "limit", type=click.IntRange(min=1), default=10, show_default=True)
@click.pass_context
def history(ctx: click.Context, limit: int) -> None:
    """최근 실행 목록을 최신순으로 출력"""
    try:
        cfg = _load_config_from_ctx(ctx)
    except ConfigError as e:
        click.echo(f"[ERROR] {e}", err=True)
        sys.exit(EXIT_VALIDATION)

    runs = RunStore(cfg.workspace_path(ctx.obj["chdir"])).list_runs(limit=limit)
    if not runs:
        click.echo("(실행 기록이 없습니다)")
        return
    for run in runs:
        suffix = " (dry-run)" if run.dry_run else ""
        click.echo(f"{run.run_id}  {run.action}{suffix}  {run.outcome}  {run.started_at}")


@main.command(name="render")
@click.option("--spec", "spec_path", required=True, type=str, help="리소스 스펙 파일 경로 (KEY=value)")
@click.pass_context
def render_cmd(ctx: click.Context, spec_path: str) -> None:
    """스펙을 검증하고 렌더링된 Terraform 문서를 출력 (실행/자격증명 불필요)"""
    try:
        spec = ResourceSpec.from_file(_resolve(ctx, spec_path))
        document = render(spec)
    except (InvalidSpecError, ConfigError) as e:
        click.echo(f"[ERROR] {e}", err=True)
        sys.exit(EXIT_VALIDATION)
    click.echo(document, nl=False)


@main.command(name="ci-workflow")
@click.option("--spec", "spec_path", required=True, type=str, help="워크플로에서 사용할 스펙 파일 경로")
def ci_workflow(spec_path: str) -> None:
    """ARM_* secret 을 사용하는 GitHub Actions 워크플로를 출력"""
    try:
        workflow = render_ci_workflow(spec_path)
    except (InvalidSpecError, ConfigError) as e:
        click.echo(f"[ERROR] {e}", err=True)
        sys.exit(EXIT_VALIDATION)
    click.echo(workflow, nl=False)


@main.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """
    현재 디렉토리에 예제 파일(spec.env.example, env.secrets.example)을 복사하는 초기화.
    """
    from importlib import resources

    base_dir: str = ctx.obj["chdir"]

    for name in ("spec.env.example", "env.secrets.example"):
        target = os.path.join(base_dir, name)
        if os.path.exists(target):
            click.echo(f"{name} 이(가) 이미 존재하여 건너뜀")
            continue
        try:
            with resources.files("tf_deploy_kit.examples").joinpath(name).open("r", encoding="utf-8") as src, open(
                target, "w", encoding="utf-8"
            ) as dst:
                dst.write(src.read())
            click.echo(f"{name} 템플릿을 생성했습니다.")
        except FileNotFoundError:
            click.echo(f"템플릿 {name} 을(를) 패키지에서 찾을 수 없습니다.", err=True)
