from __future__ import annotations

import os
import time
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, List, Mapping, Optional, Sequence

from . import store
from .config import DeployConfig, ResourceSpec
from .credentials import CredentialBundle, credential_source_from_config, load_credentials
from .errors import LaunchError, StepExitError, StepInterruptedError, StepTimeoutError
from .logging_utils import get_logger, mask_secrets, masked_logging
from .models import PipelineRun, PipelineState, RunError, StepDefinition
from .subprocess_utils import StepResult, run_step
from .template import render


logger = get_logger(__name__)

# CLI 등에서 사용할 수 있도록 액션 이름을 상수로 노출
ALL_ACTIONS: List[str] = ["deploy", "destroy"]

# 실행조차 못 한 스텝에 기록하는 exit code (셸의 command not found 와 동일)
LAUNCH_FAILURE_EXIT_CODE = 127
INTERRUPTED_EXIT_CODE = 130


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def new_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ") + "-" + uuid.uuid4().hex[:8]


def build_steps(action: str, cfg: DeployConfig, dry_run: bool = False) -> List[StepDefinition]:
    """
    액션별 Terraform 스텝 목록.

    - deploy : init → plan → apply (dry_run 이면 init → plan)
    - destroy: init → destroy
    """
    tf = cfg.terraform_bin
    timeout = cfg.step_timeout
    # 네트워크로 provider 를 받는 init 만 실행 실패 시 재시도 대상
    init = StepDefinition("init", [tf, "init", "-input=false", "-no-color"], retryable=True, timeout=timeout)

    if action == "deploy":
        steps = [
            init,
            StepDefinition(
                "plan",
                [tf, "plan", "-input=false", "-no-color", "-out=tfplan"],
                timeout=timeout,
            ),
        ]
        if not dry_run:
            steps.append(
                StepDefinition(
                    "apply",
                    [tf, "apply", "-input=false", "-no-color", "-auto-approve", "tfplan"],
                    timeout=timeout,
                )
            )
        return steps

    if action == "destroy":
        return [
            init,
            StepDefinition(
                "destroy",
                [tf, "destroy", "-input=false", "-no-color", "-auto-approve"],
                timeout=timeout,
            ),
        ]

    raise ValueError(f"알 수 없는 액션입니다: {action!r} ({', '.join(ALL_ACTIONS)} 중 하나)")


def build_step_env(
    credentials: CredentialBundle,
    base_env: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    env = dict(base_env if base_env is not None else os.environ)
    env.update(credentials.as_env())
    env["TF_IN_AUTOMATION"] = "1"
    return env


class Pipeline:
    """
    스텝들을 순서대로 실행하는 상태 머신.

        pending → running(0) → ... → running(n-1) → succeeded
                           └─ exit != 0 / timeout / 실행 실패 / 중단 → failed(i)

    실패한 스텝에서 즉시 멈추며 롤백은 하지 않는다. (destroy 는 별도 액션)
    """

    def __init__(
        self,
        *,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
        max_launch_retries: int = 0,
        retry_backoff: float = 1.0,
        stream_output: bool = False,
        show_progress: bool = True,
        secrets: Sequence[str] = (),
        runner: Optional[Callable[..., StepResult]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.env = env
        self.cwd = cwd
        self.max_launch_retries = max(int(max_launch_retries), 0)
        self.retry_backoff = max(float(retry_backoff), 0.0)
        self.stream_output = stream_output
        self.show_progress = show_progress
        self.secrets = list(secrets)
        self._runner = runner
        self._sleep = sleep

    def _launch(self, step: StepDefinition) -> StepResult:
        runner = self._runner or run_step
        attempts = 1 + (self.max_launch_retries if step.retryable else 0)
        delay = self.retry_backoff

        for attempt in range(1, attempts + 1):
            try:
                result = runner(
                    step.name,
                    step.argv,
                    self.env,
                    cwd=self.cwd,
                    timeout=step.timeout,
                    stream_output=self.stream_output,
                    show_progress=self.show_progress,
                )
            except LaunchError as e:
                if attempt == attempts:
                    raise
                logger.warning(
                    "[%s] 실행 시도 %d/%d 실패 (%s), %.1f초 후 재시도",
                    step.name, attempt, attempts, e.reason, delay,
                )
                self._sleep(delay)
                delay *= 2
                continue
            return replace(result, attempts=attempt)

        raise AssertionError("unreachable")

    def _mask(self, result: StepResult) -> StepResult:
        if not self.secrets:
            return result
        return replace(
            result,
            stdout=mask_secrets(result.stdout, self.secrets),
            stderr=mask_secrets(result.stderr, self.secrets),
        )

    def execute(
        self,
        steps: Sequence[StepDefinition],
        run: Optional[PipelineRun] = None,
    ) -> PipelineRun:
        if run is None:
            run = PipelineRun(run_id=new_run_id(), action="custom", started_at=_utcnow())
        if run.state != PipelineState.PENDING:
            raise ValueError(f"이미 시작된 실행입니다: {run.run_id} ({run.state.value})")

        logger.info("파이프라인 시작: %s (%s 스텝)", run.run_id, [s.name for s in steps])

        for idx, step in enumerate(steps):
            run.state = PipelineState.RUNNING
            run.current_step = idx

            try:
                result = self._mask(self._launch(step))
            except LaunchError as e:
                attempts = 1 + (self.max_launch_retries if step.retryable else 0)
                result = StepResult(
                    step_name=step.name,
                    exit_code=LAUNCH_FAILURE_EXIT_CODE,
                    stdout="",
                    stderr=mask_secrets(e.reason, self.secrets),
                    duration_ms=0,
                    attempts=attempts,
                )
                run.steps.append(result)
                self._fail(run, idx, RunError.from_exception(e, LAUNCH_FAILURE_EXIT_CODE))
                return run
            except BaseException as e:  # noqa: BLE001
                # Ctrl-C 등으로 빠져나가도 실행 기록은 failed 로 마무리한 뒤 다시 던진다.
                reason = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
                reason = mask_secrets(reason, self.secrets)
                run.steps.append(
                    StepResult(
                        step_name=step.name,
                        exit_code=INTERRUPTED_EXIT_CODE,
                        stdout="",
                        stderr=reason,
                        duration_ms=0,
                    )
                )
                exc = StepInterruptedError(step.name, reason)
                self._fail(run, idx, RunError.from_exception(exc, INTERRUPTED_EXIT_CODE))
                raise

            run.steps.append(result)

            if result.timed_out:
                exc = StepTimeoutError(step.name, step.timeout, result.stderr_tail())
                self._fail(run, idx, RunError.from_exception(exc, result.exit_code))
                return run
            if result.exit_code != 0:
                exc = StepExitError(step.name, result.exit_code, result.stderr_tail())
                self._fail(run, idx, RunError.from_exception(exc, result.exit_code))
                return run

        run.state = PipelineState.SUCCEEDED
        run.finished_at = _utcnow()
        logger.info("파이프라인 완료: %s", run.run_id)
        return run

    @staticmethod
    def _fail(run: PipelineRun, idx: int, error: RunError) -> None:
        run.state = PipelineState.FAILED
        run.current_step = idx
        run.failed_step = error.step_name
        run.error = error
        run.finished_at = _utcnow()
        logger.error("파이프라인 실패: %s (step=%s)", run.run_id, error.step_name)


def run_action(
    cfg: DeployConfig,
    action: str,
    spec: ResourceSpec,
    *,
    source=None,  # noqa: ANN001
    dry_run: bool = False,
    base_dir: str = ".",
) -> PipelineRun:
    """
    자격증명 로드 → 문서 렌더링 → 작업 디렉토리 잠금 → 스텝 실행 → 실행 기록 저장.

    자격증명/스펙 오류와 동시 실행은 예외로 올라오고,
    스텝 실패는 FAILED 상태의 PipelineRun 으로 돌아온다.
    """
    steps = build_steps(action, cfg, dry_run=dry_run)

    if source is None:
        source = credential_source_from_config(cfg)
    credentials = load_credentials(source)

    document = render(spec)

    workspace = cfg.workspace_path(base_dir)
    run = PipelineRun(
        run_id=new_run_id(),
        action=action,
        started_at=_utcnow(),
        spec=spec.to_dict(),
        dry_run=dry_run,
    )

    with store.workspace_lock(workspace, owner=run.run_id):
        run.rendered_path = store.write_document(workspace, run.run_id, document)
        logger.info("Terraform 문서 렌더링: %s", run.rendered_path)

        pipeline = Pipeline(
            env=build_step_env(credentials),
            cwd=workspace,
            max_launch_retries=cfg.max_launch_retries,
            retry_backoff=cfg.retry_backoff,
            stream_output=cfg.stream_output,
            show_progress=cfg.show_progress,
            secrets=credentials.secret_values(),
        )
        try:
            with masked_logging(credentials.secret_values()):
                pipeline.execute(steps, run)
        finally:
            store.RunStore(workspace).save(run)

    return run


def format_run(run: PipelineRun, *, show_output: bool = False) -> str:
    """
    사람이 읽기 좋은 실행 요약 텍스트.
    """
    lines: List[str] = []
    title = run.action + (" (dry-run)" if run.dry_run else "")
    lines.append(f"# Run {run.run_id}")
    lines.append(f"- action: {title}")
    lines.append(f"- outcome: {run.outcome}")
    lines.append(f"- started_at: {run.started_at}")
    lines.append(f"- finished_at: {run.finished_at or '(running)'}")
    if run.rendered_path:
        lines.append(f"- document: {run.rendered_path}")
    if run.spec:
        lines.append("")
        lines.append("## Spec")
        for key, value in run.spec.items():
            lines.append(f"- {key}: {value}")

    lines.append("")
    lines.append("## Steps")
    if not run.steps:
        lines.append("- (none)")
    for result in run.steps:
        status = "OK" if result.ok else ("TIMEOUT" if result.timed_out else "FAILED")
        retry = f", attempts={result.attempts}" if result.attempts > 1 else ""
        lines.append(
            f"- {result.step_name}: {status} (exit={result.exit_code}, {result.duration_ms}ms{retry})"
        )
        if show_output and result.stdout.strip():
            lines.append("")
            lines.append("```")
            lines.append(result.stdout.rstrip())
            lines.append("```")

    if run.error is not None:
        lines.append("")
        lines.append("## Error")
        lines.append(f"- step: {run.error.step_name}")
        lines.append(f"- kind: {run.error.kind.value}")
        if run.error.stderr_tail:
            lines.append("")
            lines.append("```")
            lines.append(run.error.stderr_tail)
            lines.append("```")

    return "\n".join(lines)
