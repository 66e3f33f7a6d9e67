"""
models
------

파이프라인 실행 단위(StepDefinition)와 실행 기록(PipelineRun).
PipelineRun 은 JSON 으로 손실 없이 저장/복원된다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping, Optional, Sequence

from .errors import LaunchError, StepError, StepExitError, StepInterruptedError, StepTimeoutError
from .subprocess_utils import StepResult


class PipelineState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ErrorKind(str, Enum):
    STEP_EXIT = "step_exit"
    TIMEOUT = "timeout"
    LAUNCH = "launch"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True)
class StepDefinition:
    name: str
    argv: Sequence[str]
    retryable: bool = False
    timeout: Optional[float] = None


@dataclass(frozen=True)
class RunError:
    kind: ErrorKind
    step_name: str
    exit_code: int
    message: str
    stderr_tail: str = ""
    argv: Sequence[str] = ()
    timeout: Optional[float] = None

    @classmethod
    def from_exception(cls, exc: StepError, exit_code: int) -> "RunError":
        stderr_tail = exc.stderr_tail
        if isinstance(exc, StepTimeoutError):
            kind = ErrorKind.TIMEOUT
        elif isinstance(exc, LaunchError):
            kind = ErrorKind.LAUNCH
            stderr_tail = exc.reason
        elif isinstance(exc, StepInterruptedError):
            kind = ErrorKind.INTERRUPTED
            stderr_tail = exc.reason
        else:
            kind = ErrorKind.STEP_EXIT
        return cls(
            kind=kind,
            step_name=exc.step_name,
            exit_code=exit_code,
            message=str(exc),
            stderr_tail=stderr_tail,
            argv=tuple(getattr(exc, "argv", ())),
            timeout=getattr(exc, "timeout", None),
        )

    def to_exception(self) -> StepError:
        if self.kind == ErrorKind.TIMEOUT:
            return StepTimeoutError(self.step_name, self.timeout, self.stderr_tail)
        if self.kind == ErrorKind.LAUNCH:
            return LaunchError(self.step_name, self.argv, self.stderr_tail)
        if self.kind == ErrorKind.INTERRUPTED:
            return StepInterruptedError(self.step_name, self.stderr_tail)
        return StepExitError(self.step_name, self.exit_code, self.stderr_tail)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "step_name": self.step_name,
            "exit_code": self.exit_code,
            "message": self.message,
            "stderr_tail": self.stderr_tail,
            "argv": list(self.argv),
            "timeout": self.timeout,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "RunError":
        return cls(
            kind=ErrorKind(data["kind"]),
            step_name=str(data["step_name"]),
            exit_code=int(data["exit_code"]),
            message=str(data["message"]),
            stderr_tail=str(data.get("stderr_tail", "")),
            argv=tuple(data.get("argv") or ()),
            timeout=data.get("timeout"),
        )


@dataclass
class PipelineRun:
    """
    한 번의 deploy/destroy 실행 기록.

    steps 는 실행 순서대로 쌓이며, 실패한 스텝 이후의 결과는 절대 포함되지 않는다.
    """

    run_id: str
    action: str
    started_at: str
    state: PipelineState = PipelineState.PENDING
    current_step: Optional[int] = None
    steps: List[StepResult] = field(default_factory=list)
    failed_step: Optional[str] = None
    error: Optional[RunError] = None
    finished_at: Optional[str] = None
    rendered_path: Optional[str] = None
    spec: dict = field(default_factory=dict)
    dry_run: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state == PipelineState.SUCCEEDED

    @property
    def outcome(self) -> str:
        if self.state == PipelineState.FAILED:
            return f"FailedAt({self.failed_step})"
        if self.state == PipelineState.SUCCEEDED:
            return "Succeeded"
        return self.state.value.capitalize()

    def raise_for_status(self) -> None:
        if self.state == PipelineState.FAILED and self.error is not None:
            raise self.error.to_exception()

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "action": self.action,
            "started_at": self.started_at,
            "state": self.state.value,
            "current_step": self.current_step,
            "steps": [s.to_dict() for s in self.steps],
            "failed_step": self.failed_step,
            "error": self.error.to_dict() if self.error is not None else None,
            "finished_at": self.finished_at,
            "rendered_path": self.rendered_path,
            "spec": dict(self.spec),
            "dry_run": self.dry_run,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "PipelineRun":
        error = data.get("error")
        return cls(
            run_id=str(data["run_id"]),
            action=str(data["action"]),
            started_at=str(data["started_at"]),
            state=PipelineState(data["state"]),
            current_step=data.get("current_step"),
            steps=[StepResult.from_dict(s) for s in data.get("steps", [])],
            failed_step=data.get("failed_step"),
            error=RunError.from_dict(error) if error else None,
            finished_at=data.get("finished_at"),
            rendered_path=data.get("rendered_path"),
            spec=dict(data.get("spec") or {}),
            dry_run=bool(data.get("dry_run", False)),
        )
