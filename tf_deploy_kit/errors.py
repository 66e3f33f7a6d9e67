"""
errors
------

배포 파이프라인에서 발생하는 예외 계층.
CLI 는 예외 종류로 종료 코드를 결정한다.
"""

from __future__ import annotations

from typing import Sequence


class DeployKitError(Exception):
    """tf_deploy_kit 의 모든 예외의 기반 클래스."""


class ConfigError(DeployKitError):
    """환경설정/스펙 파일 형식 오류."""


class MissingCredentialError(DeployKitError):
    def __init__(self, field_name: str) -> None:
        self.field_name = field_name
        super().__init__(f"자격증명이 설정되지 않았습니다: {field_name}")


class InvalidSpecError(DeployKitError):
    def __init__(self, field_name: str, reason: str) -> None:
        self.field_name = field_name
        self.reason = reason
        super().__init__(f"리소스 스펙이 올바르지 않습니다: {field_name} ({reason})")


class ConcurrentRunError(DeployKitError):
    def __init__(self, lock_path: str, holder: str = "") -> None:
        self.lock_path = lock_path
        self.holder = holder
        detail = f" (holder: {holder})" if holder else ""
        super().__init__(
            f"다른 실행이 작업 디렉토리를 사용 중입니다: {lock_path}{detail}"
        )


class RunNotFoundError(DeployKitError):
    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"실행 기록을 찾을 수 없습니다: {run_id}")


class StepError(DeployKitError):
    """특정 스텝에서 발생한 실패. step_name 과 stderr 요약을 함께 가진다."""

    def __init__(self, step_name: str, message: str, stderr_tail: str = "") -> None:
        self.step_name = step_name
        self.stderr_tail = stderr_tail
        detail = f"\nstderr:\n{stderr_tail}" if stderr_tail else ""
        super().__init__(f"[{step_name}] {message}{detail}")


class LaunchError(StepError):
    def __init__(self, step_name: str, argv: Sequence[str], reason: str = "") -> None:
        self.argv = list(argv)
        self.reason = reason
        program = argv[0] if argv else "(empty)"
        message = f"명령을 실행할 수 없습니다: {program}"
        if reason:
            message += f" ({reason})"
        super().__init__(step_name, message)


class StepTimeoutError(StepError, TimeoutError):
    def __init__(self, step_name: str, timeout: float | None, stderr_tail: str = "") -> None:
        self.timeout = timeout
        super().__init__(
            step_name,
            f"명령 실행이 {timeout}초 안에 끝나지 않아 강제 종료했습니다",
            stderr_tail,
        )


class StepExitError(StepError):
    def __init__(self, step_name: str, exit_code: int, stderr_tail: str = "") -> None:
        self.exit_code = exit_code
        super().__init__(step_name, f"명령 실행 실패 (exit={exit_code})", stderr_tail)


class StepInterruptedError(StepError):
    """스텝 실행 중 Ctrl-C 등으로 파이프라인이 중단됨."""

    def __init__(self, step_name: str, reason: str = "") -> None:
        self.reason = reason
        message = "실행이 중단되었습니다"
        if reason:
            message += f" ({reason})"
        super().__init__(step_name, message)
