from __future__ import annotations

import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from textwrap import shorten
from typing import IO, Mapping, Sequence

from .errors import LaunchError
from .logging_utils import get_logger


logger = get_logger(__name__)


_SPINNER_FRAMES = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]


def _is_tty(stream) -> bool:  # noqa: ANN001
    try:
        return bool(getattr(stream, "isatty") and stream.isatty())
    except Exception:  # noqa: BLE001
        return False


def _format_elapsed(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:0.1f}s"
    minutes = int(seconds // 60)
    sec = int(seconds % 60)
    return f"{minutes}m{sec:02d}s"


class _IdleSpinner:
    """
    출력이 idle_seconds 이상 없을 때만 stderr 에 스피너 + 경과시간을 그린다.
    """

    def __init__(
        self,
        message: str,
        *,
        stream=None,  # noqa: ANN001
        idle_seconds: float = 2.0,
        interval: float = 0.12,
    ) -> None:
        self._message = message
        self._stream = stream if stream is not None else sys.stderr
        self._idle_seconds = max(float(idle_seconds), 0.0)
        self._interval = max(float(interval), 0.02)
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._started = 0.0
        self._last_activity = 0.0
        self._last_len = 0

    def touch(self) -> None:
        with self._lock:
            self._last_activity = time.monotonic()
            self._clear_locked()

    def _clear_locked(self) -> None:
        if self._last_len > 0:
            self._stream.write("\r" + (" " * self._last_len) + "\r")
            self._stream.flush()
            self._last_len = 0

    def _run(self) -> None:
        idx = 0
        while not self._stop.is_set():
            with self._lock:
                now = time.monotonic()
                if now - self._last_activity >= self._idle_seconds:
                    frame = _SPINNER_FRAMES[idx % len(_SPINNER_FRAMES)]
                    text = f"{frame} {self._message}  {_format_elapsed(now - self._started)}"
                    self._last_len = max(self._last_len, len(text))
                    self._stream.write("\r" + text)
                    self._stream.flush()
                    idx += 1
            self._stop.wait(self._interval)

    def start(self) -> None:
        self._started = self._last_activity = time.monotonic()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
        with self._lock:
            self._clear_locked()


@dataclass(frozen=True)
class StepResult:
    step_name: str
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def stderr_tail(self, lines: int = 20) -> str:
        source = self.stderr.strip() or self.stdout.strip()
        return "\n".join(source.splitlines()[-lines:])

    def to_dict(self) -> dict:
        return {
            "step_name": self.step_name,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration_ms": self.duration_ms,
            "timed_out": self.timed_out,
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "StepResult":
        return cls(
            step_name=str(data["step_name"]),
            exit_code=int(data["exit_code"]),
            stdout=str(data["stdout"]),
            stderr=str(data["stderr"]),
            duration_ms=int(data["duration_ms"]),
            timed_out=bool(data.get("timed_out", False)),
            attempts=int(data.get("attempts", 1)),
        )


def _pump(pipe: IO[str], sink: list[str], echo: IO[str] | None, on_line) -> None:  # noqa: ANN001
    try:
        for line in pipe:
            sink.append(line)
            if on_line is not None:
                on_line()
            if echo is not None:
                echo.write(line)
                echo.flush()
    finally:
        pipe.close()


def run_step(
    step_name: str,
    argv: Sequence[str],
    env: Mapping[str, str] | None = None,
    *,
    cwd: str | None = None,
    timeout: float | None = None,
    stream_output: bool = False,
    show_progress: bool = True,
    progress_idle_seconds: float = 2.0,
    progress_interval: float = 0.12,
) -> StepResult:
    """
    외부 명령 하나를 동기 실행하고 StepResult 로 기록한다.

    - exit code 를 해석하지 않는다. (0 이 아니어도 정상적인 StepResult)
    - 프로세스를 시작조차 못 한 경우에만 LaunchError 를 던진다.
    - timeout 초과 시 프로세스를 kill 하고 timed_out=True 인 결과를 돌려준다.
    - stream_output=True 이면 stdout/stderr 를 실시간으로 터미널에도 흘린다.
    """
    logger.info("[%s] 명령 실행: %s", step_name, " ".join(argv))

    started = time.monotonic()
    try:
        proc = subprocess.Popen(  # noqa: S603
            list(argv),
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            bufsize=1,
        )
    except OSError as e:
        # FileNotFoundError(미설치), PermissionError(실행 권한 없음) 등
        raise LaunchError(step_name, argv, str(e)) from e

    spinner: _IdleSpinner | None = None
    if show_progress and _is_tty(sys.stderr):
        spinner = _IdleSpinner(
            shorten(f"{step_name}: {' '.join(argv)}", width=72, placeholder="…"),
            stream=sys.stderr,
            idle_seconds=progress_idle_seconds,
            interval=progress_interval,
        )
        spinner.start()

    out_lines: list[str] = []
    err_lines: list[str] = []
    on_line = spinner.touch if spinner is not None else None
    readers = [
        threading.Thread(
            target=_pump,
            args=(proc.stdout, out_lines, sys.stdout if stream_output else None, on_line),
            daemon=True,
        ),
        threading.Thread(
            target=_pump,
            args=(proc.stderr, err_lines, sys.stderr if stream_output else None, on_line),
            daemon=True,
        ),
    ]
    for t in readers:
        t.start()

    timed_out = False
    try:
        returncode = proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        logger.warning("[%s] %s초 안에 끝나지 않아 프로세스를 종료합니다", step_name, timeout)
        proc.kill()
        returncode = proc.wait()
    finally:
        for t in readers:
            t.join(timeout=5.0)
        if spinner is not None:
            spinner.stop()

    duration_ms = int((time.monotonic() - started) * 1000)
    result = StepResult(
        step_name=step_name,
        exit_code=returncode,
        stdout="".join(out_lines),
        stderr="".join(err_lines),
        duration_ms=duration_ms,
        timed_out=timed_out,
    )

    if result.stdout:
        logger.debug("[%s] stdout: %s", step_name, shorten(result.stdout.strip(), width=2000))
    if result.stderr:
        logger.debug("[%s] stderr: %s", step_name, shorten(result.stderr.strip(), width=2000))
    logger.info("[%s] 종료 (exit=%s, %sms)", step_name, returncode, duration_ms)
    return result
