"""
store
-----

작업 디렉토리(workspace)의 잠금과 실행 기록(PipelineRun) 저장을 담당한다.

레이아웃:
    <workspace>/.lock              실행 중 잠금 마커
    <workspace>/main.tf            현재 렌더링된 Terraform 문서 (+ terraform state)
    <workspace>/runs/<id>.tf       실행별 렌더링 사본
    <workspace>/runs/<id>.json     실행 기록
"""

from __future__ import annotations

import json
import os
from contextlib import contextmanager
from typing import Iterator, List

from .errors import ConcurrentRunError, ConfigError, RunNotFoundError
from .logging_utils import get_logger
from .models import PipelineRun


logger = get_logger(__name__)

LOCK_NAME = ".lock"
RUNS_DIR = "runs"
DOCUMENT_NAME = "main.tf"


@contextmanager
def workspace_lock(workspace: str, owner: str) -> Iterator[str]:
    """
    O_CREAT|O_EXCL 로 잠금 파일을 만든다. 이미 있으면 ConcurrentRunError.
    with 블록을 벗어나면 (예외 포함) 잠금을 해제한다.
    """
    os.makedirs(workspace, exist_ok=True)
    lock_path = os.path.join(workspace, LOCK_NAME)
    try:
        fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError as e:
        holder = ""
        try:
            with open(lock_path, "r", encoding="utf-8") as f:
                holder = f.read().strip()
        except OSError:
            pass
        raise ConcurrentRunError(lock_path, holder) from e

    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(f"{owner} pid={os.getpid()}\n")
    logger.debug("작업 디렉토리 잠금: %s", lock_path)

    try:
        yield lock_path
    finally:
        try:
            os.remove(lock_path)
        except FileNotFoundError:
            logger.warning("잠금 파일이 이미 삭제되었습니다: %s", lock_path)
        logger.debug("작업 디렉토리 잠금 해제: %s", lock_path)


def write_document(workspace: str, run_id: str, document: str) -> str:
    """
    렌더링 결과를 workspace/main.tf 와 runs/<run_id>.tf 에 기록하고
    실행별 사본 경로를 반환한다.
    """
    runs_dir = os.path.join(workspace, RUNS_DIR)
    os.makedirs(runs_dir, exist_ok=True)

    with open(os.path.join(workspace, DOCUMENT_NAME), "w", encoding="utf-8") as f:
        f.write(document)

    copy_path = os.path.join(runs_dir, f"{run_id}.tf")
    with open(copy_path, "w", encoding="utf-8") as f:
        f.write(document)
    return copy_path


class RunStore:
    def __init__(self, workspace: str) -> None:
        self.workspace = workspace
        self.runs_dir = os.path.join(workspace, RUNS_DIR)

    def _path(self, run_id: str) -> str:
        # run_id 로 경로 탈출을 막는다.
        if not run_id or os.sep in run_id or run_id in {".", ".."} or (os.altsep and os.altsep in run_id):
            raise RunNotFoundError(run_id)
        return os.path.join(self.runs_dir, f"{run_id}.json")

    def save(self, run: PipelineRun) -> str:
        os.makedirs(self.runs_dir, exist_ok=True)
        path = self._path(run.run_id)
        tmp = path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(run.to_dict(), f, ensure_ascii=False, indent=2)
            f.write("\n")
        os.replace(tmp, path)
        logger.debug("실행 기록 저장: %s", path)
        return path

    def load(self, run_id: str) -> PipelineRun:
        path = self._path(run_id)
        if not os.path.isfile(path):
            raise RunNotFoundError(run_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError(f"JSON 객체가 아닙니다: {type(data).__name__}")
            return PipelineRun.from_dict(data)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ConfigError(f"실행 기록을 읽을 수 없습니다: {path} ({e})") from e

    def list_runs(self, limit: int | None = None) -> List[PipelineRun]:
        """
        최신 실행부터 정렬해 반환한다.
        """
        if not os.path.isdir(self.runs_dir):
            return []
        runs: List[PipelineRun] = []
        for name in os.listdir(self.runs_dir):
            if not name.endswith(".json"):
                continue
            try:
                runs.append(self.load(name[: -len(".json")]))
            except ConfigError as e:
                logger.warning("손상된 실행 기록을 건너뜁니다: %s", e)
        runs.sort(key=lambda r: (r.started_at, r.run_id), reverse=True)
        if limit is not None:
            runs = runs[:limit]
        return runs
