"""
pytest 설정:

로컬 작업 환경에 설치된 다른 버전의 tf_deploy_kit 패키지가 존재할 때,
`pytest` 실행 시 site-packages 쪽이 먼저 import 되어 테스트가 깨질 수 있다.

테스트는 항상 현재 레포의 소스를 대상으로 해야 하므로, repo root 를 sys.path 최상단에 고정한다.
"""

from __future__ import annotations

import os
import sys

import pytest


ARM_ENV = {
    "ARM_CLIENT_ID": "client-id-123",
    "ARM_CLIENT_SECRET": "s3cr3t-value",
    "ARM_TENANT_ID": "tenant-456",
    "ARM_SUBSCRIPTION_ID": "sub-789",
}


def pytest_configure() -> None:
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """
    배포 관련 환경변수를 모두 지운 상태에서 테스트한다.
    """
    for key in list(os.environ):
        if key.startswith("ARM_") or key in {
            "TERRAFORM_BIN",
            "DEPLOY_WORKSPACE",
            "STEP_TIMEOUT_SECONDS",
            "MAX_LAUNCH_RETRIES",
            "RETRY_BACKOFF_SECONDS",
            "STREAM_OUTPUT",
            "CLI_SHOW_PROGRESS",
            "CREDENTIAL_SOURCE",
            "SECRET_MANAGER_PROJECT",
            "SECRET_PREFIX",
        }:
            monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def arm_env() -> dict[str, str]:
    return dict(ARM_ENV)
