"""
credentials
-----------

Terraform azurerm provider 가 사용하는 서비스 프린시펄 자격증명
(ARM_CLIENT_ID / ARM_CLIENT_SECRET / ARM_TENANT_ID / ARM_SUBSCRIPTION_ID)을
환경변수 또는 Secret Manager 에서 읽어 불변 번들로 만든다.

번들은 실행 시작 시 한 번만 만들어 orchestrator 에 넘기며,
디스크나 로그에 기록하지 않는다.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

from google.api_core.exceptions import NotFound
from google.cloud import secretmanager

from .config import DeployConfig
from .errors import ConfigError, MissingCredentialError
from .logging_utils import MASK, get_logger


logger = get_logger(__name__)


# 검사 순서가 곧 오류 메시지 순서다.
CREDENTIAL_ENV_VARS = {
    "client_id": "ARM_CLIENT_ID",
    "client_secret": "ARM_CLIENT_SECRET",
    "tenant_id": "ARM_TENANT_ID",
    "subscription_id": "ARM_SUBSCRIPTION_ID",
}


@dataclass(frozen=True)
class CredentialBundle:
    client_id: str
    client_secret: str
    tenant_id: str
    subscription_id: str

    def __post_init__(self) -> None:
        for f in fields(self):
            if not getattr(self, f.name):
                raise MissingCredentialError(CREDENTIAL_ENV_VARS[f.name])

    def __repr__(self) -> str:
        masked = ", ".join(f"{f.name}={MASK}" for f in fields(self))
        return f"CredentialBundle({masked})"

    __str__ = __repr__

    def as_env(self) -> dict[str, str]:
        return {env: getattr(self, attr) for attr, env in CREDENTIAL_ENV_VARS.items()}

    def secret_values(self) -> list[str]:
        return [getattr(self, f.name) for f in fields(self)]


class EnvCredentialSource:
    """
    환경변수(기본: os.environ)에서 자격증명을 읽는다.
    .env/.env.secrets 는 config.load_env_files 로 미리 로드되어 있어야 한다.
    """

    name = "env"

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self._environ = environ if environ is not None else os.environ

    def get(self, key: str) -> Optional[str]:
        return self._environ.get(key)


class SecretManagerCredentialSource:
    """
    GCP Secret Manager 의 최신 버전 값을 자격증명으로 사용한다.
    secret id 는 `<prefix><ARM_...>` 형식이다.
    """

    name = "gcp-secret-manager"

    def __init__(self, project_id: str, prefix: str = "", client=None) -> None:  # noqa: ANN001
        self._project_id = project_id
        self._prefix = prefix
        self._client = client

    def _get_client(self):  # noqa: ANN202
        if self._client is None:
            self._client = secretmanager.SecretManagerServiceClient()
        return self._client

    def get(self, key: str) -> Optional[str]:
        secret_id = f"{self._prefix}{key}" if self._prefix else key
        name = f"projects/{self._project_id}/secrets/{secret_id}/versions/latest"
        logger.debug("Secret 조회: %s", name)
        try:
            response = self._get_client().access_secret_version(name=name)
        except NotFound:
            logger.debug("Secret 없음: %s", name)
            return None
        return response.payload.data.decode("utf-8").strip()


def credential_source_from_config(cfg: DeployConfig):  # noqa: ANN201
    if cfg.credential_source == "env":
        return EnvCredentialSource()
    if cfg.credential_source == "gcp-secret-manager":
        if not cfg.secret_manager_project:
            raise ConfigError("SECRET_MANAGER_PROJECT 가 설정되지 않았습니다.")
        return SecretManagerCredentialSource(
            cfg.secret_manager_project,
            prefix=cfg.secret_prefix,
        )
    raise ConfigError(f"알 수 없는 CREDENTIAL_SOURCE 값입니다: {cfg.credential_source!r}")


def load_credentials(source=None) -> CredentialBundle:  # noqa: ANN001
    """
    네 개의 자격증명을 고정 순서로 읽는다.
    처음으로 비어 있는 항목에서 MissingCredentialError 를 던진다. (재시도 없음)
    """
    source = source if source is not None else EnvCredentialSource()
    values: dict[str, str] = {}
    for attr, env_name in CREDENTIAL_ENV_VARS.items():
        val = source.get(env_name)
        if not val:
            raise MissingCredentialError(env_name)
        values[attr] = val

    bundle = CredentialBundle(**values)
    logger.info(
        "자격증명 로드 완료 (source=%s, tenant/subscription 포함 4개 항목)",
        getattr(source, "name", type(source).__name__),
    )
    return bundle
