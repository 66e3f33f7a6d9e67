from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Optional, List

from dotenv import dotenv_values, load_dotenv

from .errors import ConfigError


ENV_FILES_DEFAULT_ORDER = [".env", ".env.infra", ".env.secrets"]

CREDENTIAL_SOURCES = ("env", "gcp-secret-manager")


def load_env_files(base_dir: str = ".",
                   files: Optional[List[str]] = None) -> None:
    """
    주어진 디렉토리에서 .env 계열 파일을 순서대로 로드한다.
    후순위 파일이 같은 키를 덮어쓴다.
    """
    order = files or ENV_FILES_DEFAULT_ORDER
    for name in order:
        path = os.path.join(base_dir, name)
        if os.path.exists(path):
            load_dotenv(path, override=True)


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} 값이 숫자가 아닙니다: {raw!r}") from e
    if value < 0:
        raise ConfigError(f"{name} 값은 0 이상이어야 합니다: {raw!r}")
    return value


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} 값이 정수가 아닙니다: {raw!r}") from e
    if value < 0:
        raise ConfigError(f"{name} 값은 0 이상이어야 합니다: {raw!r}")
    return value


@dataclass
class DeployConfig:
    terraform_bin: str = "terraform"
    workspace_dir: str = ".tfdeploy"

    # 스텝 실행
    step_timeout: Optional[float] = None
    max_launch_retries: int = 2
    retry_backoff: float = 1.0
    stream_output: bool = False
    show_progress: bool = True

    # 자격증명 소스
    credential_source: str = "env"
    secret_manager_project: Optional[str] = None
    secret_prefix: str = ""

    @classmethod
    def from_env(cls) -> "DeployConfig":
        cfg = cls(
            terraform_bin=os.getenv("TERRAFORM_BIN") or "terraform",
            workspace_dir=os.getenv("DEPLOY_WORKSPACE") or ".tfdeploy",
            step_timeout=_get_float("STEP_TIMEOUT_SECONDS", None),
            max_launch_retries=_get_int("MAX_LAUNCH_RETRIES", 2),
            retry_backoff=_get_float("RETRY_BACKOFF_SECONDS", 1.0) or 0.0,
            stream_output=_get_bool("STREAM_OUTPUT", False),
            show_progress=_get_bool("CLI_SHOW_PROGRESS", True),
            credential_source=(os.getenv("CREDENTIAL_SOURCE") or "env").strip().lower(),
            secret_manager_project=os.getenv("SECRET_MANAGER_PROJECT"),
            secret_prefix=os.getenv("SECRET_PREFIX", ""),
        )

        if cfg.credential_source not in CREDENTIAL_SOURCES:
            raise ConfigError(
                f"알 수 없는 CREDENTIAL_SOURCE 값입니다: {cfg.credential_source!r} "
                f"({' | '.join(CREDENTIAL_SOURCES)} 중 하나)"
            )
        if cfg.credential_source == "gcp-secret-manager" and not cfg.secret_manager_project:
            raise ConfigError(
                "CREDENTIAL_SOURCE=gcp-secret-manager 이면 SECRET_MANAGER_PROJECT 환경변수가 필요합니다."
            )

        return cfg

    def workspace_path(self, base_dir: str = ".") -> str:
        if os.path.isabs(self.workspace_dir):
            return self.workspace_dir
        return os.path.join(base_dir, self.workspace_dir)


# 스펙 파일 키 -> ResourceSpec 필드
SPEC_FILE_KEYS = {
    "RESOURCE_GROUP_NAME": "resource_group_name",
    "LOCATION": "location",
    "STORAGE_ACCOUNT_NAME": "storage_account_name",
    "ACCOUNT_TIER": "account_tier",
    "REPLICATION_TYPE": "replication_type",
}


@dataclass(frozen=True)
class ResourceSpec:
    """
    생성할 Azure 리소스(리소스 그룹 + 스토리지 계정)의 선언.

    storage_account_name 은 Azure 전역에서 유일해야 하지만,
    로컬에서는 검증할 수 없으므로 전제 조건으로 취급한다.
    """

    resource_group_name: str
    location: str
    storage_account_name: str
    account_tier: str = "Standard"
    replication_type: str = "LRS"

    @classmethod
    def from_mapping(cls, values: dict[str, str]) -> "ResourceSpec":
        kwargs = {}
        for key, field_name in SPEC_FILE_KEYS.items():
            val = values.get(key)
            if val is not None:
                kwargs[field_name] = val.strip()
        for f in fields(cls):
            # 필수 필드가 없으면 빈 문자열로 두고, 검증은 template.validate_spec 에서 한다.
            kwargs.setdefault(f.name, f.default if isinstance(f.default, str) else "")
        return cls(**kwargs)

    @classmethod
    def from_file(cls, path: str) -> "ResourceSpec":
        """
        KEY=value 형식(.env 와 동일)의 스펙 파일을 읽는다.
        """
        if not os.path.isfile(path):
            raise ConfigError(f"스펙 파일을 찾을 수 없습니다: {path}")

        raw = dotenv_values(dotenv_path=path)
        unknown = sorted(k for k in raw if k not in SPEC_FILE_KEYS)
        if unknown:
            raise ConfigError(
                "스펙 파일에 알 수 없는 키가 있습니다: "
                + ", ".join(unknown)
                + f"\n허용되는 키: {', '.join(SPEC_FILE_KEYS)}"
            )
        # None 은 dotenv 에서 값이 없는 키를 의미한다.
        values = {k: v for k, v in raw.items() if v is not None}
        return cls.from_mapping(values)

    def to_dict(self) -> dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
