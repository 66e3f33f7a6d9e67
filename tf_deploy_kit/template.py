"""
template
--------

ResourceSpec 을 Terraform 문서(main.tf)로 렌더링하는 모듈.
템플릿은 패키지의 templates/ 디렉토리에 있는 Jinja2 파일이다.

렌더링은 순수 함수다. 같은 스펙은 항상 바이트 단위로 같은 결과를 만든다.
(시각/난수/환경변수에 의존하지 않음)
"""

from __future__ import annotations

import re
import shlex
from dataclasses import fields

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError

from .config import ResourceSpec
from .errors import ConfigError, InvalidSpecError


MAIN_TF_TEMPLATE = "main.tf.j2"
CI_WORKFLOW_TEMPLATE = "workflow.yml.j2"

ACCOUNT_TIERS = ("Standard", "Premium")
REPLICATION_TYPES = ("LRS", "GRS", "RAGRS", "ZRS", "GZRS", "RAGZRS")
PREMIUM_REPLICATION_TYPES = ("LRS", "ZRS")

_RESOURCE_GROUP_RE = re.compile(r"^[A-Za-z0-9_\-.()]{1,90}$")
_LOCATION_RE = re.compile(r"^[a-z0-9]+$")
_STORAGE_ACCOUNT_RE = re.compile(r"^[a-z0-9]{3,24}$")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")

# 정의되지 않은 변수는 렌더링 시점에 UndefinedError 로 실패한다.
_jinja_env = Environment(
    loader=PackageLoader("tf_deploy_kit", "templates"),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
    autoescape=False,
    auto_reload=False,
)


def _render_template(name: str, **context: str) -> str:
    try:
        return _jinja_env.get_template(name).render(**context)
    except TemplateError as e:
        raise ConfigError(f"템플릿 렌더링 실패: {name} ({e})") from e


def _fail_if_empty(spec: ResourceSpec) -> None:
    for f in fields(spec):
        if not getattr(spec, f.name).strip():
            raise InvalidSpecError(f.name, "값이 비어 있습니다")


def validate_spec(spec: ResourceSpec) -> None:
    """
    Azure 명명 규칙 중 로컬에서 확인 가능한 것만 검사한다.
    (클라우드 API 호출 없음, 전역 유일성은 검사하지 않음)
    """
    _fail_if_empty(spec)

    rg = spec.resource_group_name
    if not _RESOURCE_GROUP_RE.match(rg):
        raise InvalidSpecError(
            "resource_group_name",
            "1~90자의 영문/숫자/_-.() 만 사용할 수 있습니다",
        )
    if rg.endswith("."):
        raise InvalidSpecError("resource_group_name", "마침표(.)로 끝날 수 없습니다")

    if not _LOCATION_RE.match(spec.location):
        raise InvalidSpecError("location", "소문자/숫자로 된 리전 이름이어야 합니다 (예: eastus)")

    if not _STORAGE_ACCOUNT_RE.match(spec.storage_account_name):
        raise InvalidSpecError(
            "storage_account_name",
            "3~24자의 소문자/숫자만 사용할 수 있습니다",
        )

    if spec.account_tier not in ACCOUNT_TIERS:
        raise InvalidSpecError(
            "account_tier",
            f"{' | '.join(ACCOUNT_TIERS)} 중 하나여야 합니다",
        )

    if spec.replication_type not in REPLICATION_TYPES:
        raise InvalidSpecError(
            "replication_type",
            f"{' | '.join(REPLICATION_TYPES)} 중 하나여야 합니다",
        )
    if spec.account_tier == "Premium" and spec.replication_type not in PREMIUM_REPLICATION_TYPES:
        raise InvalidSpecError(
            "replication_type",
            f"Premium 계층은 {' | '.join(PREMIUM_REPLICATION_TYPES)} 만 지원합니다",
        )


def render(spec: ResourceSpec) -> str:
    validate_spec(spec)
    return _render_template(MAIN_TF_TEMPLATE, **spec.to_dict())


def render_ci_workflow(spec_path: str) -> str:
    """
    ARM_* 리포지토리 secret 을 환경변수로 매핑하고 deploy 를 호출하는
    GitHub Actions 워크플로를 렌더링한다.

    경로는 paths 필터에는 JSON 문자열로, run 스크립트에는 셸 인용된 인자로 들어간다.
    """
    spec_path = spec_path.strip()
    if not spec_path:
        raise InvalidSpecError("spec_path", "값이 비어 있습니다")
    if _CONTROL_CHARS_RE.search(spec_path):
        raise InvalidSpecError("spec_path", "제어 문자(줄바꿈 등)를 포함할 수 없습니다")
    # run 스크립트는 셸보다 먼저 Actions 가 ${{ }} 를 치환한다.
    if "${{" in spec_path:
        raise InvalidSpecError("spec_path", "'${{' 표현식을 포함할 수 없습니다")

    return _render_template(
        CI_WORKFLOW_TEMPLATE,
        spec_path=spec_path,
        spec_arg=shlex.quote(spec_path),
    )
