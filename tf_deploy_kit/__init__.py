"""
tf_deploy_kit
-------------

Terraform 기반 Azure Storage Account 프로비저닝을 자동화하는 배포 CLI 패키지.
서비스 프린시펄 자격증명 로드 → Terraform 문서 렌더링 → init/plan/apply(destroy)
순차 실행 → 실행 기록 저장까지를 한 번에 수행하는 것을 목표로 한다.
"""

__all__ = [
    "config",
    "credentials",
    "orchestrator",
    "template",
]

__version__ = "0.1.0"
