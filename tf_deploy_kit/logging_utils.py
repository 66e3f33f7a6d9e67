from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Iterable, Iterator


MASK = "***"


def setup_logging(verbosity: int = 0) -> None:
    level = logging.INFO
    if verbosity >= 1:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def mask_secrets(text: str, secrets: Iterable[str]) -> str:
    # 긴 값부터 치환해야 부분 문자열 관계인 secret 도 남지 않는다.
    for secret in sorted({s for s in secrets if s}, key=len, reverse=True):
        text = text.replace(secret, MASK)
    return text


class SecretMaskFilter(logging.Filter):
    """
    로그 레코드에 포함된 자격증명 값을 *** 로 치환하는 필터.
    """

    def __init__(self, secrets: Iterable[str]) -> None:
        super().__init__()
        self._secrets = [s for s in secrets if s]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        message = record.getMessage()
        masked = mask_secrets(message, self._secrets)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


@contextmanager
def masked_logging(secrets: Iterable[str]) -> Iterator[None]:
    """
    with 블록 동안 root 로거의 모든 핸들러에 SecretMaskFilter 를 붙인다.
    """
    filt = SecretMaskFilter(secrets)
    handlers = list(logging.getLogger().handlers)
    for handler in handlers:
        handler.addFilter(filt)
    try:
        yield
    finally:
        for handler in handlers:
            handler.removeFilter(filt)
