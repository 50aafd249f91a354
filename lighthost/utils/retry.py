# lighthost/utils/retry.py
import logging
import random
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError, SQLAlchemyError

from lighthost.services.exceptions import PersistenceFailureError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base: float, cap: float, rng=random) -> float:
    """
    지수 backoff에 full jitter를 적용한 대기 시간(초)을 계산합니다.
    attempt는 1부터 시작합니다.
    """
    ceiling = min(cap, base * (2 ** (attempt - 1)))
    return rng.uniform(0, ceiling)


def call_with_persistence_retry(
    operation: Callable[[], T],
    description: str,
    attempts: int = 3,
    base: float = 0.05,
    cap: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
    rng=random,
) -> T:
    """
    저장소 호출을 실행하고, 일시적 오류(OperationalError)는 제한된 횟수만큼 재시도합니다.

    그 밖의 SQLAlchemyError는 재시도하지 않고 PersistenceFailureError로 감싸 전달합니다.
    저장소 계층이 정의한 도메인 예외(예: PortAlreadyReservedError)는 그대로 통과합니다.

    Raises:
        PersistenceFailureError: 재시도 후에도 실패했거나, 재시도 대상이 아닌 오류일 때.
    """
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except OperationalError as e:
            if attempt == attempts:
                raise PersistenceFailureError(f"{description} failed after {attempts} attempts: {e}") from e
            delay = backoff_delay(attempt, base, cap, rng)
            logger.warning("Transient error during %s (attempt %d/%d), retrying in %.3fs: %s",
                           description, attempt, attempts, delay, e)
            sleep(delay)
        except SQLAlchemyError as e:
            raise PersistenceFailureError(f"{description} failed: {e}") from e
    raise PersistenceFailureError(f"{description} failed.")
