import logging
import random
import time
from typing import Callable, Iterable, Optional

from lighthost.config import ProvisioningConfig
from lighthost.repositories.interfaces import IPortReservationRepository
from lighthost.services.exceptions import PortAlreadyReservedError, PortSpaceExhaustedError
from lighthost.utils.port_probe import is_port_free
from lighthost.utils.retry import backoff_delay, call_with_persistence_retry

logger = logging.getLogger(__name__)


class PortAllocator:
    """
    DB 예약 기록과 호스트 네트워크 양쪽에서 비어 있는 포트를 찾아 예약합니다.

    최종 중복 방지는 port_reservations 테이블의 기본 키 제약이 담당합니다.
    DB 조회만으로는 두 요청이 같은 포트를 동시에 고르는 경쟁을 막을 수 없으므로,
    예약 커밋이 유니크 위반으로 실패하면 충돌로 보고 jitter backoff 후 재시도합니다.
    """

    def __init__(
        self,
        reservation_repo: IPortReservationRepository,
        config: ProvisioningConfig,
        probe: Optional[Callable[[int, str], bool]] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.reservation_repo = reservation_repo
        self.config = config
        self.probe = probe or is_port_free
        self.rng = rng or random.Random()
        self.sleep = sleep

    def allocate_port(self, candidate_range: Optional[Iterable[int]] = None) -> int:
        """
        후보 범위에서 포트 하나를 골라 예약 행을 커밋하고 반환합니다.

        Args:
            candidate_range: 후보 포트 범위. 없으면 설정의 포트 범위를 사용합니다.

        Returns:
            예약에 성공한 포트 번호.

        Raises:
            PortSpaceExhaustedError: 남은 후보가 없거나 재시도 한도를 넘었을 때.
            PersistenceFailureError: 예약 조회/커밋 중 저장소 오류가 발생했을 때.
        """
        candidates = sorted(set(candidate_range if candidate_range is not None else self.config.port_range))
        if not candidates:
            raise PortSpaceExhaustedError("Candidate port range is empty.")
        low, high = candidates[0], candidates[-1]
        rejected_by_probe = set()

        for attempt in range(1, self.config.max_port_attempts + 1):
            reserved = self._persist(
                lambda: self.reservation_repo.list_reserved_ports(low, high), "listing reserved ports"
            )
            free = [
                port for port in candidates
                if port not in reserved
                and port not in self.config.reserved_ports
                and port not in rejected_by_probe
            ]
            if not free:
                raise PortSpaceExhaustedError(f"No free ports available in range {low}-{high}.")

            port = self._pick(free)

            if self.config.probe_enabled and not self.probe(port, self.config.probe_host):
                logger.warning("[Port Allocation] Port %s is in use by a system process (attempt %d)", port, attempt)
                rejected_by_probe.add(port)
                continue

            try:
                self._persist(lambda: self.reservation_repo.reserve(port), f"reserving port {port}")
            except PortAlreadyReservedError:
                delay = backoff_delay(attempt, self.config.backoff_base, self.config.backoff_max, self.rng)
                logger.info("[Port Allocation] Collision on port %s (attempt %d/%d), retrying in %.3fs",
                            port, attempt, self.config.max_port_attempts, delay)
                self.sleep(delay)
                continue

            logger.info("[Port Allocation] Reserved port %s", port)
            return port

        raise PortSpaceExhaustedError(
            f"Failed to allocate a port in range {low}-{high} after {self.config.max_port_attempts} attempts."
        )

    def release(self, port: int) -> bool:
        """서버에 연결되지 않은 예약을 해제합니다. 롤백 경로에서 사용됩니다."""
        return self._persist(lambda: self.reservation_repo.release(port), f"releasing port {port}")

    def _pick(self, free):
        if self.config.port_strategy == "sequential":
            return free[0]
        return self.rng.choice(free)

    def _persist(self, operation, description):
        return call_with_persistence_retry(
            operation,
            description,
            attempts=self.config.persistence_retries,
            base=self.config.backoff_base,
            cap=self.config.backoff_max,
            sleep=self.sleep,
            rng=self.rng,
        )
