from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Set

class IPortReservationRepository(ABC):
    @abstractmethod
    def list_reserved_ports(self, start: int, end: int) -> Set[int]:
        """범위 [start, end] 안에서 이미 예약된 포트 집합을 조회합니다."""
        pass

    @abstractmethod
    def reserve(self, port: int) -> None:
        """
        포트 예약 행을 커밋합니다.

        Raises:
            PortAlreadyReservedError: 다른 요청이 먼저 같은 포트를 예약했을 때.
        """
        pass

    @abstractmethod
    def release(self, port: int) -> bool:
        """서버에 연결되지 않은 예약을 해제합니다. 해제했으면 True를 반환합니다."""
        pass

    @abstractmethod
    def purge_unattached_before(self, cutoff: datetime) -> List[int]:
        """cutoff 이전에 만들어진 미연결 예약을 삭제하고, 해제된 포트 목록을 반환합니다."""
        pass
