from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from lighthost.database import models

class IServerRepository(ABC):
    @abstractmethod
    def create_with_reservation(self, server_model: models.GameServer, port: int) -> models.GameServer:
        """
        서버 행을 생성하고, 같은 트랜잭션에서 해당 포트의 예약 행을 서버에 연결합니다.

        Raises:
            PortAlreadyReservedError: 예약 행이 없거나, 포트가 이미 다른 활성 서버에 묶여 있을 때.
            AddressSlotTakenError: 같은 (IP, 주소 슬롯)을 다른 활성 서버가 먼저 차지했을 때.
            OwnerNotFoundError: 소유 테넌트가 존재하지 않을 때.
        """
        pass

    @abstractmethod
    def find_by_uuid(self, uuid: str) -> Optional[models.GameServer]:
        """리소스 식별자(uuid)로 서버를 조회합니다."""
        pass

    @abstractmethod
    def find_by_uuid_and_owner_id(self, uuid: str, owner_id: int) -> Optional[models.GameServer]:
        """소유자 범위 안에서 리소스 식별자로 서버를 조회합니다."""
        pass

    @abstractmethod
    def update_status(self, server: models.GameServer, status: str) -> models.GameServer:
        """서버 상태를 변경합니다. 'deleted'로 바뀌면 포트 예약도 함께 해제합니다."""
        pass

    @abstractmethod
    def delete_by_uuid(self, uuid: str) -> bool:
        """서버 행(및 연결된 포트 예약)을 삭제합니다. 없으면 False를 반환합니다."""
        pass

    @abstractmethod
    def count_active_by_region(self) -> Dict[str, int]:
        """삭제되지 않은 서버 수를 리전별로 집계합니다."""
        pass

    @abstractmethod
    def list_active_slots(self, region: str) -> Dict[str, List[Optional[int]]]:
        """
        특정 리전에서 삭제되지 않은 서버가 차지한 주소 슬롯을 IP 주소별로 반환합니다.
        슬롯 없이 저장된 행은 None으로 포함되어 사용량에 계산됩니다.
        """
        pass
