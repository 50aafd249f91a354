from abc import ABC, abstractmethod
from typing import Optional
from lighthost.database import models

class ITenantRepository(ABC):
    @abstractmethod
    def create(self, tenant_model: models.Tenant) -> models.Tenant:
        """새로운 테넌트를 데이터베이스에 생성합니다."""
        pass

    @abstractmethod
    def find_by_id(self, tenant_id: int) -> Optional[models.Tenant]:
        """고유 ID로 특정 테넌트를 조회합니다."""
        pass

    @abstractmethod
    def delete(self, tenant: models.Tenant) -> bool:
        """테넌트와 그 테넌트가 소유한 모든 서버를 삭제합니다."""
        pass
