from typing import Optional
from sqlalchemy.orm import Session
from lighthost.database import models
from lighthost.repositories.interfaces import ITenantRepository

class SqlalchemyTenantRepository(ITenantRepository):
    def __init__(self, db_session: Session):
        self.db = db_session

    def create(self, tenant_model: models.Tenant) -> models.Tenant:
        self.db.add(tenant_model)
        self.db.commit()
        self.db.refresh(tenant_model)
        return tenant_model

    def find_by_id(self, tenant_id: int) -> Optional[models.Tenant]:
        return self.db.query(models.Tenant).filter(models.Tenant.id == tenant_id).first()

    def delete(self, tenant: models.Tenant) -> bool:
        if tenant:
            self.db.delete(tenant)
            self.db.commit()
            return True
        return False
