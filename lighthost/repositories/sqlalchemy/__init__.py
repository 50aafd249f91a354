from .sqlalchemy_server_repository import SqlalchemyServerRepository
from .sqlalchemy_port_reservation_repository import SqlalchemyPortReservationRepository
from .sqlalchemy_tenant_repository import SqlalchemyTenantRepository
