from .server import IServerRepository
from .port_reservation import IPortReservationRepository
from .tenant import ITenantRepository
