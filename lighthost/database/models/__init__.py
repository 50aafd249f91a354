from .tenant import Tenant
from .server import GameServer, ServerStatus, ALLOWED_TRANSITIONS, ACTIVE_STATUSES
from .port_reservation import PortReservation, utcnow

__all__ = [
    "Tenant",
    "GameServer",
    "ServerStatus",
    "ALLOWED_TRANSITIONS",
    "ACTIVE_STATUSES",
    "PortReservation",
    "utcnow",
]
