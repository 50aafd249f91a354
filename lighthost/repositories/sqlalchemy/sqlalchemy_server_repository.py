from typing import Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from lighthost.database import models
from lighthost.repositories.interfaces import IServerRepository
from lighthost.services.exceptions import AddressSlotTakenError, OwnerNotFoundError, PortAlreadyReservedError

# 제약 위반 메시지에서 위반된 제약을 구분하기 위한 표식 (PostgreSQL은 인덱스 이름, SQLite는 컬럼 목록)
ADDRESS_SLOT_MARKERS = ("uq_servers_active_address_slot", "servers.ip_address, servers.address_slot")
PORT_MARKERS = ("uq_servers_active_port", "servers.port")

class SqlalchemyServerRepository(IServerRepository):
    def __init__(self, db_session: Session):
        self.db = db_session

    def create_with_reservation(self, server_model: models.GameServer, port: int) -> models.GameServer:
        reservation = self.db.get(models.PortReservation, port)
        if reservation is None or reservation.server_id is not None:
            self.db.rollback()
            raise PortAlreadyReservedError(f"Port {port} has no pending reservation to attach.")

        try:
            self.db.add(server_model)
            self.db.flush()
            reservation.server_id = server_model.id
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            self._raise_for_violation(e, server_model, port)
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(server_model)
        return server_model

    @staticmethod
    def _raise_for_violation(error: IntegrityError, server_model: models.GameServer, port: int):
        message = str(error.orig).lower()
        if "foreign key" in message:
            raise OwnerNotFoundError(f"Owner {server_model.owner_id} does not exist.") from error
        if any(marker in message for marker in ADDRESS_SLOT_MARKERS):
            raise AddressSlotTakenError(
                f"Slot {server_model.address_slot} of {server_model.ip_address} is already taken."
            ) from error
        if any(marker in message for marker in PORT_MARKERS):
            raise PortAlreadyReservedError(f"Port {port} is already held by an active server.") from error
        raise error

    def find_by_uuid(self, uuid: str) -> Optional[models.GameServer]:
        return self.db.query(models.GameServer).filter(models.GameServer.uuid == uuid).first()

    def find_by_uuid_and_owner_id(self, uuid: str, owner_id: int) -> Optional[models.GameServer]:
        return self.db.query(models.GameServer).filter(
            models.GameServer.uuid == uuid,
            models.GameServer.owner_id == owner_id
        ).first()

    def update_status(self, server: models.GameServer, status: str) -> models.GameServer:
        try:
            server.status = status
            if status == models.ServerStatus.DELETED.value:
                # 삭제된 서버의 포트는 다시 할당할 수 있도록 예약을 해제
                server.reservation = None
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(server)
        return server

    def delete_by_uuid(self, uuid: str) -> bool:
        server = self.find_by_uuid(uuid)
        if not server:
            return False
        try:
            self.db.delete(server)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return True

    def count_active_by_region(self) -> Dict[str, int]:
        rows = self.db.query(models.GameServer.region, func.count(models.GameServer.id)).filter(
            models.GameServer.status.in_(models.ACTIVE_STATUSES)
        ).group_by(models.GameServer.region).all()
        return {region: count for region, count in rows}

    def list_active_slots(self, region: str) -> Dict[str, List[Optional[int]]]:
        rows = self.db.query(models.GameServer.ip_address, models.GameServer.address_slot).filter(
            models.GameServer.region == region,
            models.GameServer.status.in_(models.ACTIVE_STATUSES)
        ).all()
        # 조회만 하는 호출도 트랜잭션을 닫아 다른 세션의 쓰기를 막지 않음
        self.db.commit()
        slots = {}
        for ip_address, slot in rows:
            slots.setdefault(ip_address, []).append(slot)
        return slots
