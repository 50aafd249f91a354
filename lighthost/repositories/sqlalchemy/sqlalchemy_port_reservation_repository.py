from datetime import datetime
from typing import List, Set
from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from lighthost.database import models
from lighthost.repositories.interfaces import IPortReservationRepository
from lighthost.services.exceptions import PortAlreadyReservedError

class SqlalchemyPortReservationRepository(IPortReservationRepository):
    def __init__(self, db_session: Session):
        self.db = db_session

    def list_reserved_ports(self, start: int, end: int) -> Set[int]:
        reserved = {row[0] for row in self.db.query(models.PortReservation.port).filter(
            models.PortReservation.port.between(start, end)
        ).all()}
        # 예약 행 없이 포트를 점유한 서버(수동으로 들어간 기록 등)도 함께 제외
        held = {row[0] for row in self.db.query(models.GameServer.port).filter(
            models.GameServer.port.between(start, end),
            models.GameServer.status.in_(models.ACTIVE_STATUSES)
        ).all()}
        # 조회만 했으므로 트랜잭션을 닫아 다른 쓰기 요청을 막지 않도록 함
        self.db.commit()
        return reserved | held

    def reserve(self, port: int) -> None:
        try:
            # identity map을 거치지 않고 DB의 기본 키 제약으로 충돌을 판정
            self.db.execute(insert(models.PortReservation).values(port=port, reserved_at=models.utcnow()))
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise PortAlreadyReservedError(f"Port {port} was reserved by a concurrent request.") from e
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def release(self, port: int) -> bool:
        try:
            deleted = self.db.query(models.PortReservation).filter(
                models.PortReservation.port == port,
                models.PortReservation.server_id.is_(None)
            ).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return deleted > 0

    def purge_unattached_before(self, cutoff: datetime) -> List[int]:
        try:
            stale = self.db.query(models.PortReservation).filter(
                models.PortReservation.server_id.is_(None),
                models.PortReservation.reserved_at < cutoff
            ).all()
            ports = [reservation.port for reservation in stale]
            for reservation in stale:
                self.db.delete(reservation)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return ports
