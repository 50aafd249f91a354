from datetime import datetime, timezone

from sqlalchemy import Column, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from ..database import Base


def utcnow() -> datetime:
    """타임존 정보가 없는 UTC 현재 시각을 반환합니다."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PortReservation(Base):
    """
    포트 하나에 대한 예약 행입니다. port가 기본 키이므로, 동시에 같은 포트를
    예약하려는 두 요청 중 하나는 반드시 유니크 위반으로 실패합니다.
    server_id가 비어 있는 행은 아직 서버에 연결되지 않은 진행 중 예약입니다.
    """
    __tablename__ = "port_reservations"
    port = Column(Integer, primary_key=True, autoincrement=False)
    server_id = Column(Integer, ForeignKey("servers.id", ondelete="CASCADE"), nullable=True, unique=True)
    reserved_at = Column(DateTime, nullable=False, default=utcnow)

    server = relationship("GameServer", back_populates="reservation")
