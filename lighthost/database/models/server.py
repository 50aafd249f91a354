import enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, func, text
from sqlalchemy.orm import relationship
from ..database import Base


class ServerStatus(str, enum.Enum):
    PROVISIONING = "provisioning"
    RUNNING = "running"
    STOPPED = "stopped"
    DELETED = "deleted"


# 허용되는 상태 전이. DELETED는 종료 상태입니다.
ALLOWED_TRANSITIONS = {
    ServerStatus.PROVISIONING: {ServerStatus.RUNNING, ServerStatus.DELETED},
    ServerStatus.RUNNING: {ServerStatus.STOPPED, ServerStatus.DELETED},
    ServerStatus.STOPPED: {ServerStatus.RUNNING, ServerStatus.DELETED},
    ServerStatus.DELETED: set(),
}

ACTIVE_STATUSES = (ServerStatus.PROVISIONING.value, ServerStatus.RUNNING.value, ServerStatus.STOPPED.value)


class GameServer(Base):
    """
    프로비저닝 엔진이 생성하는 호스팅 게임 서버 레코드입니다.
    IP, 포트, 리전, 패널 URL이 할당되며, 특정 테넌트에 소속됩니다.

    접근 비밀번호는 평문으로 저장하지 않고 sha256 해시만 보관합니다.
    삭제되지 않은 서버 사이에서 포트와 (IP, 주소 슬롯) 조합은 DB 수준의 부분 유니크 인덱스로
    중복이 금지됩니다. 주소 슬롯은 0..address_capacity-1 범위의 번호로, 주소당 용량을 DB가 보장합니다.
    """
    __tablename__ = "servers"
    __table_args__ = (
        Index(
            "uq_servers_active_port",
            "port",
            unique=True,
            sqlite_where=text("status != 'deleted'"),
            postgresql_where=text("status != 'deleted'"),
        ),
        Index(
            "uq_servers_active_address_slot",
            "ip_address",
            "address_slot",
            unique=True,
            sqlite_where=text("status != 'deleted'"),
            postgresql_where=text("status != 'deleted'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    ip_address = Column(String, nullable=False)
    address_slot = Column(Integer, nullable=True)
    port = Column(Integer, nullable=False)
    memory_mb = Column(Integer, nullable=False)
    disk_mb = Column(Integer, nullable=False)
    version_tag = Column(String, nullable=False)
    status = Column(String, nullable=False, default=ServerStatus.PROVISIONING.value)
    region = Column(String, nullable=False, index=True)
    panel_url = Column(String, nullable=False)
    access_secret_hash = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    owner_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    owner = relationship("Tenant", back_populates="servers")
    reservation = relationship(
        "PortReservation", back_populates="server", uselist=False, cascade="all, delete-orphan"
    )
