from sqlalchemy import Column, Integer, String, DateTime, func
from sqlalchemy.orm import relationship
from ..database import Base

class Tenant(Base):
    """
    게임 서버를 소유하는 인증된 테넌트(계정)를 나타냅니다.
    테넌트가 삭제되면 소유한 모든 게임 서버와 포트 예약도 함께 삭제됩니다.
    가입/로그인은 외부 계층의 책임이며, 이 모델은 소유권 관계만 표현합니다.
    """
    __tablename__ = "tenants"
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now())

    servers = relationship("GameServer", back_populates="owner", cascade="all, delete-orphan")
