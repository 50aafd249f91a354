# tests/conftest.py
import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lighthost.config import ProvisioningConfig
from lighthost.database.database import Base, build_engine
from lighthost.database import models
from lighthost.repositories.sqlalchemy import (
    SqlalchemyServerRepository,
    SqlalchemyPortReservationRepository,
    SqlalchemyTenantRepository,
)
from lighthost.services.provisioning_service import ProvisioningService
from lighthost.services.port_allocator import PortAllocator


def make_config(**overrides) -> ProvisioningConfig:
    """테스트용 설정. 실제 네트워크 검사와 대기 시간을 끈 상태로 시작합니다."""
    values = dict(
        port_range_start=25500,
        port_range_end=25510,
        probe_enabled=False,
        backoff_base=0.0,
        backoff_max=0.0,
        region_pools={
            "us-east-1": ("154.12.1.1", "154.12.1.2"),
            "eu-central-1": ("95.211.3.1", "95.211.3.2"),
        },
        address_capacity=4,
    )
    values.update(overrides)
    return ProvisioningConfig(**values)


def build_service(session, config, **kwargs) -> ProvisioningService:
    server_repo = SqlalchemyServerRepository(session)
    reservation_repo = SqlalchemyPortReservationRepository(session)
    allocator = PortAllocator(reservation_repo, config, sleep=lambda _: None)
    return ProvisioningService(
        server_repo, reservation_repo, config, port_allocator=allocator, sleep=lambda _: None, **kwargs
    )


@pytest.fixture
def engine():
    """테스트마다 새로 만드는 인메모리 SQLite 엔진."""
    engine = build_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """여러 스레드가 각자의 연결로 접근하는 동시성 테스트용 파일 DB 엔진."""
    engine = build_engine(f"sqlite:///{tmp_path / 'lighthost-test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def tenant(db_session) -> models.Tenant:
    return SqlalchemyTenantRepository(db_session).create(models.Tenant(username="tenant-42"))


@pytest.fixture
def config() -> ProvisioningConfig:
    return make_config()


@pytest.fixture
def config_factory():
    return make_config


@pytest.fixture
def service_factory():
    return build_service
