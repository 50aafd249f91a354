# tests/services/test_provisioning_service.py
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from unittest.mock import MagicMock, patch
from sqlalchemy.orm import sessionmaker

from lighthost.database import models
from lighthost.repositories.sqlalchemy import SqlalchemyTenantRepository
from lighthost.services.exceptions import (
    CapacityError,
    EntropySourceUnavailableError,
    InvalidSpecError,
    InvalidStatusTransitionError,
    OwnerNotFoundError,
    PersistenceFailureError,
    PortSpaceExhaustedError,
    RegionCapacityExhaustedError,
    ServerNotFoundError,
)
from lighthost.services.region_assigner import RegionAssigner
from lighthost.services.schemas import ProvisionSpec, RegionAssignment
from lighthost.services.secret_generator import SecretGenerator, UPPERCASE, LOWERCASE, DIGITS, SYMBOLS

# ===================================================================
#  테스트 도우미
# ===================================================================

def make_spec(**overrides) -> ProvisionSpec:
    values = dict(name="Test", memory_mb=4096, disk_mb=51200, version_tag="1.21")
    values.update(overrides)
    return ProvisionSpec(**values)

def count_rows(session, model) -> int:
    session.expire_all()
    return session.query(model).count()

@pytest.fixture
def service(db_session, config, service_factory):
    return service_factory(db_session, config)

# ===================================================================
#  provision 성공 시나리오
# ===================================================================
class TestProvision:
    def test_provision_success(self, service, tenant, config):
        """기본 요청으로 프로비저닝 결과가 모두 채워지는지 테스트합니다."""
        # === Act ===
        result = service.provision(make_spec(), tenant.id)

        # === Assert ===
        assert result.status == "provisioning"
        assert config.port_range_start <= result.port <= config.port_range_end
        assert result.region in config.region_pools
        assert result.ip_address in config.region_pools[result.region]
        assert result.panel_url == f"{config.panel_base_url}/server/{result.resource_id}"
        assert result.rcon_port == 25575
        assert result.rcon_host == result.ip_address
        assert result.location == {"us-east-1": "US-East", "eu-central-1": "EU-Central"}[result.region]
        assert result.provisioned_at

        # 16자, 네 가지 문자 클래스를 모두 포함한 접근 비밀번호
        secret = result.access_secret
        assert len(secret) == 16
        assert any(c in UPPERCASE for c in secret)
        assert any(c in LOWERCASE for c in secret)
        assert any(c in DIGITS for c in secret)
        assert any(c in SYMBOLS for c in secret)
        assert len(result.panel_token) == 32

    def test_secret_is_never_stored_in_plaintext(self, service, tenant, db_session):
        result = service.provision(make_spec(), tenant.id)

        server = db_session.query(models.GameServer).filter_by(uuid=result.resource_id).one()
        stored_values = [str(getattr(server, column.name)) for column in models.GameServer.__table__.columns]
        assert result.access_secret not in stored_values
        assert result.panel_token not in stored_values
        assert server.access_secret_hash is not None
        assert service.verify_access_secret(tenant.id, result.resource_id, result.access_secret)
        assert not service.verify_access_secret(tenant.id, result.resource_id, "wrong-secret")

    def test_repr_masks_secrets(self, service, tenant):
        result = service.provision(make_spec(), tenant.id)
        assert result.access_secret not in repr(result)
        assert result.panel_token not in repr(result)

    def test_to_dict_matches_wire_shape(self, service, tenant):
        payload = service.provision(make_spec(), tenant.id).to_dict()
        for key in ("resourceId", "ipAddress", "port", "region", "location", "panelUrl", "status",
                    "provisionedAt", "rconHost", "accessSecret", "panelToken"):
            assert key in payload
        assert payload["status"] == "provisioning"

    def test_port_reservation_is_attached_to_server(self, service, tenant, db_session):
        result = service.provision(make_spec(), tenant.id)

        reservation = db_session.get(models.PortReservation, result.port)
        assert reservation is not None
        assert reservation.server.uuid == result.resource_id

    def test_distinct_ports_for_sequential_calls(self, service, tenant):
        ports = [service.provision(make_spec(name=f"srv-{i}"), tenant.id).port for i in range(5)]
        assert len(set(ports)) == 5

    def test_preferred_region(self, service, tenant):
        result = service.provision(make_spec(preferred_region="eu-central-1"), tenant.id)
        assert result.region == "eu-central-1"

    def test_region_exhaustion_leaves_no_reservation(self, db_session, tenant, config_factory, service_factory):
        config = config_factory(region_pools={"us-east-1": ("154.12.1.1",)}, address_capacity=1)
        service = service_factory(db_session, config)
        service.provision(make_spec(), tenant.id)

        with pytest.raises(RegionCapacityExhaustedError):
            service.provision(make_spec(), tenant.id)
        assert count_rows(db_session, models.PortReservation) == 1
        assert count_rows(db_session, models.GameServer) == 1

    def test_port_space_exhausted_with_size_one_range(self, db_session, tenant, config_factory, service_factory):
        """크기 1 범위를 모두 쓴 뒤의 호출은 멈추지 않고 PortSpaceExhaustedError로 실패해야 합니다."""
        config = config_factory(port_range_start=25500, port_range_end=25500)
        service = service_factory(db_session, config)
        assert service.provision(make_spec(), tenant.id).port == 25500

        with pytest.raises(PortSpaceExhaustedError):
            service.provision(make_spec(name="second"), tenant.id)
        assert count_rows(db_session, models.GameServer) == 1

# ===================================================================
#  요청 스펙 검증 테스트
# ===================================================================
class TestValidation:
    @pytest.mark.parametrize("memory_mb", [1024, 16384])
    def test_memory_boundaries_succeed(self, service, tenant, memory_mb):
        assert service.provision(make_spec(memory_mb=memory_mb), tenant.id).status == "provisioning"

    @pytest.mark.parametrize("disk_mb", [5120, 512000])
    def test_disk_boundaries_succeed(self, service, tenant, disk_mb):
        assert service.provision(make_spec(disk_mb=disk_mb), tenant.id).status == "provisioning"

    @pytest.mark.parametrize("overrides", [
        {"memory_mb": 1023},
        {"memory_mb": 16385},
        {"disk_mb": 5119},
        {"disk_mb": 512001},
        {"memory_mb": True},
        {"memory_mb": "4096"},
        {"name": "   "},
        {"name": None},
        {"name": "x" * 65},
        {"version_tag": ""},
        {"version_tag": "1.21; rm -rf /"},
        {"preferred_region": "mars-1"},
        {"preferred_region": ["us-east-1"]},
        {"preferred_region": 7},
    ])
    def test_invalid_spec_is_rejected(self, service, tenant, db_session, overrides):
        with pytest.raises(InvalidSpecError):
            service.provision(make_spec(**overrides), tenant.id)
        assert count_rows(db_session, models.PortReservation) == 0

    @pytest.mark.parametrize("owner_id", [0, -1, None, "42", True])
    def test_invalid_owner_is_rejected(self, service, owner_id):
        with pytest.raises(InvalidSpecError):
            service.provision(make_spec(), owner_id)

    def test_unknown_owner_is_caller_error(self, service, db_session):
        """존재하지 않는 소유자는 내부 오류가 아닌 호출자 오류로 보고되고, 예약이 남지 않아야 합니다."""
        with pytest.raises(OwnerNotFoundError) as exc_info:
            service.provision(make_spec(), 999)

        assert isinstance(exc_info.value, InvalidSpecError)
        assert "port" not in str(exc_info.value).lower()
        assert count_rows(db_session, models.GameServer) == 0
        assert count_rows(db_session, models.PortReservation) == 0

# ===================================================================
#  저장 시점 충돌 재시도 테스트
# ===================================================================
class TestPersistRetry:
    def test_taken_address_slot_is_reassigned(self, db_session, tenant, config, service_factory):
        """배정받은 슬롯을 다른 서버가 먼저 차지했다면 리전 배정부터 다시 수행해야 합니다."""
        # === Arrange ===
        # 시나리오: 154.12.1.1의 슬롯 0은 이미 다른 서버가 사용 중인데, 배정 결과가 오래된 사용량을 기준으로 함
        db_session.add(models.GameServer(
            uuid="existing", owner_id=tenant.id, name="existing", ip_address="154.12.1.1", address_slot=0,
            port=25509, memory_mb=2048, disk_mb=10240, version_tag="1.21", region="us-east-1",
            panel_url="https://panel.lighth.io/server/existing",
        ))
        db_session.commit()
        assigner = MagicMock(spec=RegionAssigner)
        assigner.assign_region.side_effect = [
            RegionAssignment(ip_address="154.12.1.1", region="us-east-1", address_slot=0, location="US-East"),
            RegionAssignment(ip_address="154.12.1.1", region="us-east-1", address_slot=1, location="US-East"),
        ]
        service = service_factory(db_session, config, region_assigner=assigner)

        # === Act ===
        result = service.provision(make_spec(), tenant.id)

        # === Assert ===
        assert assigner.assign_region.call_count == 2
        server = db_session.query(models.GameServer).filter_by(uuid=result.resource_id).one()
        assert server.address_slot == 1
        assert count_rows(db_session, models.PortReservation) == 1

    def test_lost_reservation_is_retried_from_allocation(self, db_session, tenant, config, service_factory):
        """포트 예약이 저장 직전에 사라지면 내부 오류가 아니라 포트 할당부터 다시 수행해야 합니다."""
        service = service_factory(db_session, config)
        create_with_reservation = service.server_repo.create_with_reservation
        attempted_ports = []

        def create_after_reclaim(server, port):
            if not attempted_ports:
                # 다른 프로세스가 예약을 회수한 상황
                db_session.query(models.PortReservation).filter_by(port=port).delete()
                db_session.commit()
            attempted_ports.append(port)
            return create_with_reservation(server, port)

        service.server_repo.create_with_reservation = create_after_reclaim

        result = service.provision(make_spec(), tenant.id)

        assert len(attempted_ports) == 2
        assert result.port == attempted_ports[-1]
        assert count_rows(db_session, models.GameServer) == 1
        assert db_session.get(models.PortReservation, result.port).server.uuid == result.resource_id

    def test_persistent_collisions_give_up_with_capacity_error(self, db_session, tenant, config_factory, service_factory):
        config = config_factory(max_port_attempts=2)
        service = service_factory(db_session, config)
        create_with_reservation = service.server_repo.create_with_reservation

        def create_after_reclaim(server, port):
            db_session.query(models.PortReservation).filter_by(port=port).delete()
            db_session.commit()
            return create_with_reservation(server, port)

        service.server_repo.create_with_reservation = create_after_reclaim

        with pytest.raises(CapacityError):
            service.provision(make_spec(), tenant.id)
        assert count_rows(db_session, models.GameServer) == 0
        assert count_rows(db_session, models.PortReservation) == 0

# ===================================================================
#  롤백 테스트
# ===================================================================
class TestRollback:
    def test_secret_generation_failure_leaves_no_rows(self, db_session, tenant, config, service_factory):
        """포트 예약 후 비밀번호 생성이 실패하면 서버 행과 포트 예약이 남지 않아야 합니다."""
        # === Arrange ===
        # 시나리오: 포트 할당은 성공했지만 난수 소스를 읽지 못함
        failing_generator = MagicMock(spec=SecretGenerator)
        failing_generator.generate_secret.side_effect = EntropySourceUnavailableError("urandom unavailable")
        service = service_factory(db_session, config, secret_generator=failing_generator)

        # === Act & Assert ===
        with pytest.raises(EntropySourceUnavailableError):
            service.provision(make_spec(), tenant.id)

        assert count_rows(db_session, models.GameServer) == 0
        assert count_rows(db_session, models.PortReservation) == 0

    def test_failure_after_commit_deletes_server_row(self, db_session, tenant, config, service_factory):
        """서버 행 커밋 이후 실패해도 보상 삭제로 행과 예약이 모두 정리되는지 테스트합니다."""
        service = service_factory(db_session, config)

        with patch("lighthost.services.provisioning_service.panel_login_url", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                service.provision(make_spec(), tenant.id)

        assert count_rows(db_session, models.GameServer) == 0
        assert count_rows(db_session, models.PortReservation) == 0

    def test_cancellation_triggers_rollback(self, db_session, tenant, config, service_factory):
        service = service_factory(db_session, config)

        with patch("lighthost.services.provisioning_service.panel_username", side_effect=KeyboardInterrupt):
            with pytest.raises(KeyboardInterrupt):
                service.provision(make_spec(), tenant.id)

        assert count_rows(db_session, models.GameServer) == 0
        assert count_rows(db_session, models.PortReservation) == 0

    def test_rollback_failure_does_not_mask_original_error(self, db_session, tenant, config, service_factory):
        failing_generator = MagicMock(spec=SecretGenerator)
        failing_generator.generate_secret.side_effect = EntropySourceUnavailableError("urandom unavailable")
        service = service_factory(db_session, config, secret_generator=failing_generator)
        service.port_allocator.release = MagicMock(side_effect=PersistenceFailureError("db down"))

        with pytest.raises(EntropySourceUnavailableError):
            service.provision(make_spec(), tenant.id)

# ===================================================================
#  조회 / 상태 변경 테스트
# ===================================================================
class TestReadPathAndLifecycle:
    def test_second_fetch_never_contains_secret(self, service, tenant):
        """생성 이후의 조회 결과에는 비밀 값 필드가 아예 없어야 합니다."""
        result = service.provision(make_spec(), tenant.id)

        server = service.get_server(tenant.id, result.resource_id)

        assert server["resourceId"] == result.resource_id
        assert server["port"] == result.port
        assert "accessSecret" not in server
        assert "panelToken" not in server
        assert "access_secret_hash" not in server
        assert result.access_secret not in str(server.values())

    def test_other_owner_cannot_read_server(self, service, tenant, db_session):
        other = SqlalchemyTenantRepository(db_session).create(models.Tenant(username="someone-else"))
        result = service.provision(make_spec(), tenant.id)

        with pytest.raises(ServerNotFoundError):
            service.get_server(other.id, result.resource_id)

    def test_status_lifecycle(self, service, tenant):
        result = service.provision(make_spec(), tenant.id)

        assert service.update_status(tenant.id, result.resource_id, "running")["status"] == "running"
        assert service.update_status(tenant.id, result.resource_id, "stopped")["status"] == "stopped"
        assert service.update_status(tenant.id, result.resource_id, "running")["status"] == "running"

    def test_invalid_transition_is_rejected(self, service, tenant):
        result = service.provision(make_spec(), tenant.id)

        with pytest.raises(InvalidStatusTransitionError):
            service.update_status(tenant.id, result.resource_id, "stopped")
        with pytest.raises(InvalidStatusTransitionError):
            service.update_status(tenant.id, result.resource_id, "exploded")

    def test_deleted_server_releases_port(self, db_session, tenant, config_factory, service_factory):
        config = config_factory(port_range_start=25500, port_range_end=25500)
        service = service_factory(db_session, config)
        first = service.provision(make_spec(), tenant.id)

        service.update_status(tenant.id, first.resource_id, "deleted")
        with pytest.raises(InvalidStatusTransitionError):
            service.update_status(tenant.id, first.resource_id, "running")

        second = service.provision(make_spec(name="reuse"), tenant.id)
        assert second.port == first.port

    def test_tenant_deletion_cascades(self, service, tenant, db_session):
        service.provision(make_spec(), tenant.id)
        service.provision(make_spec(name="another"), tenant.id)

        SqlalchemyTenantRepository(db_session).delete(tenant)

        assert count_rows(db_session, models.GameServer) == 0
        assert count_rows(db_session, models.PortReservation) == 0

    def test_reclaim_stale_reservations(self, service, tenant, db_session):
        attached = service.provision(make_spec(), tenant.id)
        db_session.add(models.PortReservation(port=26509, reserved_at=models.utcnow() - timedelta(minutes=30)))
        db_session.add(models.PortReservation(port=26510))
        db_session.commit()

        reclaimed = service.reclaim_stale_reservations(max_age_seconds=300)

        assert reclaimed == [26509]
        assert db_session.get(models.PortReservation, attached.port) is not None
        assert db_session.get(models.PortReservation, 26510) is not None

# ===================================================================
#  동시성 테스트 (파일 SQLite, 스레드마다 독립 세션)
# ===================================================================
class TestConcurrentProvisioning:
    def _create_tenant(self, session_factory) -> int:
        with session_factory() as session:
            return SqlalchemyTenantRepository(session).create(models.Tenant(username="tenant-42")).id

    def test_concurrent_calls_get_distinct_ports(self, file_engine, config_factory, service_factory):
        """N개의 동시 요청이 서로 다른 포트를 받아야 합니다."""
        session_factory = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
        owner_id = self._create_tenant(session_factory)
        config = config_factory(port_range_start=25500, port_range_end=25519, max_port_attempts=20)
        calls = 8
        barrier = threading.Barrier(calls)

        def provision_once(index):
            with session_factory() as session:
                service = service_factory(session, config)
                barrier.wait()
                return service.provision(make_spec(name=f"srv-{index}"), owner_id).port

        with ThreadPoolExecutor(max_workers=calls) as executor:
            ports = list(executor.map(provision_once, range(calls)))

        assert len(set(ports)) == calls
        with session_factory() as session:
            assert session.query(models.GameServer).count() == calls

    def test_forced_collision_advances_to_next_port(self, file_engine, config_factory, service_factory):
        """같은 포트를 두 요청이 동시에 노리면 하나는 다음 포트로 넘어가야 합니다."""
        session_factory = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
        owner_id = self._create_tenant(session_factory)
        config = config_factory(port_range_start=25500, port_range_end=25501, port_strategy="sequential")
        barrier = threading.Barrier(2)

        def provision_once(index):
            with session_factory() as session:
                service = service_factory(session, config)
                barrier.wait()
                return service.provision(make_spec(name=f"race-{index}"), owner_id).port

        with ThreadPoolExecutor(max_workers=2) as executor:
            ports = list(executor.map(provision_once, range(2)))

        assert sorted(ports) == [25500, 25501]

    @pytest.mark.parametrize("capacity", [1, 2])
    def test_concurrent_calls_respect_address_capacity(self, file_engine, config_factory, service_factory, capacity):
        """용량을 넘는 동시 요청은 정확히 용량만큼만 성공하고 나머지는 RegionCapacityExhaustedError로 실패해야 합니다."""
        session_factory = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
        owner_id = self._create_tenant(session_factory)
        config = config_factory(region_pools={"r": ("10.0.0.1",)}, address_capacity=capacity, max_port_attempts=20)
        calls = 6
        barrier = threading.Barrier(calls)

        def provision_once(index):
            with session_factory() as session:
                service = service_factory(session, config)
                barrier.wait()
                try:
                    return service.provision(make_spec(name=f"cap-{index}", preferred_region="r"), owner_id).ip_address
                except RegionCapacityExhaustedError:
                    return None

        with ThreadPoolExecutor(max_workers=calls) as executor:
            results = list(executor.map(provision_once, range(calls)))

        assert results.count("10.0.0.1") == capacity
        assert results.count(None) == calls - capacity
        with session_factory() as session:
            slots = sorted(row[0] for row in session.query(models.GameServer.address_slot).all())
            assert slots == list(range(capacity))
            assert session.query(models.PortReservation).count() == capacity
