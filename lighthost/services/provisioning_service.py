import logging
import random
import re
import time
import uuid
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from lighthost.config import ProvisioningConfig
from lighthost.database import models
from lighthost.repositories.interfaces import IServerRepository, IPortReservationRepository
from lighthost.services.exceptions import (
    AddressSlotTakenError,
    CapacityError,
    InvalidSpecError,
    InvalidStatusTransitionError,
    PortAlreadyReservedError,
    ServerNotFoundError,
)
from lighthost.services.port_allocator import PortAllocator
from lighthost.services.region_assigner import RegionAssigner
from lighthost.services.schemas import ProvisionResult, ProvisionSpec
from lighthost.services.secret_generator import (
    SecretGenerator,
    build_panel_url,
    hash_secret,
    panel_login_url,
    panel_username,
    verify_secret,
)
from lighthost.utils.retry import backoff_delay, call_with_persistence_retry

logger = logging.getLogger(__name__)

VERSION_TAG_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,32}$")


class ProvisioningService:
    """
    검증된 생성 요청을 IP, 포트, 자격 증명이 할당된 게임 서버 레코드로 만듭니다.

    요청마다 생성되어 사용되며, 호출 사이에 상태를 보관하지 않습니다.
    공유 상태는 모두 저장소에 있으며, 포트 중복 방지는 DB 제약이 담당합니다.
    """

    def __init__(
        self,
        server_repo: IServerRepository,
        reservation_repo: IPortReservationRepository,
        config: ProvisioningConfig,
        secret_generator: Optional[SecretGenerator] = None,
        port_allocator: Optional[PortAllocator] = None,
        region_assigner: Optional[RegionAssigner] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.server_repo = server_repo
        self.reservation_repo = reservation_repo
        self.config = config
        self.sleep = sleep
        self.secret_generator = secret_generator or SecretGenerator()
        self.port_allocator = port_allocator or PortAllocator(reservation_repo, config, sleep=sleep)
        self.region_assigner = region_assigner or RegionAssigner(server_repo, config)

    def provision(self, spec: ProvisionSpec, owner_id: int) -> ProvisionResult:
        """
        새 게임 서버를 프로비저닝하고, 일회용 자격 증명을 담은 결과를 반환합니다.

        리전 배정 → 포트 예약 → 자격 증명 생성 → 서버 행 저장 순서로 진행합니다.
        서버 행 저장 시 다른 요청이 같은 주소 슬롯이나 포트를 먼저 커밋했다면,
        리전 배정 또는 포트 할당부터 다시 수행합니다.
        포트 예약 이후 어떤 단계에서 실패하더라도(호출 취소 포함) 서버 행과 포트 예약을
        정리하는 보상 롤백을 먼저 수행한 뒤 원래 예외를 전달합니다.

        Args:
            spec: 생성 요청 스펙.
            owner_id: 인증 계층이 확인한 소유 테넌트 ID.

        Returns:
            서버 정보와 access_secret, panel_token이 담긴 ProvisionResult.
            비밀 값은 이 응답에서만 확인할 수 있습니다.

        Raises:
            InvalidSpecError: 스펙이 허용 범위를 벗어났을 때.
            OwnerNotFoundError: 소유 테넌트가 존재하지 않을 때.
            RegionCapacityExhaustedError: 리전 주소 풀이 가득 찼을 때.
            CapacityError: 동시 요청과의 충돌이 재시도 한도를 넘었을 때.
            PortSpaceExhaustedError: 빈 포트를 찾지 못했을 때.
            EntropySourceUnavailableError: 보안 난수 소스를 읽을 수 없을 때.
            PersistenceFailureError: 저장소 오류가 발생했을 때.
        """
        self._validate(spec, owner_id)
        logger.info("[Provisioning] Starting for owner %s (%s)", owner_id, spec.name)

        assignment = self._assign_region(spec)
        port = self.port_allocator.allocate_port()

        resource_id = str(uuid.uuid4())
        try:
            access_secret = self.secret_generator.generate_secret(self.config.secret_length)
            panel_token = self.secret_generator.generate_panel_token(self.config.panel_token_length)
            secret_hash = hash_secret(access_secret)

            for attempt in range(1, self.config.max_port_attempts + 1):
                server = models.GameServer(
                    uuid=resource_id,
                    owner_id=owner_id,
                    name=spec.name.strip(),
                    ip_address=assignment.ip_address,
                    address_slot=assignment.address_slot,
                    port=port,
                    memory_mb=spec.memory_mb,
                    disk_mb=spec.disk_mb,
                    version_tag=spec.version_tag,
                    status=models.ServerStatus.PROVISIONING.value,
                    region=assignment.region,
                    panel_url=build_panel_url(self.config.panel_base_url, resource_id),
                    access_secret_hash=secret_hash,
                )
                try:
                    server = self._persist(
                        lambda: self.server_repo.create_with_reservation(server, port), "saving server record"
                    )
                    break
                except AddressSlotTakenError:
                    # 같은 슬롯을 먼저 커밋한 요청이 있음: 최신 사용량으로 다시 배정
                    self._wait_before_retry(attempt, "address slot", assignment.ip_address)
                    assignment = self._assign_region(spec)
                except PortAlreadyReservedError:
                    # 예약이 사라졌거나 활성 서버가 포트를 차지함: 포트 할당부터 다시 수행
                    self._wait_before_retry(attempt, "port", port)
                    self.port_allocator.release(port)
                    port = self.port_allocator.allocate_port()
            else:
                raise CapacityError(
                    f"Could not persist server {resource_id} after {self.config.max_port_attempts} "
                    "attempts due to concurrent allocations."
                )

            username = panel_username(resource_id)
            result = ProvisionResult(
                resource_id=server.uuid,
                ip_address=server.ip_address,
                port=server.port,
                region=server.region,
                location=assignment.location,
                panel_url=server.panel_url,
                status=server.status,
                provisioned_at=(server.created_at or models.utcnow()).isoformat(),
                panel_username=username,
                panel_login_url=panel_login_url(self.config.panel_base_url, username),
                rcon_host=server.ip_address,
                rcon_port=self.config.rcon_port,
                access_secret=access_secret,
                panel_token=panel_token,
            )
        except BaseException as e:
            logger.error("[Provisioning] Failed for server %s: %s. Starting rollback...", resource_id, type(e).__name__)
            self._rollback_provisioning(resource_id, port)
            raise
        finally:
            # 응답 객체 외에는 비밀 값에 대한 참조를 남기지 않음
            access_secret = panel_token = None

        logger.info("[Provisioning] Complete for server %s on %s:%s (%s)",
                    result.resource_id, result.ip_address, result.port, result.region)
        return result

    def _assign_region(self, spec: ProvisionSpec):
        return self._persist(
            lambda: self.region_assigner.assign_region(spec.preferred_region), "assigning region"
        )

    def _wait_before_retry(self, attempt: int, resource: str, value):
        delay = backoff_delay(attempt, self.config.backoff_base, self.config.backoff_max, random)
        logger.info("[Provisioning] Collision on %s %s (attempt %d/%d), retrying in %.3fs",
                    resource, value, attempt, self.config.max_port_attempts, delay)
        self.sleep(delay)

    def _rollback_provisioning(self, resource_id: str, port: int):
        try:
            if self.server_repo.delete_by_uuid(resource_id):
                logger.info("Rollback: deleted partial server record %s", resource_id)
        except Exception as e:
            logger.error("Rollback Warning: Failed to delete server record %s: %s", resource_id, e)

        try:
            if self.port_allocator.release(port):
                logger.info("Rollback: released port reservation %s", port)
        except Exception as e:
            logger.error("Rollback Warning: Failed to release port %s: %s", port, e)

    def get_server(self, owner_id: int, resource_id: str) -> Dict[str, Any]:
        """
        소유자 범위에서 서버 정보를 조회합니다. 비밀 값과 그 해시는 포함하지 않습니다.

        Raises:
            ServerNotFoundError: 서버가 없거나 요청자가 소유자가 아닐 때.
        """
        return self._to_public_dict(self._find_owned(owner_id, resource_id))

    def update_status(self, owner_id: int, resource_id: str, new_status: str) -> Dict[str, Any]:
        """
        서버의 수명 주기 상태를 변경합니다. 'deleted'가 되면 포트가 반환됩니다.

        Raises:
            ServerNotFoundError: 서버가 없거나 요청자가 소유자가 아닐 때.
            InvalidStatusTransitionError: 허용되지 않은 상태 전이일 때.
        """
        server = self._find_owned(owner_id, resource_id)
        try:
            target = models.ServerStatus(new_status)
        except ValueError:
            raise InvalidStatusTransitionError(f"Unknown status '{new_status}'.")

        current = models.ServerStatus(server.status)
        if target not in models.ALLOWED_TRANSITIONS[current]:
            raise InvalidStatusTransitionError(
                f"Cannot change status of server '{resource_id}' from '{current.value}' to '{target.value}'."
            )

        server = self._persist(
            lambda: self.server_repo.update_status(server, target.value), "updating server status"
        )
        logger.info("Server %s status changed: %s -> %s", resource_id, current.value, target.value)
        return self._to_public_dict(server)

    def verify_access_secret(self, owner_id: int, resource_id: str, secret: str) -> bool:
        """저장된 해시와 비교하여 접근 비밀번호가 맞는지 확인합니다."""
        server = self._find_owned(owner_id, resource_id)
        return verify_secret(secret, server.access_secret_hash)

    def reclaim_stale_reservations(self, max_age_seconds: int = 300) -> List[int]:
        """
        서버에 연결되지 못한 채 오래된 포트 예약을 해제합니다.

        프로비저닝 도중 프로세스가 비정상 종료되어 남은 예약을 회수하는 용도입니다.

        Returns:
            해제된 포트 번호 목록.
        """
        cutoff = models.utcnow() - timedelta(seconds=max_age_seconds)
        ports = self._persist(
            lambda: self.reservation_repo.purge_unattached_before(cutoff), "reclaiming stale reservations"
        )
        if ports:
            logger.warning("Reclaimed %d stale port reservations: %s", len(ports), ports)
        return ports

    def _find_owned(self, owner_id: int, resource_id: str) -> models.GameServer:
        server = self._persist(
            lambda: self.server_repo.find_by_uuid_and_owner_id(resource_id, owner_id), "loading server"
        )
        if not server:
            raise ServerNotFoundError(f"Server '{resource_id}' not found.")
        return server

    def _validate(self, spec: ProvisionSpec, owner_id: int):
        cfg = self.config
        if isinstance(owner_id, bool) or not isinstance(owner_id, int) or owner_id < 1:
            raise InvalidSpecError("A valid owner id is required.")
        if not isinstance(spec.name, str) or not spec.name.strip():
            raise InvalidSpecError("Name is required.")
        if len(spec.name.strip()) > cfg.max_name_length:
            raise InvalidSpecError(f"Name must be at most {cfg.max_name_length} characters.")
        self._check_bounds("memoryMB", spec.memory_mb, cfg.min_memory_mb, cfg.max_memory_mb)
        self._check_bounds("diskMB", spec.disk_mb, cfg.min_disk_mb, cfg.max_disk_mb)
        if not isinstance(spec.version_tag, str) or not VERSION_TAG_PATTERN.match(spec.version_tag):
            raise InvalidSpecError("versionTag must be 1-32 characters of letters, digits, '.', '_' or '-'.")
        if spec.preferred_region is not None and (
            not isinstance(spec.preferred_region, str) or spec.preferred_region not in cfg.region_pools
        ):
            raise InvalidSpecError(f"Unknown region '{spec.preferred_region}'.")

    @staticmethod
    def _check_bounds(field_name: str, value, minimum: int, maximum: int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidSpecError(f"{field_name} must be an integer.")
        if not minimum <= value <= maximum:
            raise InvalidSpecError(f"{field_name} must be between {minimum} and {maximum}.")

    def _persist(self, operation, description):
        return call_with_persistence_retry(
            operation,
            description,
            attempts=self.config.persistence_retries,
            base=self.config.backoff_base,
            cap=self.config.backoff_max,
            sleep=self.sleep,
            rng=random,
        )

    @staticmethod
    def _to_public_dict(server: models.GameServer) -> Dict[str, Any]:
        return {
            "resourceId": server.uuid,
            "ownerId": server.owner_id,
            "name": server.name,
            "ipAddress": server.ip_address,
            "port": server.port,
            "memoryMB": server.memory_mb,
            "diskMB": server.disk_mb,
            "versionTag": server.version_tag,
            "status": server.status,
            "region": server.region,
            "panelUrl": server.panel_url,
            "createdAt": server.created_at.isoformat() if server.created_at else None,
            "updatedAt": server.updated_at.isoformat() if server.updated_at else None,
        }
