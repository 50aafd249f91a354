import logging
from typing import Optional, Tuple

from lighthost.config import ProvisioningConfig
from lighthost.repositories.interfaces import IServerRepository
from lighthost.services.exceptions import InvalidSpecError, RegionCapacityExhaustedError
from lighthost.services.schemas import RegionAssignment

logger = logging.getLogger(__name__)


class RegionAssigner:
    """
    설정된 리전별 주소 풀에서 서버에 부여할 IP와 주소 슬롯을 고릅니다.

    실제 인프라를 할당하지 않으며, 레코드에 기록할 논리 주소만 결정합니다.
    주소마다 0..address_capacity-1 번호의 슬롯이 있고, 서버 행이 커밋될 때
    (IP, 슬롯) 유니크 제약이 용량을 보장합니다. 여기서는 비어 보이는 슬롯을 제안할 뿐이며,
    동시 요청과 충돌하면 호출자가 다시 배정을 요청합니다.
    """

    def __init__(self, server_repo: IServerRepository, config: ProvisioningConfig):
        self.server_repo = server_repo
        self.config = config

    def assign_region(self, preferred_region: Optional[str] = None) -> RegionAssignment:
        """
        선호 리전 또는 가장 한가한 리전에서 주소와 슬롯을 배정합니다.

        선호 리전이 가득 찬 경우 다른 리전으로 몰래 대체하지 않고 실패합니다.

        Raises:
            InvalidSpecError: 설정에 없는 리전을 요청했을 때.
            RegionCapacityExhaustedError: 요청한 리전(또는 모든 리전)에 빈 슬롯이 없을 때.
        """
        pools = self.config.region_pools
        if preferred_region is not None:
            if not isinstance(preferred_region, str) or preferred_region not in pools:
                raise InvalidSpecError(f"Unknown region '{preferred_region}'.")
            picked = self._pick_slot(preferred_region)
            if picked is None:
                raise RegionCapacityExhaustedError(f"Region '{preferred_region}' has no addresses left.")
            return self._assignment(preferred_region, *picked)

        load = self.server_repo.count_active_by_region()
        # 활성 서버가 적은 리전부터 시도 (동률이면 설정 순서)
        for region in sorted(pools, key=lambda r: load.get(r, 0)):
            picked = self._pick_slot(region)
            if picked is not None:
                return self._assignment(region, *picked)

        raise RegionCapacityExhaustedError("All regions have exhausted their address pools.")

    def _assignment(self, region: str, ip_address: str, slot: int) -> RegionAssignment:
        location = self.config.region_label(region)
        logger.info("[IP Assignment] Assigned %s slot %d (%s)", ip_address, slot, location)
        return RegionAssignment(ip_address=ip_address, region=region, address_slot=slot, location=location)

    def _pick_slot(self, region: str) -> Optional[Tuple[str, int]]:
        """가장 적게 쓰인 주소와 그 주소에서 가장 낮은 빈 슬롯 번호를 고릅니다."""
        usage = self.server_repo.list_active_slots(region)
        capacity = self.config.address_capacity
        best, best_count = None, None
        for address in self.config.region_pools[region]:
            count = len(usage.get(address, ()))
            if count >= capacity:
                continue
            if best_count is None or count < best_count:
                best, best_count = address, count
                if count == 0:
                    break
        if best is None:
            return None

        taken = set(usage.get(best, ()))
        slot = next(s for s in range(capacity) if s not in taken)
        return best, slot
