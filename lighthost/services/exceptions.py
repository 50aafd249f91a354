# lighthost/services/exceptions.py

# --- Base Exceptions ---
class ProvisioningError(Exception):
    """프로비저닝 실패의 공통 상위 예외"""
    pass

class CapacityError(ProvisioningError):
    """용량 부족으로 실패했을 때 (나중에 재시도 가능)"""
    pass

class InternalProvisioningError(ProvisioningError):
    """엔트로피/영속성 등 내부 오류로 실패했을 때"""
    pass

# --- Caller Errors ---
class InvalidSpecError(ProvisioningError):
    """요청 스펙이 허용 범위를 벗어나거나 필드가 누락되었을 때"""
    pass

class OwnerNotFoundError(InvalidSpecError):
    """요청한 소유 테넌트가 존재하지 않을 때"""
    pass

# --- Capacity Errors ---
class RegionCapacityExhaustedError(CapacityError):
    """요청한 리전(또는 모든 리전)의 주소 풀이 가득 찼을 때"""
    pass

class PortSpaceExhaustedError(CapacityError):
    """제한된 재시도 안에 빈 포트를 찾지 못했을 때"""
    pass

# --- Internal Errors ---
class EntropySourceUnavailableError(InternalProvisioningError):
    """OS의 보안 난수 소스를 읽을 수 없을 때 (약한 소스로 대체하지 않음)"""
    pass

class PersistenceFailureError(InternalProvisioningError):
    """저장소 오류를 감싼 예외"""
    pass

# --- Repository Signals ---
class PortAlreadyReservedError(Exception):
    """다른 요청이 같은 포트를 먼저 예약했을 때 (유니크 제약 위반)"""
    pass

class AddressSlotTakenError(Exception):
    """다른 요청이 같은 주소 슬롯을 먼저 차지했을 때 (유니크 제약 위반)"""
    pass

# --- Resource Exceptions ---
class ServerNotFoundError(Exception):
    """서버를 찾을 수 없거나 요청자가 소유자가 아닐 때"""
    pass

class InvalidStatusTransitionError(Exception):
    """허용되지 않은 서버 상태 전이를 요청했을 때"""
    pass

# --- Auth Exceptions ---
class TenantHeaderMissingError(Exception):
    """인증 계층이 소유자 헤더를 전달하지 않았을 때"""
    pass
