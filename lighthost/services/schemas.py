from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ProvisionSpec:
    """게임 서버 생성 요청. 소유자 ID는 인증 계층이 별도로 전달하며 여기에 포함하지 않습니다."""
    name: str
    memory_mb: int
    disk_mb: int
    version_tag: str
    preferred_region: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProvisionSpec":
        """camelCase 요청 본문(name, memoryMB, diskMB, versionTag, preferredRegion)을 변환합니다."""
        return cls(
            name=data.get("name"),
            memory_mb=data.get("memoryMB"),
            disk_mb=data.get("diskMB"),
            version_tag=data.get("versionTag"),
            preferred_region=data.get("preferredRegion"),
        )


@dataclass(frozen=True)
class RegionAssignment:
    """배정된 주소와 그 주소 안의 슬롯 번호. location은 사람이 읽는 리전 이름입니다."""
    ip_address: str
    region: str
    address_slot: int
    location: str


@dataclass(frozen=True)
class ProvisionResult:
    """
    프로비저닝 결과. access_secret과 panel_token은 이 객체에만 담겨 단 한 번 전달됩니다.
    repr에서는 비밀 값을 제외하여 로그에 남지 않도록 합니다.
    """
    resource_id: str
    ip_address: str
    port: int
    region: str
    location: str
    panel_url: str
    status: str
    provisioned_at: str
    panel_username: str
    panel_login_url: str
    rcon_host: str
    rcon_port: int
    access_secret: str = field(repr=False)
    panel_token: str = field(repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resourceId": self.resource_id,
            "ipAddress": self.ip_address,
            "port": self.port,
            "region": self.region,
            "location": self.location,
            "panelUrl": self.panel_url,
            "status": self.status,
            "provisionedAt": self.provisioned_at,
            "panelUsername": self.panel_username,
            "panelLoginUrl": self.panel_login_url,
            "rconHost": self.rcon_host,
            "rconPort": self.rcon_port,
            "accessSecret": self.access_secret,
            "panelToken": self.panel_token,
        }
