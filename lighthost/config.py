# lighthost/config.py
import ipaddress
import os
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional, Tuple

DEFAULT_REGION_CIDRS = {
    "us-east-1": "154.12.1.0/24",
    "us-west-1": "185.45.2.0/24",
    "eu-central-1": "95.211.3.0/24",
    "ap-southeast-1": "103.21.4.0/24",
}

# 사용자에게 보여 줄 리전 이름
DEFAULT_REGION_LABELS = {
    "us-east-1": "US-East",
    "us-west-1": "US-West",
    "eu-central-1": "EU-Central",
    "ap-southeast-1": "Asia-Pacific",
}

PORT_STRATEGIES = ("random", "sequential")


def expand_pool(entry: str) -> Tuple[str, ...]:
    """
    CIDR 표기(예: '154.12.1.0/24')를 할당 가능한 호스트 주소 목록으로 펼칩니다.
    단일 주소가 주어지면 그대로 하나짜리 튜플로 반환합니다.
    """
    if "/" in entry:
        network = ipaddress.ip_network(entry.strip(), strict=False)
        return tuple(str(host) for host in network.hosts())
    return (str(ipaddress.ip_address(entry.strip())),)


def _default_region_pools() -> Dict[str, Tuple[str, ...]]:
    return {region: expand_pool(cidr) for region, cidr in DEFAULT_REGION_CIDRS.items()}


@dataclass(frozen=True)
class ProvisioningConfig:
    """
    프로비저닝 엔진의 모든 설정을 담는 불변 객체입니다.

    서비스 생성 시 명시적으로 주입되며, 모듈 전역 변수로 설정을 공유하지 않습니다.
    """
    # 포트 할당
    port_range_start: int = 25500
    port_range_end: int = 26000
    reserved_ports: FrozenSet[int] = frozenset({25575})
    max_port_attempts: int = 10
    port_strategy: str = "random"
    probe_enabled: bool = True
    probe_host: str = "0.0.0.0"

    # 재시도 backoff (초)
    backoff_base: float = 0.05
    backoff_max: float = 0.5
    persistence_retries: int = 3

    # 요청 스펙 범위
    min_memory_mb: int = 1024
    max_memory_mb: int = 16384
    min_disk_mb: int = 5120
    max_disk_mb: int = 512000
    max_name_length: int = 64

    # 리전 주소 풀
    region_pools: Dict[str, Tuple[str, ...]] = field(default_factory=_default_region_pools)
    address_capacity: int = 8
    region_labels: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_REGION_LABELS))

    # 자격 증명 / 패널
    secret_length: int = 16
    panel_token_length: int = 32
    panel_base_url: str = "https://panel.lighth.io"
    rcon_port: int = 25575

    def __post_init__(self):
        if self.port_range_start < 1 or self.port_range_end > 65535:
            raise ValueError("Port range must be within 1-65535.")
        if self.port_range_start > self.port_range_end:
            raise ValueError("port_range_start must not exceed port_range_end.")
        if self.max_port_attempts < 1:
            raise ValueError("max_port_attempts must be at least 1.")
        if self.port_strategy not in PORT_STRATEGIES:
            raise ValueError(f"Unknown port strategy '{self.port_strategy}'.")
        if self.backoff_base < 0 or self.backoff_max < self.backoff_base:
            raise ValueError("Backoff bounds must satisfy 0 <= backoff_base <= backoff_max.")
        if self.persistence_retries < 1:
            raise ValueError("persistence_retries must be at least 1.")
        if not 0 < self.min_memory_mb <= self.max_memory_mb:
            raise ValueError("Memory bounds must be positive and ordered.")
        if not 0 < self.min_disk_mb <= self.max_disk_mb:
            raise ValueError("Disk bounds must be positive and ordered.")
        if self.max_name_length < 1:
            raise ValueError("max_name_length must be at least 1.")
        if not self.region_pools:
            raise ValueError("At least one region pool must be configured.")
        if self.address_capacity < 1:
            raise ValueError("address_capacity must be at least 1.")
        if self.secret_length < 4:
            raise ValueError("secret_length must allow one character of each class.")

    def region_label(self, region: str) -> str:
        """리전의 표시 이름. 이름이 설정되지 않은 리전은 식별자를 그대로 씁니다."""
        return self.region_labels.get(region, region)

    @property
    def port_range(self) -> range:
        return range(self.port_range_start, self.port_range_end + 1)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "ProvisioningConfig":
        """
        환경 변수(LIGHTHOST_*)에서 설정을 읽어 ProvisioningConfig를 생성합니다.

        리전 풀은 'us-east-1=154.12.1.0/24;eu-central-1=95.211.3.10,95.211.3.11'
        형식의 LIGHTHOST_REGION_POOLS 로 지정할 수 있습니다.
        """
        env = os.environ if environ is None else environ
        kwargs = {}

        int_settings = {
            "LIGHTHOST_PORT_RANGE_START": "port_range_start",
            "LIGHTHOST_PORT_RANGE_END": "port_range_end",
            "LIGHTHOST_MAX_PORT_ATTEMPTS": "max_port_attempts",
            "LIGHTHOST_PERSISTENCE_RETRIES": "persistence_retries",
            "LIGHTHOST_MIN_MEMORY_MB": "min_memory_mb",
            "LIGHTHOST_MAX_MEMORY_MB": "max_memory_mb",
            "LIGHTHOST_MIN_DISK_MB": "min_disk_mb",
            "LIGHTHOST_MAX_DISK_MB": "max_disk_mb",
            "LIGHTHOST_MAX_NAME_LENGTH": "max_name_length",
            "LIGHTHOST_ADDRESS_CAPACITY": "address_capacity",
            "LIGHTHOST_SECRET_LENGTH": "secret_length",
            "LIGHTHOST_PANEL_TOKEN_LENGTH": "panel_token_length",
            "LIGHTHOST_RCON_PORT": "rcon_port",
        }
        for env_name, attr in int_settings.items():
            if env.get(env_name):
                kwargs[attr] = int(env[env_name])

        for env_name, attr in (("LIGHTHOST_BACKOFF_BASE", "backoff_base"), ("LIGHTHOST_BACKOFF_MAX", "backoff_max")):
            if env.get(env_name):
                kwargs[attr] = float(env[env_name])

        if env.get("LIGHTHOST_PORT_STRATEGY"):
            kwargs["port_strategy"] = env["LIGHTHOST_PORT_STRATEGY"].lower()
        if env.get("LIGHTHOST_PROBE_ENABLED"):
            kwargs["probe_enabled"] = env["LIGHTHOST_PROBE_ENABLED"].lower() == "true"
        if env.get("LIGHTHOST_PROBE_HOST"):
            kwargs["probe_host"] = env["LIGHTHOST_PROBE_HOST"]
        if env.get("LIGHTHOST_PANEL_URL"):
            kwargs["panel_base_url"] = env["LIGHTHOST_PANEL_URL"].rstrip("/")
        if env.get("LIGHTHOST_RESERVED_PORTS"):
            kwargs["reserved_ports"] = frozenset(
                int(p) for p in env["LIGHTHOST_RESERVED_PORTS"].split(",") if p.strip()
            )
        if env.get("LIGHTHOST_REGION_POOLS"):
            kwargs["region_pools"] = parse_region_pools(env["LIGHTHOST_REGION_POOLS"])

        return cls(**kwargs)


def parse_region_pools(raw: str) -> Dict[str, Tuple[str, ...]]:
    pools = {}
    for chunk in raw.split(";"):
        if not chunk.strip():
            continue
        region, _, entries = chunk.partition("=")
        if not entries:
            raise ValueError(f"Region pool entry '{chunk}' must look like 'region=addr[,addr...]'.")
        addresses = []
        for entry in entries.split(","):
            if entry.strip():
                addresses.extend(expand_pool(entry))
        pools[region.strip()] = tuple(addresses)
    return pools
