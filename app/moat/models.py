from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Tuple

from app.settings import settings

PROTOCOL_VERSION = "0.1.0"
TRANSPORT = "obfs4"
CONTENT_TYPE = "application/vnd.api+json"

# Bridge line tor uses to reach the domain-fronted distributor itself
MOAT_BRIDGE = "moat"


class NetworkStatus(str, Enum):
    OFF = "OFF"
    STARTING = "STARTING"
    ON = "ON"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "NetworkStatus":
        """Empty status means the service has not reported yet, i.e. OFF."""
        if raw is None:
            return cls.OFF
        if isinstance(raw, NetworkStatus):
            return raw
        s = str(raw).strip().upper()
        if not s:
            return cls.OFF
        try:
            return cls(s)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class ProxyEndpoint:
    host: str
    port: int

    def __post_init__(self):
        if not self.host:
            raise ValueError("proxy host must not be empty")
        if not (1 <= int(self.port) <= 65535):
            raise ValueError(f"proxy port out of range: {self.port}")

    @classmethod
    def with_defaults(cls, host: Optional[str] = None, port: Optional[int] = None) -> "ProxyEndpoint":
        h = (host or "").strip() or settings.SOCKS_PROXY_HOST_DEFAULT
        try:
            p = int(port) if port is not None else -1
        except (TypeError, ValueError):
            p = -1
        if not (1 <= p <= 65535):
            p = int(settings.SOCKS_PROXY_PORT_DEFAULT)
        return cls(host=h, port=p)

    @property
    def url(self) -> str:
        return f"socks5://{self.host}:{self.port}"


@dataclass(frozen=True)
class StatusNotification:
    status: NetworkStatus
    endpoint: ProxyEndpoint

    @classmethod
    def from_raw(cls, status: Optional[str] = None, host: Optional[str] = None,
                 port: Optional[int] = None) -> "StatusNotification":
        return cls(status=NetworkStatus.parse(status), endpoint=ProxyEndpoint.with_defaults(host, port))


@dataclass(frozen=True)
class Challenge:
    challenge_token: str
    image: bytes = field(repr=False)
    id: Optional[str] = None


@dataclass(frozen=True)
class BridgeSet:
    lines: Tuple[str, ...] = ()

    @classmethod
    def from_lines(cls, lines: Iterable[str]) -> "BridgeSet":
        return cls(lines=tuple(lines))

    def to_storage(self) -> str:
        """One bridge per line, each terminated by a newline."""
        return "".join(f"{line}\n" for line in self.lines)

    def __len__(self) -> int:
        return len(self.lines)
