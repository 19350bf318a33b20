"""Port Specification Expander.

Turns the textual port tokens of the configuration ("80", "11000-12000")
into the concrete ports of every virtual service, once per protocol family.

Author: LVS Monitor Team
Version: 1.0.0
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, List, Tuple

RANGE_SEPARATOR = "-"
MIN_PORT = 1
MAX_PORT = 65535


class PortSpecError(ValueError):
    """Raised when a port token is neither a port nor a low-high range."""


class ServiceProtocol(Enum):
    """Protocol family of a virtual service."""
    TCP = "tcp"  # connection-oriented
    UDP = "udp"  # connectionless

    @property
    def flag(self) -> str:
        """ipvsadm switch selecting this protocol (-t / -u)."""
        return "-t" if self is ServiceProtocol.TCP else "-u"

    @property
    def label(self) -> str:
        return self.value.upper()


@dataclass(frozen=True)
class ServiceKey:
    """(protocol, port) pair identifying a virtual service endpoint."""
    protocol: ServiceProtocol
    port: int

    def __str__(self) -> str:
        return f"{self.protocol.label}:{self.port}"


def _parse_port(text: str, token: str) -> int:
    text = text.strip()
    if not (text.isascii() and text.isdigit()):
        raise PortSpecError(f"Invalid port token: {token!r}")
    port = int(text)
    if not MIN_PORT <= port <= MAX_PORT:
        raise PortSpecError(
            f"Port {port} in token {token!r} is outside {MIN_PORT}-{MAX_PORT}"
        )
    return port


def expand_port_token(token: str) -> List[int]:
    """Expand a single token.

    Args:
        token: "80" or an inclusive range such as "21000-21002"

    Returns:
        Concrete ports in ascending order. A range whose low end is above
        its high end expands to an empty list.

    Raises:
        PortSpecError: If the token is malformed
    """
    token = str(token).strip()
    if RANGE_SEPARATOR not in token:
        return [_parse_port(token, token)]

    parts = token.split(RANGE_SEPARATOR)
    if len(parts) != 2:
        raise PortSpecError(f"Invalid port range: {token!r}")
    low = _parse_port(parts[0], token)
    high = _parse_port(parts[1], token)
    if low > high:
        return []
    return list(range(low, high + 1))


def expand_port_specs(tokens: Iterable[str]) -> List[int]:
    """Expand an ordered list of tokens into an ordered set of ports.

    Ports keep the order of their first appearance; duplicates coming from
    overlapping tokens are dropped.
    """
    ports: List[int] = []
    seen = set()
    for token in tokens:
        for port in expand_port_token(token):
            if port not in seen:
                seen.add(port)
                ports.append(port)
    return ports


@dataclass(frozen=True)
class ServicePorts:
    """Expanded ports of both protocol families, computed once at startup."""
    tcp: Tuple[int, ...] = ()
    udp: Tuple[int, ...] = ()

    @classmethod
    def from_specs(cls, tcp_specs: Iterable[str] = (),
                   udp_specs: Iterable[str] = ()) -> "ServicePorts":
        return cls(
            tcp=tuple(expand_port_specs(tcp_specs)),
            udp=tuple(expand_port_specs(udp_specs)),
        )

    def ports_for(self, protocol: ServiceProtocol) -> Tuple[int, ...]:
        return self.tcp if protocol is ServiceProtocol.TCP else self.udp

    def service_keys(self) -> Iterator[ServiceKey]:
        """Yield every service key, TCP services first."""
        for port in self.tcp:
            yield ServiceKey(ServiceProtocol.TCP, port)
        for port in self.udp:
            yield ServiceKey(ServiceProtocol.UDP, port)

    def __len__(self) -> int:
        return len(self.tcp) + len(self.udp)
