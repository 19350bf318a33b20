"""Configuration loading and validation.

The monitor is configured from a YAML file. Validation happens once at
startup; any error is fatal before the first probe is sent.
"""

import logging
import math
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from lvsmon.control.ipvs import FORWARDING_METHODS
from lvsmon.core.ports import PortSpecError, ServicePorts
from lvsmon.core.scheduler import SchedulingStrategy

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Invalid or unreadable configuration."""


NUMERIC_OPTIONS = (
    ("loss_threshold", int),
    ("window_size", int),
    ("ping_count", int),
    ("probe_interval", float),
    ("probe_timeout", float),
    ("command_timeout", float),
)


def _coerce_number(name: str, value: Any, kind: type):
    """Convert a numeric option, accepting numeric strings but not booleans
    or fractional values for integer options."""
    if isinstance(value, bool):
        raise ConfigError(f"'{name}' must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{name}' must be a number, got {value!r}")
    if not math.isfinite(number):
        raise ConfigError(f"'{name}' must be a finite number, got {value!r}")
    if kind is int:
        if not number.is_integer():
            raise ConfigError(f"'{name}' must be a whole number, got {value!r}")
        return int(number)
    return number


@dataclass
class MetricsConfig:
    """Configuration of the Prometheus metrics endpoint."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 9105


@dataclass
class MonitorConfig:
    """Configuration of the health monitor."""
    backends: List[str] = field(default_factory=list)
    virtual_address: str = ""
    tcp_ports: List[str] = field(default_factory=list)  # "80" or "11000-12000"
    udp_ports: List[str] = field(default_factory=list)

    loss_threshold: int = 5  # average loss percent that removes a backend
    window_size: int = 60  # samples in the sliding window
    probe_interval: float = 1.0  # seconds between cycles
    probe_timeout: float = 1.0  # seconds before a ping round counts as lost
    ping_count: int = 1  # echo requests per probe round

    scheduling_policy: str = "rr"
    forwarding_method: str = "masq"
    strategy: str = SchedulingStrategy.CONCURRENT.value
    commit_on_failure: bool = True
    command_timeout: float = 5.0
    ipvsadm_path: str = "ipvsadm"
    ping_path: str = "ping"

    metrics: MetricsConfig = field(default_factory=MetricsConfig)

    _ports: Optional[ServicePorts] = field(default=None, init=False, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "MonitorConfig":
        """Build a validated config from parsed YAML.

        Raises:
            ConfigError: If the data is not a mapping or fails validation
        """
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError("Configuration root must be a mapping")

        known = {f.name for f in fields(cls) if f.init}
        for key in data:
            if key not in known:
                logger.warning(f"Ignoring unknown configuration key: {key}")

        values = {k: v for k, v in data.items() if k in known}
        metrics = values.pop("metrics", None) or {}
        if not isinstance(metrics, dict):
            raise ConfigError("'metrics' must be a mapping")
        try:
            config = cls(**values, metrics=MetricsConfig(**metrics))
        except TypeError as e:
            raise ConfigError(f"Invalid metrics configuration: {e}") from e
        config.validate()
        return config

    def validate(self) -> None:
        """Check every option and expand the port specs.

        Raises:
            ConfigError: On the first invalid option
        """
        if not isinstance(self.backends, list) or not self.backends:
            raise ConfigError("'backends' must be a non-empty list")
        self.backends = [str(b).strip() for b in self.backends]
        if any(not b for b in self.backends):
            raise ConfigError("Backend addresses must not be empty")
        if len(set(self.backends)) != len(self.backends):
            raise ConfigError("Duplicate backend addresses")
        if not self.virtual_address:
            raise ConfigError("'virtual_address' is required")

        for name in ("tcp_ports", "udp_ports"):
            value = getattr(self, name)
            if not isinstance(value, list):
                raise ConfigError(f"'{name}' must be a list of port specs")
            setattr(self, name, [str(v) for v in value])
        try:
            self._ports = ServicePorts.from_specs(self.tcp_ports, self.udp_ports)
        except PortSpecError as e:
            raise ConfigError(str(e)) from e
        if not len(self._ports):
            logger.warning("No service ports configured; membership changes will be no-ops")

        for name, kind in NUMERIC_OPTIONS:
            setattr(self, name, _coerce_number(name, getattr(self, name), kind))
        for name, value in (("commit_on_failure", self.commit_on_failure),
                            ("metrics.enabled", self.metrics.enabled)):
            if not isinstance(value, bool):
                raise ConfigError(f"'{name}' must be true or false, got {value!r}")

        if not 0 <= self.loss_threshold <= 100:
            raise ConfigError("'loss_threshold' must be between 0 and 100")
        if self.window_size <= 0:
            raise ConfigError("'window_size' must be positive")
        for name in ("probe_interval", "probe_timeout", "command_timeout", "ping_count"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"'{name}' must be positive")

        try:
            SchedulingStrategy(self.strategy)
        except ValueError:
            choices = ", ".join(s.value for s in SchedulingStrategy)
            raise ConfigError(f"Unknown strategy '{self.strategy}' (expected one of {choices})")
        if self.forwarding_method not in FORWARDING_METHODS:
            choices = ", ".join(FORWARDING_METHODS)
            raise ConfigError(
                f"Unknown forwarding_method '{self.forwarding_method}' (expected one of {choices})"
            )
        port = self.metrics.port
        if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
            raise ConfigError("'metrics.port' must be a valid port")

    @property
    def ports(self) -> ServicePorts:
        """Expanded service ports, computed once."""
        if self._ports is None:
            self._ports = ServicePorts.from_specs(self.tcp_ports, self.udp_ports)
        return self._ports

    @property
    def scheduling_strategy(self) -> SchedulingStrategy:
        return SchedulingStrategy(self.strategy)


def load_config(path: Union[str, Path]) -> MonitorConfig:
    """Load and validate a YAML configuration file.

    Raises:
        ConfigError: If the file is missing, is not valid YAML or is invalid
    """
    path = Path(path)
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file '{path}': {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in '{path}': {e}") from e
    return MonitorConfig.from_dict(data)
