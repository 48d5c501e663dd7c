#!/usr/bin/env python3
"""
Configuration loader for the load-balancing controller

Loads and validates configuration from YAML file. The file is read once at
startup; every object built here is treated as read-only afterwards.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from ..utils.constants import (
    ROLE_MISS_ACTIONS,
    BundleGroup,
    FlowTimeouts,
    LinkDefaults,
    MeterDefaults,
    MissAction,
    SwitchRole,
)


log = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = 'controller_config.yaml'


class ConfigurationError(ValueError):
    """Raised when the configuration file is structurally invalid"""
    pass


@dataclass(frozen=True)
class ServiceConfig:
    """Virtual service identity seen by clients"""
    ip: str
    mac: str
    tcp_port: int


@dataclass(frozen=True)
class BackendConfig:
    """Real server attached to a server-side switch"""
    ip: str
    mac: str
    tcp_port: int


@dataclass
class SwitchConfig:
    """Explicit switch identity -> role -> port assignment"""
    dpid: int
    name: str
    role: SwitchRole
    ports: Dict[str, int] = field(default_factory=dict)
    miss_action: MissAction = MissAction.DROP
    backend: Optional[BackendConfig] = None
    border_port: Optional[int] = None
    aggregation_port: Optional[int] = None

    def port(self, name: str) -> Optional[int]:
        """Get a named port, None when not assigned"""
        return self.ports.get(name)


@dataclass
class BundleConfig:
    """Two candidate ports forming one logical path"""
    name: str
    dpid: int
    primary_port: int
    alternate_port: int
    group: BundleGroup = BundleGroup.CLIENT
    high_water_mbps: float = LinkDefaults.HIGH_WATER_MBPS
    low_water_mbps: float = LinkDefaults.LOW_WATER_MBPS


@dataclass
class LinkAggregationConfig:
    """Link aggregation configuration"""
    enabled: bool = False
    server_side_enabled: bool = False
    poll_interval: float = LinkDefaults.POLL_INTERVAL
    sample_window: int = LinkDefaults.SAMPLE_WINDOW
    bundles: List[BundleConfig] = field(default_factory=list)

    def group_enabled(self, group: BundleGroup) -> bool:
        """Check whether bundles of a group are monitored"""
        if group == BundleGroup.SERVER:
            return self.server_side_enabled
        return self.enabled


@dataclass
class MeterConfig:
    """Per-connection meter configuration"""
    enabled: bool = False
    rate_kbps: int = MeterDefaults.RATE_KBPS
    burst_size: int = MeterDefaults.BURST_SIZE
    max_meters: int = MeterDefaults.MAX_METERS


@dataclass
class TimingConfig:
    """Timing configuration"""
    flow_idle_timeout: int = FlowTimeouts.IDLE
    flow_hard_timeout: int = FlowTimeouts.HARD


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: Optional[str] = None
    log_dir: Optional[str] = None


@dataclass
class ControllerConfig:
    """Main controller configuration"""
    name: str
    service: ServiceConfig
    switches: List[SwitchConfig]
    link_aggregation: LinkAggregationConfig = field(default_factory=LinkAggregationConfig)
    meter: MeterConfig = field(default_factory=MeterConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    route_up: bool = False

    def switch(self, dpid: int) -> Optional[SwitchConfig]:
        """Get switch configuration by datapath ID"""
        for switch in self.switches:
            if switch.dpid == dpid:
                return switch
        return None

    def switches_by_role(self, role: SwitchRole) -> List[SwitchConfig]:
        """Get all switches with the given role, in file order"""
        return [s for s in self.switches if s.role == role]

    def bundles_for(self, dpid: int) -> List[BundleConfig]:
        """Get all link bundles owned by a switch"""
        return [b for b in self.link_aggregation.bundles if b.dpid == dpid]

    def validate(self) -> List[str]:
        """
        Validate configuration and return list of warnings/errors.

        Returns:
            List of warning/error messages (empty if valid)
        """
        issues = []

        # Check for duplicate switch IDs
        dpids = [s.dpid for s in self.switches]
        if len(dpids) != len(set(dpids)):
            issues.append("❌ Duplicate switch IDs detected")

        for switch in self.switches:
            if switch.role == SwitchRole.SERVER_SIDE:
                if switch.backend is None:
                    issues.append(f"❌ Server-side switch {switch.name} has no backend")
                if switch.border_port is None:
                    issues.append(f"❌ Server-side switch {switch.name} has no border_port")
                if switch.port('border') is None or switch.port('server') is None:
                    issues.append(f"❌ Server-side switch {switch.name} needs 'border' and 'server' ports")
            elif switch.role == SwitchRole.EDGE_SERVER:
                if switch.backend is None:
                    issues.append(f"❌ Edge server switch {switch.name} has no backend")
                if switch.aggregation_port is None:
                    issues.append(f"❌ Edge server switch {switch.name} has no aggregation_port")
                if switch.port('aggregation') is None or switch.port('server') is None:
                    issues.append(f"❌ Edge server switch {switch.name} needs 'aggregation' and 'server' ports")
            elif switch.role == SwitchRole.AGGREGATION:
                if switch.port('border') is None or switch.port('client') is None:
                    issues.append(f"❌ Aggregation switch {switch.name} needs 'border' and 'client' ports")
            elif switch.role == SwitchRole.THIRD_LINK:
                if switch.port('border') is None or switch.port('aggregation') is None:
                    issues.append(f"❌ Third-link switch {switch.name} needs 'border' and 'aggregation' ports")
            elif switch.role == SwitchRole.BORDER:
                if switch.port('aggregation') is None:
                    issues.append(f"❌ Border switch {switch.name} needs an 'aggregation' port")

        if not self.switches_by_role(SwitchRole.BORDER):
            issues.append("⚠️  No border switch configured, connections cannot be balanced")

        if not self.switches_by_role(SwitchRole.SERVER_SIDE):
            issues.append("⚠️  No server-side switch configured, every connection will be dropped")

        if self.route_up and not self.switches_by_role(SwitchRole.EDGE_SERVER):
            issues.append("⚠️  Route up without an edge server switch, connections use the pool")

        # Validate link bundles
        lag = self.link_aggregation
        if lag.poll_interval <= 0:
            issues.append("❌ Poll interval must be positive")
        if lag.sample_window < 1:
            issues.append("❌ Sample window must be at least 1")

        for bundle in lag.bundles:
            if self.switch(bundle.dpid) is None:
                issues.append(f"❌ Bundle {bundle.name} references unknown switch {bundle.dpid}")
            if bundle.primary_port == bundle.alternate_port:
                issues.append(f"❌ Bundle {bundle.name} primary and alternate ports must differ")
            if bundle.low_water_mbps <= 0:
                issues.append(f"❌ Bundle {bundle.name} low-water mark must be positive")
            if bundle.high_water_mbps <= bundle.low_water_mbps:
                issues.append(f"❌ Bundle {bundle.name} high-water mark must exceed low-water mark")

        names = [b.name for b in lag.bundles]
        if len(names) != len(set(names)):
            issues.append("❌ Duplicate bundle names detected")

        # Validate meters
        if self.meter.enabled:
            if self.meter.rate_kbps <= 0:
                issues.append("❌ Meter rate must be positive")
            if self.meter.max_meters < 1:
                issues.append("❌ At least one meter id is required")

        if self.timing.flow_idle_timeout == 0 and self.timing.flow_hard_timeout == 0:
            issues.append("⚠️  NAT flows never expire (idle and hard timeouts are both 0)")

        return issues


def default_config_path() -> str:
    """Path of the configuration file shipped with the package"""
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), DEFAULT_CONFIG_FILE)


def _parse_backend(data: Optional[Dict[str, Any]], service: ServiceConfig) -> Optional[BackendConfig]:
    if not data:
        return None
    return BackendConfig(
        ip=data['ip'],
        mac=data['mac'],
        tcp_port=data.get('tcp_port', service.tcp_port)
    )


def _optional_port(value) -> Optional[int]:
    return int(value) if value is not None else None


def _parse_switch(data: Dict[str, Any], service: ServiceConfig) -> SwitchConfig:
    try:
        role = SwitchRole(data['role'])
    except ValueError:
        raise ConfigurationError(f"Unknown role '{data['role']}' for switch {data.get('name')}")

    miss_action = MissAction(data.get('miss_action', ROLE_MISS_ACTIONS[role].value))

    return SwitchConfig(
        dpid=int(data['dpid']),
        name=data.get('name', f"s{data['dpid']}"),
        role=role,
        ports={k: int(v) for k, v in (data.get('ports') or {}).items()},
        miss_action=miss_action,
        backend=_parse_backend(data.get('backend'), service),
        border_port=_optional_port(data.get('border_port')),
        aggregation_port=_optional_port(data.get('aggregation_port'))
    )


def _parse_bundle(data: Dict[str, Any]) -> BundleConfig:
    return BundleConfig(
        name=data['name'],
        dpid=int(data['dpid']),
        primary_port=int(data['primary_port']),
        alternate_port=int(data['alternate_port']),
        group=BundleGroup(data.get('group', BundleGroup.CLIENT.value)),
        high_water_mbps=float(data.get('high_water_mbps', LinkDefaults.HIGH_WATER_MBPS)),
        low_water_mbps=float(data.get('low_water_mbps', LinkDefaults.LOW_WATER_MBPS))
    )


def parse_config(data: Dict[str, Any]) -> ControllerConfig:
    """
    Build a ControllerConfig from an already-loaded mapping.

    Args:
        data: Parsed YAML document

    Returns:
        ControllerConfig object (not validated)

    Raises:
        ConfigurationError: If a required section or key is missing
    """
    try:
        service_data = data['service']
        service = ServiceConfig(
            ip=service_data['ip'],
            mac=service_data['mac'],
            tcp_port=int(service_data['tcp_port'])
        )

        switches = [_parse_switch(s, service) for s in data['switches']]

        lag_data = data.get('link_aggregation') or {}
        link_aggregation = LinkAggregationConfig(
            enabled=bool(lag_data.get('enabled', False)),
            server_side_enabled=bool(lag_data.get('server_side_enabled', False)),
            poll_interval=float(lag_data.get('poll_interval', LinkDefaults.POLL_INTERVAL)),
            sample_window=int(lag_data.get('sample_window', LinkDefaults.SAMPLE_WINDOW)),
            bundles=[_parse_bundle(b) for b in lag_data.get('bundles') or []]
        )

        meter_data = data.get('meter') or {}
        meter = MeterConfig(
            enabled=bool(meter_data.get('enabled', False)),
            rate_kbps=int(meter_data.get('rate_kbps', MeterDefaults.RATE_KBPS)),
            burst_size=int(meter_data.get('burst_size', MeterDefaults.BURST_SIZE)),
            max_meters=int(meter_data.get('max_meters', MeterDefaults.MAX_METERS))
        )

        timing_data = data.get('timing') or {}
        timing = TimingConfig(
            flow_idle_timeout=int(timing_data.get('flow_idle_timeout', FlowTimeouts.IDLE)),
            flow_hard_timeout=int(timing_data.get('flow_hard_timeout', FlowTimeouts.HARD))
        )

        logging_data = data.get('logging') or {}
        logging_config = LoggingConfig(
            level=logging_data.get('level', 'INFO'),
            format=logging_data.get('format'),
            log_dir=logging_data.get('log_dir')
        )
    except KeyError as e:
        raise ConfigurationError(f"Missing configuration key: {e}")

    return ControllerConfig(
        name=data.get('name', 'lb-controller'),
        service=service,
        switches=switches,
        link_aggregation=link_aggregation,
        meter=meter,
        timing=timing,
        logging=logging_config,
        route_up=bool(data.get('route_up', False))
    )


def load_config(config_path: str) -> ControllerConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        ControllerConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is malformed
        ValueError: If configuration is invalid
    """
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f)

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file is empty or not a mapping: {config_path}")

    config = parse_config(data)

    # Validate configuration
    issues = config.validate()
    error_issues = [i for i in issues if i.startswith('❌')]
    warning_issues = [i for i in issues if i.startswith('⚠️')]

    for warning in warning_issues:
        log.warning(warning)

    if error_issues:
        for error in error_issues:
            log.error(error)
        raise ValueError("Invalid configuration: " + "; ".join(error_issues))

    log.info(
        "Configuration loaded: %s (%d switches, %d bundles)",
        config.name, len(config.switches), len(config.link_aggregation.bundles)
    )

    return config
