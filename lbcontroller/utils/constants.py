#!/usr/bin/env python3
"""
Constants for the load-balancing controller

All magic numbers are defined here with clear names.
"""

from enum import Enum


class EtherType:
    """Ethernet type values"""
    IPv4 = 0x0800
    ARP = 0x0806
    LLDP = 0x88CC


class IPProtocol:
    """IP protocol numbers"""
    ICMP = 1
    TCP = 6
    UDP = 17


class TcpFlags:
    """TCP control bits"""
    FIN = 0x001
    SYN = 0x002
    RST = 0x004
    ACK = 0x010


class ArpOpcode:
    """ARP operation codes"""
    REQUEST = 1
    REPLY = 2


class FlowPriority:
    """
    OpenFlow flow priority levels.

    Exact NAT rules always win over role defaults, which win over the
    table-miss entry. Role-critical rules (ARP punting) sit above NAT.
    """
    CRITICAL = 2000     # ARP to controller on border switches
    NAT = 1000          # Per-connection 5-tuple rules
    ROLE_DEFAULT = 100  # Static per-role forwarding
    TABLE_MISS = 0      # Send to controller


class FlowTimeouts:
    """Flow timeouts (in seconds)"""
    IDLE = 15
    HARD = 60


class OpenFlow:
    """OpenFlow constants"""
    NO_BUFFER = 0xffffffff


class LinkDefaults:
    """Link aggregation defaults"""
    POLL_INTERVAL = 1.0     # seconds between port-stats requests
    SAMPLE_WINDOW = 3       # utilization samples averaged per port
    HIGH_WATER_MBPS = 9.0
    LOW_WATER_MBPS = 2.0


class MeterDefaults:
    """Per-connection meter defaults"""
    RATE_KBPS = 10000
    BURST_SIZE = 0
    MAX_METERS = 1024


class SwitchRole(str, Enum):
    """Role a switch plays in the service topology"""
    BORDER = "border"
    AGGREGATION = "aggregation"
    THIRD_LINK = "third-link"
    SERVER_SIDE = "server-side"
    CLIENT_SIDE = "client-side"
    EDGE_SERVER = "edge-server"


class MissAction(str, Enum):
    """What a switch does with traffic the controller does not handle"""
    FLOOD = "flood"
    DROP = "drop"


ROLE_MISS_ACTIONS = {
    SwitchRole.BORDER: MissAction.FLOOD,
    SwitchRole.AGGREGATION: MissAction.DROP,
    SwitchRole.THIRD_LINK: MissAction.DROP,
    SwitchRole.SERVER_SIDE: MissAction.DROP,
    SwitchRole.CLIENT_SIDE: MissAction.FLOOD,
    SwitchRole.EDGE_SERVER: MissAction.DROP,
}


class BundleGroup(str, Enum):
    """Which side of the border a link bundle serves"""
    CLIENT = "client"
    SERVER = "server"


class BundleState(Enum):
    """Active path of a link bundle"""
    PRIMARY_ACTIVE = "PRIMARY_ACTIVE"
    ALTERNATE_ACTIVE = "ALTERNATE_ACTIVE"


class FlowKind(Enum):
    """Semantic intent of a flow entry; decides its priority"""
    TABLE_MISS = "table_miss"
    ROLE_DEFAULT = "role_default"
    NAT = "nat"
    CRITICAL = "critical"


FLOW_KIND_PRIORITY = {
    FlowKind.TABLE_MISS: FlowPriority.TABLE_MISS,
    FlowKind.ROLE_DEFAULT: FlowPriority.ROLE_DEFAULT,
    FlowKind.NAT: FlowPriority.NAT,
    FlowKind.CRITICAL: FlowPriority.CRITICAL,
}


class MessageKind(Enum):
    """Kinds of events delivered to the controller core"""
    SWITCH_CONNECTED = "switch_connected"
    SWITCH_DISCONNECTED = "switch_disconnected"
    PACKET_IN = "packet_in"
    PORT_STATS = "port_stats"
    POLL_TIMER = "poll_timer"


class PacketKind(Enum):
    """Classification of a packet-in"""
    ARP = "arp"
    NEW_CONNECTION = "new_connection"
    LLDP = "lldp"
    OTHER = "other"


class DispatchResult(Enum):
    """Outcome of handling a packet-in"""
    HANDLED = "handled"
    NOT_HANDLED = "not_handled"
    DROPPED = "dropped"
    IGNORED = "ignored"
