"""Utilities for the load-balancing controller"""

from .constants import (
    EtherType,
    IPProtocol,
    TcpFlags,
    ArpOpcode,
    FlowPriority,
    FlowTimeouts,
    OpenFlow,
    SwitchRole,
    MissAction,
    BundleGroup,
    BundleState,
    FlowKind,
    MessageKind,
    PacketKind,
    DispatchResult,
)
from .logger import ControllerLogger, get_logger

__all__ = [
    'EtherType',
    'IPProtocol',
    'TcpFlags',
    'ArpOpcode',
    'FlowPriority',
    'FlowTimeouts',
    'OpenFlow',
    'SwitchRole',
    'MissAction',
    'BundleGroup',
    'BundleState',
    'FlowKind',
    'MessageKind',
    'PacketKind',
    'DispatchResult',
    'ControllerLogger',
    'get_logger',
]
