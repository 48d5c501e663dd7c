"""Controller modules for the load-balancing controller

The Ryu application lives in lb_controller and is not imported here, so the
decision logic can be used without starting the Ryu runtime.
"""

from .arp_proxy import ArpProxy, ArpTable
from .core import ControllerCore
from .dispatcher import Dispatcher, PacketClassifier
from .flow_builder import FlowTableBuilder
from .handshake import HandshakeConfigurator
from .link_aggregation import LinkAggregationMonitor, LinkBundleState
from .load_balancer import LoadBalancer
from .switch_registry import SwitchHandle, SwitchRegistry, UnknownSwitchError

__all__ = [
    'ArpProxy',
    'ArpTable',
    'ControllerCore',
    'Dispatcher',
    'PacketClassifier',
    'FlowTableBuilder',
    'HandshakeConfigurator',
    'LinkAggregationMonitor',
    'LinkBundleState',
    'LoadBalancer',
    'SwitchHandle',
    'SwitchRegistry',
    'UnknownSwitchError',
]
