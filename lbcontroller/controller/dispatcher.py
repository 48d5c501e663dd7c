#!/usr/bin/env python3
"""
Packet Classifier and Dispatcher

Routes every packet-in to the ARP proxy or the load balancer, or reports
that the switch default should apply.
"""

from ..config.config_loader import ServiceConfig
from ..utils.constants import (
    DispatchResult,
    EtherType,
    IPProtocol,
    PacketKind,
    SwitchRole,
    TcpFlags,
)
from ..utils.logger import get_logger
from .arp_proxy import ArpProxy
from .events import PacketFields, PacketIn
from .load_balancer import LoadBalancer
from .switch_registry import SwitchRegistry


# Only these roles see client connections before they are NATed
CONNECTION_ROLES = (SwitchRole.BORDER, SwitchRole.AGGREGATION)


class PacketClassifier:
    """
    Classifies packet-ins from their decoded header fields.

    This is a pure, stateless classifier.
    """

    @staticmethod
    def is_connection_start(tcp_flags) -> bool:
        """SYN set and ACK clear"""
        if tcp_flags is None:
            return False
        return bool(tcp_flags & TcpFlags.SYN) and not tcp_flags & TcpFlags.ACK

    @classmethod
    def classify(cls, fields: PacketFields, service: ServiceConfig) -> PacketKind:
        """
        Classify a packet.

        Args:
            fields: Decoded header fields
            service: Virtual service identity

        Returns:
            PacketKind
        """
        if fields.eth_type == EtherType.ARP:
            return PacketKind.ARP
        if fields.eth_type == EtherType.LLDP:
            return PacketKind.LLDP

        if (fields.eth_type == EtherType.IPv4
                and fields.ip_proto == IPProtocol.TCP
                and fields.ipv4_dst == service.ip
                and fields.tcp_dst == service.tcp_port
                and cls.is_connection_start(fields.tcp_flags)):
            return PacketKind.NEW_CONNECTION

        return PacketKind.OTHER


class Dispatcher:
    """Sends each packet-in to the component that handles its kind"""

    def __init__(self, service: ServiceConfig, registry: SwitchRegistry,
                 arp_proxy: ArpProxy, load_balancer: LoadBalancer, logger=None):
        self.service = service
        self.registry = registry
        self.arp_proxy = arp_proxy
        self.load_balancer = load_balancer
        self.classifier = PacketClassifier()
        self.logger = get_logger(__name__, logger)

    def dispatch(self, event: PacketIn) -> DispatchResult:
        """
        Route a packet-in.

        Args:
            event: Decoded packet-in

        Returns:
            DispatchResult; NOT_HANDLED means the switch default applies
        """
        handle = self.registry.get(event.dpid)
        if handle is None:
            self.logger.warning(
                "Packet-in from unknown switch dpid=%s (xid=%s) ignored", event.dpid, event.xid
            )
            return DispatchResult.IGNORED

        kind = self.classifier.classify(event.fields, self.service)

        if kind == PacketKind.ARP:
            return self.arp_proxy.handle(event, handle)

        if kind == PacketKind.NEW_CONNECTION:
            if handle.role not in CONNECTION_ROLES:
                self.logger.debug(
                    "Connection start on %s switch s%s left to default",
                    handle.role.value, handle.dpid
                )
                return DispatchResult.NOT_HANDLED
            return self.load_balancer.handle(event, handle)

        if kind == PacketKind.LLDP:
            return DispatchResult.IGNORED

        return DispatchResult.NOT_HANDLED
