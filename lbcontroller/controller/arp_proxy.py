#!/usr/bin/env python3
"""
ARP Proxy

Answers address-resolution queries for the virtual service and for hosts
already seen on the network, learning IP/MAC pairs from ARP traffic.
"""

from typing import Dict, Optional

from ..config.config_loader import ServiceConfig
from ..utils.constants import ArpOpcode, DispatchResult
from ..utils.logger import get_logger
from .events import PacketIn
from .flow_builder import FlowTableBuilder
from .switch_registry import SwitchHandle


# Sender address of an RFC 5227 address probe
UNSPECIFIED_IP = "0.0.0.0"


class ArpTable:
    """
    IP-to-MAC resolution table.

    One entry per IP, last write wins, entries never expire.
    """

    def __init__(self):
        """Initialize empty ARP table"""
        # Structure: {ip_address: mac_address}
        self.arp_table: Dict[str, str] = {}

    def learn(self, ip_address: str, mac_address: str) -> bool:
        """
        Save an IP-to-MAC mapping.

        Args:
            ip_address: IPv4 address
            mac_address: MAC address

        Returns:
            True if the entry is new or changed, False if already known
        """
        changed = self.arp_table.get(ip_address) != mac_address
        self.arp_table[ip_address] = mac_address
        return changed

    def lookup(self, ip_address: str) -> Optional[str]:
        """
        Resolve an IP address.

        Args:
            ip_address: IPv4 address to lookup

        Returns:
            MAC address if found, None otherwise
        """
        return self.arp_table.get(ip_address)

    def clear(self):
        """Clear ARP table"""
        self.arp_table.clear()

    def entries(self) -> Dict[str, str]:
        """Get a copy of all entries"""
        return self.arp_table.copy()

    def __contains__(self, ip_address) -> bool:
        return ip_address in self.arp_table

    def __len__(self) -> int:
        return len(self.arp_table)


class ArpProxy:
    """
    Proxy ARP for the border switch.

    Requests for the virtual service are always answered with the service
    MAC on the ingress port. Requests for other hosts are answered from the
    table, or left to the switch default (flood) on a miss. No request is
    ever generated and nothing is retried.

    Address probes (sender 0.0.0.0) are never learned, and gratuitous ARPs
    are only learned, never answered.
    """

    def __init__(self, service: ServiceConfig, arp_table: ArpTable, logger=None):
        self.service = service
        self.arp_table = arp_table
        self.logger = get_logger(__name__, logger)
        self.builder = FlowTableBuilder()

    def handle(self, event: PacketIn, handle: SwitchHandle) -> DispatchResult:
        """
        Handle an ARP packet-in.

        Args:
            event: Decoded packet-in
            handle: Switch that raised it

        Returns:
            HANDLED when a reply was sent, NOT_HANDLED to fall back to the
            switch default, DROPPED for malformed frames
        """
        f = event.fields
        if f.arp_op is None or not f.arp_spa or not f.arp_sha or not f.arp_tpa:
            self.logger.warning(
                "[ARP] Malformed ARP frame on s%s port %s (xid=%s), dropped",
                handle.dpid, event.in_port, event.xid
            )
            return DispatchResult.DROPPED

        if f.arp_op == ArpOpcode.REPLY:
            self._learn(f.arp_spa, f.arp_sha)
            return DispatchResult.NOT_HANDLED

        if f.arp_op != ArpOpcode.REQUEST:
            self.logger.warning(
                "[ARP] Unexpected ARP opcode %s on s%s, dropped", f.arp_op, handle.dpid
            )
            return DispatchResult.DROPPED

        # Requesters are hosts too, unless they are still probing for an address
        probing = f.arp_spa == UNSPECIFIED_IP
        if not probing:
            self._learn(f.arp_spa, f.arp_sha)

        if f.arp_tpa == f.arp_spa:
            self.logger.arp_event("Gratuitous ARP from %s (%s)", f.arp_spa, f.arp_sha)
            return DispatchResult.NOT_HANDLED

        if f.arp_tpa == self.service.ip:
            self._reply(event, handle, self.service.mac, self.service.ip)
            self.logger.arp_event(
                "%s is-at %s (virtual service) -> %s via s%s port %s",
                self.service.ip, self.service.mac, f.arp_spa, handle.dpid, event.in_port
            )
            return DispatchResult.HANDLED

        mac = self.arp_table.lookup(f.arp_tpa)
        if mac is None:
            self.logger.arp_event(
                "No entry for %s (asked by %s), leaving to switch default",
                f.arp_tpa, f.arp_spa
            )
            return DispatchResult.NOT_HANDLED

        if probing and mac == f.arp_sha:
            # Never answer a host's probe with its own MAC
            self.logger.arp_event(
                "Probe for %s from its own MAC %s, leaving to switch default", f.arp_tpa, mac
            )
            return DispatchResult.NOT_HANDLED

        self._reply(event, handle, mac, f.arp_tpa)
        self.logger.arp_event(
            "%s is-at %s (proxied) -> %s via s%s port %s",
            f.arp_tpa, mac, f.arp_spa, handle.dpid, event.in_port
        )
        return DispatchResult.HANDLED

    def _learn(self, ip_address: str, mac_address: str):
        if self.arp_table.learn(ip_address, mac_address):
            self.logger.arp_event("Learned %s -> %s", ip_address, mac_address)

    def _reply(self, event: PacketIn, handle: SwitchHandle, mac: str, ip: str):
        """Send an ARP reply back out of the port the request came in on"""
        datapath = handle.datapath
        ofproto = datapath.ofproto
        parser = datapath.ofproto_parser
        f = event.fields

        data = self.builder.arp_reply(
            src_mac=mac,
            src_ip=ip,
            dst_mac=f.arp_sha,
            dst_ip=f.arp_spa
        )
        handle.send(self.builder.packet_out(
            datapath,
            ofproto.OFPP_CONTROLLER,
            self.builder.output(parser, event.in_port),
            data=data
        ))
