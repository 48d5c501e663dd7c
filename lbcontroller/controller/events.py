#!/usr/bin/env python3
"""
Controller events

Decoded messages delivered to the controller core. Every event carries a
MessageKind tag; the core dispatches on that tag. The decode_* helpers are
the only place that touches raw Ryu messages and packet bytes.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional

from ryu.lib.packet import arp, ethernet, ipv4, packet, tcp

from ..utils.constants import MessageKind, OpenFlow


@dataclass
class PacketFields:
    """Header fields of a packet-in, already parsed"""
    eth_type: Optional[int] = None
    eth_src: Optional[str] = None
    eth_dst: Optional[str] = None
    ip_proto: Optional[int] = None
    ipv4_src: Optional[str] = None
    ipv4_dst: Optional[str] = None
    tcp_src: Optional[int] = None
    tcp_dst: Optional[int] = None
    tcp_flags: Optional[int] = None
    arp_op: Optional[int] = None
    arp_spa: Optional[str] = None
    arp_sha: Optional[str] = None
    arp_tpa: Optional[str] = None
    arp_tha: Optional[str] = None


@dataclass
class PortCounters:
    """Cumulative counters of one switch port"""
    port_no: int
    tx_bytes: int
    rx_bytes: int
    duration_sec: int = 0
    duration_nsec: int = 0

    @property
    def timestamp(self) -> float:
        """Seconds the port has been alive, used as the sample clock"""
        return self.duration_sec + self.duration_nsec / 1e9


@dataclass
class SwitchConnected:
    datapath: Any
    kind: MessageKind = field(default=MessageKind.SWITCH_CONNECTED, init=False)

    @property
    def dpid(self) -> int:
        return self.datapath.id


@dataclass
class SwitchDisconnected:
    dpid: int
    kind: MessageKind = field(default=MessageKind.SWITCH_DISCONNECTED, init=False)


@dataclass
class PacketIn:
    datapath: Any
    in_port: int
    fields: PacketFields
    data: bytes = b''
    buffer_id: int = OpenFlow.NO_BUFFER
    xid: int = 0
    kind: MessageKind = field(default=MessageKind.PACKET_IN, init=False)

    @property
    def dpid(self) -> int:
        return self.datapath.id


@dataclass
class PortStats:
    datapath: Any
    counters: List[PortCounters]
    kind: MessageKind = field(default=MessageKind.PORT_STATS, init=False)

    @property
    def dpid(self) -> int:
        return self.datapath.id


@dataclass
class PollTimer:
    kind: MessageKind = field(default=MessageKind.POLL_TIMER, init=False)


def parse_fields(data: bytes) -> PacketFields:
    """
    Parse packet bytes into PacketFields.

    Truncated or unknown payloads produce partially filled fields; Ryu's
    packet parser stops at the first header it cannot decode.
    """
    fields = PacketFields()
    if not data:
        return fields

    pkt = packet.Packet(data)

    eth = pkt.get_protocol(ethernet.ethernet)
    if eth is None:
        return fields
    fields.eth_type = eth.ethertype
    fields.eth_src = eth.src
    fields.eth_dst = eth.dst

    arp_pkt = pkt.get_protocol(arp.arp)
    if arp_pkt is not None:
        fields.arp_op = arp_pkt.opcode
        fields.arp_spa = arp_pkt.src_ip
        fields.arp_sha = arp_pkt.src_mac
        fields.arp_tpa = arp_pkt.dst_ip
        fields.arp_tha = arp_pkt.dst_mac
        return fields

    ip_pkt = pkt.get_protocol(ipv4.ipv4)
    if ip_pkt is None:
        return fields
    fields.ip_proto = ip_pkt.proto
    fields.ipv4_src = ip_pkt.src
    fields.ipv4_dst = ip_pkt.dst

    tcp_pkt = pkt.get_protocol(tcp.tcp)
    if tcp_pkt is not None:
        fields.tcp_src = tcp_pkt.src_port
        fields.tcp_dst = tcp_pkt.dst_port
        fields.tcp_flags = tcp_pkt.bits

    return fields


def decode_packet_in(msg) -> PacketIn:
    """Translate an OFPPacketIn message into a PacketIn event"""
    return PacketIn(
        datapath=msg.datapath,
        in_port=msg.match['in_port'],
        fields=parse_fields(msg.data),
        data=msg.data,
        buffer_id=msg.buffer_id,
        xid=msg.xid
    )


def decode_port_stats(msg) -> PortStats:
    """Translate an OFPPortStatsReply message into a PortStats event"""
    counters = [
        PortCounters(
            port_no=stat.port_no,
            tx_bytes=stat.tx_bytes,
            rx_bytes=stat.rx_bytes,
            duration_sec=stat.duration_sec,
            duration_nsec=stat.duration_nsec
        )
        for stat in msg.body
    ]
    return PortStats(datapath=msg.datapath, counters=counters)
