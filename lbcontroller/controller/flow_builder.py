#!/usr/bin/env python3
"""
Flow Table Builder

Translates a flow intent into a concrete OpenFlow 1.3 control message.
Nothing here sends; callers hand the result to datapath.send_msg().
"""

from typing import List, Optional

from ryu.lib.packet import arp, ether_types, ethernet, packet

from ..utils.constants import FLOW_KIND_PRIORITY, FlowKind, IPProtocol


class FlowTableBuilder:
    """
    Builds flow-mod, packet-out, meter-mod and stats messages.

    Priorities come from the FlowKind of a rule, never from the caller, so
    exact NAT rules always sit above role defaults, which sit above the
    table-miss entry.
    """

    @staticmethod
    def priority_for(kind: FlowKind) -> int:
        """Priority assigned to every rule of the given kind"""
        return FLOW_KIND_PRIORITY[kind]

    @staticmethod
    def flow_mod(datapath, kind: FlowKind, match, actions, idle_timeout=0,
                 hard_timeout=0, meter_id=None, buffer_id=None):
        """
        Build a flow-mod that adds one entry.

        Args:
            datapath: Datapath object (switch connection)
            kind: Semantic intent, decides the priority
            match: OFPMatch object
            actions: List of OFPAction objects
            idle_timeout: Idle timeout in seconds (0 = no timeout)
            hard_timeout: Hard timeout in seconds (0 = no timeout)
            meter_id: Meter to attach (optional)
            buffer_id: Buffer ID to release through the new entry (optional)

        Returns:
            OFPFlowMod object
        """
        ofproto = datapath.ofproto
        parser = datapath.ofproto_parser

        inst = []
        if meter_id is not None:
            inst.append(parser.OFPInstructionMeter(meter_id, ofproto.OFPIT_METER))
        inst.append(parser.OFPInstructionActions(ofproto.OFPIT_APPLY_ACTIONS, actions))

        kwargs = dict(
            datapath=datapath,
            priority=FlowTableBuilder.priority_for(kind),
            match=match,
            instructions=inst,
            idle_timeout=idle_timeout,
            hard_timeout=hard_timeout
        )
        if buffer_id is not None and buffer_id != ofproto.OFP_NO_BUFFER:
            kwargs['buffer_id'] = buffer_id

        return parser.OFPFlowMod(**kwargs)

    @staticmethod
    def packet_out(datapath, in_port, actions, data=None, buffer_id=None):
        """
        Build a packet-out.

        The payload is only attached when the switch did not buffer it.

        Args:
            datapath: Datapath object
            in_port: Input port
            actions: List of output actions
            data: Packet data (used when buffer_id is None or OFP_NO_BUFFER)
            buffer_id: Buffer ID (if packet is buffered)

        Returns:
            OFPPacketOut object
        """
        ofproto = datapath.ofproto
        parser = datapath.ofproto_parser

        if buffer_id is None:
            buffer_id = ofproto.OFP_NO_BUFFER
        if buffer_id != ofproto.OFP_NO_BUFFER:
            data = None

        return parser.OFPPacketOut(
            datapath=datapath,
            buffer_id=buffer_id,
            in_port=in_port,
            actions=actions,
            data=data
        )

    @staticmethod
    def port_stats_request(datapath):
        """Build a multipart request for the counters of every port"""
        ofproto = datapath.ofproto
        parser = datapath.ofproto_parser
        return parser.OFPPortStatsRequest(datapath, 0, ofproto.OFPP_ANY)

    @staticmethod
    def meter_mod(datapath, meter_id, rate_kbps, burst_size=0, modify=False):
        """
        Build a meter-mod with a single drop band.

        Args:
            datapath: Datapath object
            meter_id: Meter identifier (1-based)
            rate_kbps: Drop band rate in kbps
            burst_size: Drop band burst size
            modify: Replace an existing meter instead of adding one

        Returns:
            OFPMeterMod object
        """
        ofproto = datapath.ofproto
        parser = datapath.ofproto_parser

        bands = [parser.OFPMeterBandDrop(rate=rate_kbps, burst_size=burst_size)]
        return parser.OFPMeterMod(
            datapath=datapath,
            command=ofproto.OFPMC_MODIFY if modify else ofproto.OFPMC_ADD,
            flags=ofproto.OFPMF_KBPS,
            meter_id=meter_id,
            bands=bands
        )

    @staticmethod
    def create_match(parser, **kwargs):
        """
        Create OFPMatch object, skipping unset fields.

        Args:
            parser: Datapath parser
            **kwargs: Match fields (in_port, eth_type, ipv4_src, tcp_dst, ...)

        Returns:
            OFPMatch object
        """
        return parser.OFPMatch(**{k: v for k, v in kwargs.items() if v is not None})

    @staticmethod
    def tcp_match(parser, ipv4_src, ipv4_dst, tcp_src, tcp_dst):
        """Exact 5-tuple match for one TCP direction"""
        return parser.OFPMatch(
            eth_type=ether_types.ETH_TYPE_IP,
            ip_proto=IPProtocol.TCP,
            ipv4_src=ipv4_src,
            ipv4_dst=ipv4_dst,
            tcp_src=tcp_src,
            tcp_dst=tcp_dst
        )

    @staticmethod
    def output(parser, port) -> List:
        """Single output action"""
        return [parser.OFPActionOutput(port)]

    @staticmethod
    def to_controller(datapath) -> List:
        """Output to controller without buffering"""
        ofproto = datapath.ofproto
        parser = datapath.ofproto_parser
        return [parser.OFPActionOutput(ofproto.OFPP_CONTROLLER, ofproto.OFPCML_NO_BUFFER)]

    @staticmethod
    def rewrite_destination(parser, ip, mac, port, tcp_port=None) -> List:
        """Rewrite destination addresses (and TCP port, if given) then output"""
        actions = [
            parser.OFPActionSetField(ipv4_dst=ip),
            parser.OFPActionSetField(eth_dst=mac)
        ]
        if tcp_port is not None:
            actions.append(parser.OFPActionSetField(tcp_dst=tcp_port))
        actions.append(parser.OFPActionOutput(port))
        return actions

    @staticmethod
    def rewrite_source(parser, ip, mac, port, tcp_port=None) -> List:
        """Rewrite source addresses (and TCP port, if given) then output"""
        actions = [
            parser.OFPActionSetField(ipv4_src=ip),
            parser.OFPActionSetField(eth_src=mac)
        ]
        if tcp_port is not None:
            actions.append(parser.OFPActionSetField(tcp_src=tcp_port))
        actions.append(parser.OFPActionOutput(port))
        return actions

    @staticmethod
    def arp_reply(src_mac: str, src_ip: str, dst_mac: str, dst_ip: str,
                  eth_src: Optional[str] = None) -> bytes:
        """
        Serialize an ARP reply inside an Ethernet frame.

        Args:
            src_mac: MAC being announced
            src_ip: IP being announced
            dst_mac: Requester MAC
            dst_ip: Requester IP
            eth_src: Ethernet source (defaults to src_mac)

        Returns:
            Frame bytes
        """
        pkt = packet.Packet()
        pkt.add_protocol(ethernet.ethernet(
            ethertype=ether_types.ETH_TYPE_ARP,
            dst=dst_mac,
            src=eth_src or src_mac
        ))
        pkt.add_protocol(arp.arp(
            opcode=arp.ARP_REPLY,
            src_mac=src_mac,
            src_ip=src_ip,
            dst_mac=dst_mac,
            dst_ip=dst_ip
        ))
        pkt.serialize()
        return bytes(pkt.data)
