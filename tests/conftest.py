"""
Shared fixtures

Switches are fake datapaths that record every message handed to them. They
carry Ryu's real OpenFlow 1.3 modules, so the recorded messages are the
same objects a live switch connection would serialize.
"""

import copy

import pytest
from ryu.lib.packet import arp, ether_types, ethernet, ipv4, packet, tcp
from ryu.ofproto import ofproto_v1_3, ofproto_v1_3_parser

from lbcontroller.config.config_loader import parse_config
from lbcontroller.controller.core import ControllerCore
from lbcontroller.controller.events import PacketIn, SwitchConnected, parse_fields


CLIENT_IP = "10.1.2.1"
CLIENT_MAC = "00:00:00:00:00:21"

CONFIG_DATA = {
    'name': 'test-lb',
    'service': {'ip': '10.1.1.1', 'mac': '00:00:00:00:00:01', 'tcp_port': 9},
    'switches': [
        {'dpid': 1, 'name': 'border', 'role': 'border',
         'ports': {'aggregation': 1, 'third_link': 7}},
        {'dpid': 2, 'name': 'aggregation', 'role': 'aggregation',
         'ports': {'border': 1, 'border_alt': 2, 'client': 3, 'third_link': 4, 'edge': 5}},
        {'dpid': 4, 'name': 'third', 'role': 'third-link',
         'ports': {'border': 1, 'aggregation': 2}},
        {'dpid': 5, 'name': 'server0', 'role': 'server-side', 'border_port': 3,
         'ports': {'border': 1, 'server': 3},
         'backend': {'ip': '10.1.1.2', 'mac': '00:00:00:00:00:0f'}},
        {'dpid': 6, 'name': 'server1', 'role': 'server-side', 'border_port': 4,
         'ports': {'border': 1, 'server': 3},
         'backend': {'ip': '10.1.1.3', 'mac': '00:00:00:00:00:11'}},
        {'dpid': 7, 'name': 'server2', 'role': 'server-side', 'border_port': 5,
         'ports': {'border': 1, 'server': 3},
         'backend': {'ip': '10.1.1.4', 'mac': '00:00:00:00:00:1b'}},
        {'dpid': 3, 'name': 'client', 'role': 'client-side'},
        {'dpid': 8, 'name': 'edge', 'role': 'edge-server', 'aggregation_port': 5,
         'ports': {'aggregation': 1, 'server': 3},
         'backend': {'ip': '10.1.1.5', 'mac': '00:00:00:00:00:1d'}},
    ],
    'link_aggregation': {
        'enabled': True,
        'server_side_enabled': False,
        'poll_interval': 1.0,
        'sample_window': 1,
        'bundles': [
            {'name': 'agg-to-border', 'dpid': 2, 'primary_port': 1, 'alternate_port': 2,
             'high_water_mbps': 9.0, 'low_water_mbps': 2.0},
            {'name': 'border-to-server0', 'dpid': 1, 'primary_port': 3, 'alternate_port': 8,
             'group': 'server', 'high_water_mbps': 9.0, 'low_water_mbps': 2.0},
        ],
    },
    'meter': {'enabled': False, 'rate_kbps': 10000, 'max_meters': 4},
    'timing': {'flow_idle_timeout': 15, 'flow_hard_timeout': 60},
}


class FakeDatapath:
    """Stands in for a switch connection"""

    def __init__(self, dpid):
        self.id = dpid
        self.ofproto = ofproto_v1_3
        self.ofproto_parser = ofproto_v1_3_parser
        self.sent = []

    def send_msg(self, msg):
        self.sent.append(msg)

    def of_type(self, cls):
        return [m for m in self.sent if isinstance(m, cls)]

    @property
    def flow_mods(self):
        return self.of_type(ofproto_v1_3_parser.OFPFlowMod)

    @property
    def packet_outs(self):
        return self.of_type(ofproto_v1_3_parser.OFPPacketOut)

    def clear(self):
        self.sent = []


def actions_of(mod):
    """Apply-actions list of a flow-mod"""
    for inst in mod.instructions:
        if isinstance(inst, ofproto_v1_3_parser.OFPInstructionActions):
            return inst.actions
    return []


def output_ports(actions):
    return [a.port for a in actions if isinstance(a, ofproto_v1_3_parser.OFPActionOutput)]


def set_fields(actions):
    return {a.key: a.value for a in actions if isinstance(a, ofproto_v1_3_parser.OFPActionSetField)}


def arp_frame(opcode, src_mac, src_ip, dst_ip, dst_mac="00:00:00:00:00:00"):
    eth_dst = "ff:ff:ff:ff:ff:ff" if opcode == arp.ARP_REQUEST else dst_mac
    pkt = packet.Packet()
    pkt.add_protocol(ethernet.ethernet(ethertype=ether_types.ETH_TYPE_ARP,
                                       dst=eth_dst, src=src_mac))
    pkt.add_protocol(arp.arp(opcode=opcode, src_mac=src_mac, src_ip=src_ip,
                             dst_mac=dst_mac, dst_ip=dst_ip))
    pkt.serialize()
    return bytes(pkt.data)


def tcp_frame(src_ip, dst_ip, src_port, dst_port, bits=tcp.TCP_SYN,
              src_mac=CLIENT_MAC, dst_mac="00:00:00:00:00:01"):
    pkt = packet.Packet()
    pkt.add_protocol(ethernet.ethernet(ethertype=ether_types.ETH_TYPE_IP,
                                       dst=dst_mac, src=src_mac))
    pkt.add_protocol(ipv4.ipv4(proto=6, src=src_ip, dst=dst_ip))
    pkt.add_protocol(tcp.tcp(src_port=src_port, dst_port=dst_port, bits=bits))
    pkt.serialize()
    return bytes(pkt.data)


def packet_in(datapath, in_port, data, buffer_id=ofproto_v1_3.OFP_NO_BUFFER, xid=1):
    return PacketIn(
        datapath=datapath,
        in_port=in_port,
        fields=parse_fields(data),
        data=data,
        buffer_id=buffer_id,
        xid=xid
    )


def syn_packet_in(datapath, client_port, in_port=3, client_ip=CLIENT_IP, **kwargs):
    """Connection start from a client to the virtual service"""
    data = tcp_frame(client_ip, CONFIG_DATA["service"]["ip"], client_port,
                     CONFIG_DATA["service"]["tcp_port"])
    return packet_in(datapath, in_port, data, **kwargs)


@pytest.fixture
def config_data():
    return copy.deepcopy(CONFIG_DATA)


@pytest.fixture
def config(config_data):
    return parse_config(config_data)


@pytest.fixture
def datapaths(config):
    return {s.dpid: FakeDatapath(s.dpid) for s in config.switches}


@pytest.fixture
def core(config):
    return ControllerCore(config)


@pytest.fixture
def connected_core(core, datapaths):
    """Core with every configured switch connected and baseline cleared"""
    for dp in datapaths.values():
        core.handle_event(SwitchConnected(dp))
        dp.clear()
    return core
