#!/usr/bin/env python3
"""
Unit tests for the load balancer

Run with: python3 -m pytest tests/test_load_balancer.py
"""

from collections import Counter

import pytest
from ryu.lib.packet import tcp

from conftest import (
    CLIENT_IP,
    FakeDatapath,
    actions_of,
    output_ports,
    packet_in,
    set_fields,
    syn_packet_in,
    tcp_frame,
)
from lbcontroller.config.config_loader import parse_config
from lbcontroller.controller.core import ControllerCore
from lbcontroller.controller.events import PortCounters, PortStats, SwitchConnected, SwitchDisconnected
from lbcontroller.utils.constants import DispatchResult, FlowPriority


BACKEND_IPS = ["10.1.1.2", "10.1.1.3", "10.1.1.4"]


def backend_of(border):
    """Backend IP chosen by the most recent forward NAT rule"""
    forward = [m for m in border.flow_mods if m.match['ipv4_dst'] == "10.1.1.1"]
    return set_fields(actions_of(forward[-1]))['ipv4_dst']


def test_three_backends_four_connections(connected_core, datapaths):
    """Scenario: assignments are backend #0, #1, #2, #0"""
    aggregation, border = datapaths[2], datapaths[1]
    chosen = []
    for client_port in (40001, 40002, 40003, 40004):
        result = connected_core.handle_event(syn_packet_in(aggregation, client_port))
        assert result == DispatchResult.HANDLED
        chosen.append(backend_of(border))

    assert chosen == [BACKEND_IPS[0], BACKEND_IPS[1], BACKEND_IPS[2], BACKEND_IPS[0]]


@pytest.mark.parametrize("connections", [1, 2, 3, 7, 10, 31])
def test_assignments_are_even(connected_core, connections):
    """Each of N backends gets floor(M/N) or ceil(M/N) of M connections"""
    counts = Counter(connected_core.load_balancer.select_backend().name
                     for _ in range(connections))

    backends = len(BACKEND_IPS)
    assert sum(counts.values()) == connections
    for name in ("server0", "server1", "server2"):
        assert counts[name] in (connections // backends, -(-connections // backends))


def test_forward_and_reverse_nat_rules(connected_core, datapaths):
    """Test the border gets a destination rewrite and a source rewrite"""
    aggregation, border = datapaths[2], datapaths[1]

    connected_core.handle_event(syn_packet_in(aggregation, 40001))

    forward, reverse = border.flow_mods
    assert forward.match['ipv4_src'] == CLIENT_IP
    assert forward.match['ipv4_dst'] == "10.1.1.1"
    assert forward.match['tcp_src'] == 40001
    assert forward.match['tcp_dst'] == 9
    assert set_fields(actions_of(forward)) == {'ipv4_dst': "10.1.1.2", 'eth_dst': "00:00:00:00:00:0f"}
    assert output_ports(actions_of(forward)) == [3]

    assert reverse.match['ipv4_src'] == "10.1.1.2"
    assert reverse.match['ipv4_dst'] == CLIENT_IP
    assert reverse.match['tcp_src'] == 9
    assert reverse.match['tcp_dst'] == 40001
    assert set_fields(actions_of(reverse)) == {'ipv4_src': "10.1.1.1", 'eth_src': "00:00:00:00:00:01"}
    assert output_ports(actions_of(reverse)) == [1]

    for mod in (forward, reverse):
        assert mod.priority == FlowPriority.NAT
        assert mod.idle_timeout == 15
        assert mod.hard_timeout == 60


def test_aggregation_path_rules_and_packet_out(connected_core, datapaths):
    """Test the first segment is re-emitted on the switch that raised it"""
    aggregation = datapaths[2]
    payload = tcp_frame(CLIENT_IP, "10.1.1.1", 40001, 9)

    connected_core.handle_event(packet_in(aggregation, 3, payload))

    upstream, downstream = aggregation.flow_mods
    assert output_ports(actions_of(upstream)) == [1]
    assert downstream.match['ipv4_src'] == "10.1.1.1"
    assert output_ports(actions_of(downstream)) == [3]

    (out,) = aggregation.packet_outs
    assert out.in_port == 3
    assert output_ports(out.actions) == [1]
    assert out.data == payload


def test_buffered_packet_is_released_by_id(connected_core, datapaths):
    border = datapaths[1]

    connected_core.handle_event(syn_packet_in(border, 40001, in_port=1, buffer_id=77))

    (out,) = border.packet_outs
    assert out.buffer_id == 77
    assert out.data is None
    assert set_fields(out.actions)['ipv4_dst'] == "10.1.1.2"


def test_no_backend_drops_connection(config_data):
    """Resource exhaustion: the attempt is dropped, nothing installed"""
    core = ControllerCore(parse_config(config_data))
    border, aggregation = FakeDatapath(1), FakeDatapath(2)
    core.handle_event(SwitchConnected(border))
    core.handle_event(SwitchConnected(aggregation))
    border.clear()
    aggregation.clear()

    result = core.handle_event(syn_packet_in(aggregation, 40001))

    assert result == DispatchResult.DROPPED
    assert border.sent == []
    assert aggregation.sent == []


def test_rotation_follows_registered_backends(connected_core, datapaths):
    """Test a disconnected backend is no longer selected"""
    connected_core.handle_event(SwitchDisconnected(6))

    chosen = [connected_core.load_balancer.select_backend().name for _ in range(4)]

    assert chosen == ["server0", "server2", "server0", "server2"]


def test_connection_placed_via_active_bundle_port(connected_core, datapaths):
    """Scenario: after the bundle moves, the next connection uses port B"""
    aggregation = datapaths[2]

    connected_core.handle_event(PortStats(aggregation, [
        PortCounters(1, tx_bytes=0, rx_bytes=0, duration_sec=10),
        PortCounters(2, tx_bytes=0, rx_bytes=0, duration_sec=10),
    ]))
    changed = connected_core.handle_event(PortStats(aggregation, [
        PortCounters(1, tx_bytes=9_800_000 // 8, rx_bytes=0, duration_sec=11),
        PortCounters(2, tx_bytes=1_000_000 // 8, rx_bytes=0, duration_sec=11),
    ]))
    assert [b.name for b in changed] == ["agg-to-border"]

    aggregation.clear()
    connected_core.handle_event(syn_packet_in(aggregation, 40009))

    upstream = aggregation.flow_mods[0]
    assert output_ports(actions_of(upstream)) == [2]
    assert output_ports(aggregation.packet_outs[0].actions) == [2]


def test_meter_attached_to_forward_rule_only(config_data):
    config_data['meter']['enabled'] = True
    core = ControllerCore(parse_config(config_data))
    dps = {s['dpid']: FakeDatapath(s['dpid']) for s in config_data['switches']}
    for dp in dps.values():
        core.handle_event(SwitchConnected(dp))
        dp.clear()
    border = dps[1]
    parser = border.ofproto_parser

    core.handle_event(syn_packet_in(dps[2], 40001))

    (meter,) = border.of_type(parser.OFPMeterMod)
    assert meter.meter_id == 1
    assert meter.command == border.ofproto.OFPMC_ADD
    assert meter.bands[0].rate == 10000

    forward, reverse = border.flow_mods
    assert [i.meter_id for i in forward.instructions if isinstance(i, parser.OFPInstructionMeter)] == [1]
    assert not any(isinstance(i, parser.OFPInstructionMeter) for i in reverse.instructions)
    for mod in dps[2].flow_mods:
        assert not any(isinstance(i, parser.OFPInstructionMeter) for i in mod.instructions)


def test_meter_ids_wrap_and_modify(config_data):
    config_data['meter']['enabled'] = True
    config_data['meter']['max_meters'] = 2
    core = ControllerCore(parse_config(config_data))
    dps = {s['dpid']: FakeDatapath(s['dpid']) for s in config_data['switches']}
    for dp in dps.values():
        core.handle_event(SwitchConnected(dp))
        dp.clear()
    border = dps[1]

    for client_port in (40001, 40002, 40003):
        core.handle_event(syn_packet_in(dps[2], client_port))

    meters = border.of_type(border.ofproto_parser.OFPMeterMod)
    assert [m.meter_id for m in meters] == [1, 2, 1]
    assert [m.command for m in meters] == [
        border.ofproto.OFPMC_ADD, border.ofproto.OFPMC_ADD, border.ofproto.OFPMC_MODIFY
    ]


def test_established_segment_not_balanced(connected_core, datapaths):
    """Only connection starts are balanced; mid-stream segments use the default"""
    aggregation = datapaths[2]
    data = tcp_frame(CLIENT_IP, "10.1.1.1", 40001, 9, bits=tcp.TCP_ACK)

    result = connected_core.handle_event(packet_in(aggregation, 3, data))

    assert result == DispatchResult.NOT_HANDLED
    assert aggregation.flow_mods == []
    assert aggregation.packet_outs == []  # aggregation drops by default


def test_backend_on_other_port_gets_port_rewrite(config_data):
    """Backend listening on 8080 behind a service on port 9"""
    for switch in config_data['switches']:
        if switch['role'] == 'server-side':
            switch['backend']['tcp_port'] = 8080
    core = ControllerCore(parse_config(config_data))
    dps = {s['dpid']: FakeDatapath(s['dpid']) for s in config_data['switches']}
    for dp in dps.values():
        core.handle_event(SwitchConnected(dp))
        dp.clear()
    border = dps[1]

    core.handle_event(syn_packet_in(dps[2], 40001))

    forward, reverse = border.flow_mods
    assert forward.match['tcp_dst'] == 9
    assert set_fields(actions_of(forward)) == {
        'ipv4_dst': "10.1.1.2", 'eth_dst': "00:00:00:00:00:0f", 'tcp_dst': 8080
    }
    assert reverse.match['tcp_src'] == 8080
    assert set_fields(actions_of(reverse)) == {
        'ipv4_src': "10.1.1.1", 'eth_src': "00:00:00:00:00:01", 'tcp_src': 9
    }
    # Output stays the last action
    assert isinstance(actions_of(forward)[-1], border.ofproto_parser.OFPActionOutput)


def test_route_up_places_connection_on_edge_server(connected_core, datapaths):
    """Edge route: NAT on the aggregation switch, nothing reaches the border"""
    aggregation, border = datapaths[2], datapaths[1]
    connected_core.route_up()

    result = connected_core.handle_event(syn_packet_in(aggregation, 40001))

    assert result == DispatchResult.HANDLED
    assert border.sent == []
    forward, reverse = aggregation.flow_mods
    assert forward.match['ipv4_dst'] == "10.1.1.1"
    assert set_fields(actions_of(forward)) == {'ipv4_dst': "10.1.1.5", 'eth_dst': "00:00:00:00:00:1d"}
    assert output_ports(actions_of(forward)) == [5]
    assert reverse.match['ipv4_src'] == "10.1.1.5"
    assert set_fields(actions_of(reverse)) == {'ipv4_src': "10.1.1.1", 'eth_src': "00:00:00:00:00:01"}
    assert output_ports(actions_of(reverse)) == [3]
    assert forward.priority == reverse.priority == FlowPriority.NAT

    (out,) = aggregation.packet_outs
    assert output_ports(out.actions) == [5]


def test_disable_route_up_returns_to_pool(connected_core, datapaths):
    """Edge placements do not advance the pool rotation"""
    aggregation, border = datapaths[2], datapaths[1]
    connected_core.route_up()
    connected_core.handle_event(syn_packet_in(aggregation, 40001))

    connected_core.disable_route_up()
    border.clear()
    connected_core.handle_event(syn_packet_in(aggregation, 40002))

    assert backend_of(border) == BACKEND_IPS[0]
    assert connected_core.load_balancer.connections == 2


def test_route_up_without_edge_switch_uses_pool(connected_core, datapaths):
    connected_core.handle_event(SwitchDisconnected(8))
    connected_core.route_up()

    result = connected_core.handle_event(syn_packet_in(datapaths[2], 40001))

    assert result == DispatchResult.HANDLED
    assert backend_of(datapaths[1]) == BACKEND_IPS[0]


def test_route_up_from_config(config_data):
    config_data['route_up'] = True

    assert ControllerCore(parse_config(config_data)).load_balancer.route_up is True
