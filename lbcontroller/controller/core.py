#!/usr/bin/env python3
"""
Controller core

Owns all controller state and reacts to decoded events one at a time.
Every send is fire-and-forget; answers from switches come back later as
separate events.
"""

from ..config.config_loader import ControllerConfig
from ..utils.constants import DispatchResult, MessageKind, MissAction
from ..utils.logger import get_logger
from .arp_proxy import ArpProxy, ArpTable
from .dispatcher import Dispatcher
from .events import PacketIn, PollTimer, PortStats, SwitchConnected, SwitchDisconnected
from .flow_builder import FlowTableBuilder
from .handshake import HandshakeConfigurator
from .link_aggregation import LinkAggregationMonitor
from .load_balancer import LoadBalancer
from .switch_registry import SwitchRegistry


class ControllerCore:
    """
    Event-driven decision logic of the load-balancing controller.

    The ARP table, the switch registry and the link bundle states are plain
    fields of the instance, so independent cores never share state.
    """

    def __init__(self, config: ControllerConfig, logger=None):
        self.config = config
        self.logger = get_logger(__name__, logger)
        self.builder = FlowTableBuilder()

        self.arp_table = ArpTable()
        self.registry = SwitchRegistry(config.switches)
        self.monitor = LinkAggregationMonitor(config.link_aggregation, logger=self.logger)
        self.handshake = HandshakeConfigurator(logger=self.logger)
        self.arp_proxy = ArpProxy(config.service, self.arp_table, logger=self.logger)
        self.load_balancer = LoadBalancer(config, self.registry, self.monitor, logger=self.logger)
        self.dispatcher = Dispatcher(
            config.service, self.registry, self.arp_proxy, self.load_balancer,
            logger=self.logger
        )

        self._handlers = {
            MessageKind.SWITCH_CONNECTED: self.on_switch_connected,
            MessageKind.SWITCH_DISCONNECTED: self.on_switch_disconnected,
            MessageKind.PACKET_IN: self.on_packet_in,
            MessageKind.PORT_STATS: self.on_port_stats,
            MessageKind.POLL_TIMER: self.on_poll_timer,
        }

    def handle_event(self, event):
        """Dispatch an event on its kind tag"""
        return self._handlers[event.kind](event)

    def on_switch_connected(self, event: SwitchConnected):
        """Register a switch with its configured role and install its baseline"""
        switch_config = self.config.switch(event.dpid)
        if switch_config is None:
            self.logger.warning("Switch dpid=%s is not configured, ignored", event.dpid)
            return None

        handle = self.registry.register(event.datapath, switch_config)
        self.handshake.configure(handle)
        return handle

    def on_switch_disconnected(self, event: SwitchDisconnected):
        handle = self.registry.unregister(event.dpid)
        if handle is None:
            self.logger.debug("Disconnect from unregistered dpid=%s", event.dpid)
            return None
        self.logger.switch_event("%s (dpid=%s) disconnected", handle.name, handle.dpid)
        return handle

    def on_packet_in(self, event: PacketIn) -> DispatchResult:
        """Dispatch a packet-in, falling back to the switch miss action"""
        result = self.dispatcher.dispatch(event)
        if result == DispatchResult.NOT_HANDLED:
            self._apply_miss_action(event)
        return result

    def on_port_stats(self, event: PortStats):
        if event.dpid not in self.registry:
            self.logger.warning("Port stats from unknown switch dpid=%s ignored", event.dpid)
            return []
        return self.monitor.on_port_stats(event)

    def on_poll_timer(self, event: PollTimer) -> int:
        return self.monitor.poll(self.registry)

    def route_up(self):
        """Place new connections on the edge server; installed flows stay as they are"""
        self.load_balancer.enable_route_up()
        self.logger.lb_event("Edge route up, new connections go to the edge server")

    def disable_route_up(self):
        """Place new connections on the backend pool again"""
        self.load_balancer.disable_route_up()
        self.logger.lb_event("Edge route down, new connections go to the backend pool")

    def _apply_miss_action(self, event: PacketIn):
        handle = self.registry.get(event.dpid)
        if handle is None or handle.miss_action == MissAction.DROP:
            return

        datapath = handle.datapath
        ofproto = datapath.ofproto
        parser = datapath.ofproto_parser
        handle.send(self.builder.packet_out(
            datapath,
            event.in_port,
            self.builder.output(parser, ofproto.OFPP_FLOOD),
            data=event.data,
            buffer_id=event.buffer_id
        ))
