#!/usr/bin/env python3
"""
Load Balancer

Assigns each new connection to the virtual service to a backend server and
installs NAT-style flow rules for both directions. Nothing is remembered
about the connection afterwards: the installed rules and their timeouts
are the only record.

With the edge route up, new connections entering at the aggregation switch
go to the edge server instead and are NATed there, never reaching the
border switch.
"""

from typing import List, Optional

from ..config.config_loader import BackendConfig, ControllerConfig
from ..utils.constants import DispatchResult, FlowKind, SwitchRole
from ..utils.logger import get_logger
from .events import PacketIn
from .flow_builder import FlowTableBuilder
from .link_aggregation import LinkAggregationMonitor
from .switch_registry import SwitchHandle, SwitchRegistry


class LoadBalancer:
    """
    Round-robin connection placement over the registered server-side
    switches, in configuration order.
    """

    def __init__(self, config: ControllerConfig, registry: SwitchRegistry,
                 monitor: LinkAggregationMonitor, logger=None):
        self.config = config
        self.service = config.service
        self.registry = registry
        self.monitor = monitor
        self.logger = get_logger(__name__, logger)
        self.builder = FlowTableBuilder()
        self.route_up = config.route_up
        self._next = 0
        self._connections = 0

    @property
    def connections(self) -> int:
        """Connections placed so far"""
        return self._connections

    def enable_route_up(self):
        """Send new connections to the edge server"""
        self.route_up = True

    def disable_route_up(self):
        """Send new connections to the backend pool behind the border"""
        self.route_up = False

    def select_backend(self) -> Optional[SwitchHandle]:
        """
        Pick the next backend in rotation.

        Returns:
            A registered server-side SwitchHandle, or None if there is none
        """
        backends = self.registry.server_switches()
        if not backends:
            return None

        index = self._next % len(backends)
        self._next = (index + 1) % len(backends)
        return backends[index]

    def handle(self, event: PacketIn, handle: SwitchHandle) -> DispatchResult:
        """
        Place a new connection.

        Args:
            event: Packet-in carrying the connection's first segment
            handle: Switch that raised the packet-in

        Returns:
            HANDLED when rules were installed, DROPPED otherwise
        """
        edge = self._edge_for(handle)
        if edge is not None:
            return self._place_on_edge(event, handle, edge)

        f = event.fields
        border = self.registry.first(SwitchRole.BORDER)
        if border is None:
            self.logger.warning(
                "[LB] No border switch connected, dropping %s:%s -> %s:%s",
                f.ipv4_src, f.tcp_src, f.ipv4_dst, f.tcp_dst
            )
            return DispatchResult.DROPPED

        backend = self.select_backend()
        if backend is None:
            self.logger.warning(
                "[LB] No backend registered, dropping %s:%s -> %s:%s",
                f.ipv4_src, f.tcp_src, f.ipv4_dst, f.tcp_dst
            )
            return DispatchResult.DROPPED

        self._connections += 1
        meter_id = self._install_meter(border)

        border_forward = self._install_border(event, border, backend, meter_id)

        aggregation = self.registry.first(SwitchRole.AGGREGATION)
        aggregation_forward = None
        if aggregation is not None:
            aggregation_forward = self._install_aggregation(event, aggregation)

        # Re-emit the first segment so it is not lost
        if handle.dpid == border.dpid:
            actions = border_forward
        elif aggregation is not None and handle.dpid == aggregation.dpid:
            actions = aggregation_forward
        else:
            actions = None

        if actions is not None:
            self._release(event, handle, actions)

        backend_cfg = backend.config.backend
        self.logger.lb_event(
            "Connection #%d %s:%s -> %s:%s assigned to %s (%s)%s",
            self._connections, f.ipv4_src, f.tcp_src, self.service.ip, self.service.tcp_port,
            backend.name, backend_cfg.ip,
            f" meter={meter_id}" if meter_id is not None else ""
        )
        return DispatchResult.HANDLED

    def _edge_for(self, handle: SwitchHandle) -> Optional[SwitchHandle]:
        """Edge server switch to use for a connection seen on `handle`, if any"""
        if not self.route_up or handle.role != SwitchRole.AGGREGATION:
            return None

        edge = self.registry.first(SwitchRole.EDGE_SERVER)
        if edge is None:
            self.logger.warning("[LB] Route up but no edge server connected, using the pool")
        return edge

    def _place_on_edge(self, event: PacketIn, aggregation: SwitchHandle,
                       edge: SwitchHandle) -> DispatchResult:
        """NAT a connection on the aggregation switch toward the edge server"""
        f = event.fields
        self._connections += 1

        forward = self._install_nat(
            event, aggregation, edge.config.backend,
            to_backend=self.monitor.select_port(aggregation.dpid, edge.config.aggregation_port),
            to_clients=aggregation.port('client')
        )
        self._release(event, aggregation, forward)

        self.logger.lb_event(
            "Connection #%d %s:%s -> %s:%s assigned to edge %s (%s)",
            self._connections, f.ipv4_src, f.tcp_src, self.service.ip, self.service.tcp_port,
            edge.name, edge.config.backend.ip
        )
        return DispatchResult.HANDLED

    def _release(self, event: PacketIn, handle: SwitchHandle, actions: List):
        handle.send(self.builder.packet_out(
            handle.datapath,
            event.in_port,
            actions,
            data=event.data,
            buffer_id=event.buffer_id
        ))

    def _timeouts(self):
        return dict(
            idle_timeout=self.config.timing.flow_idle_timeout,
            hard_timeout=self.config.timing.flow_hard_timeout
        )

    def _install_meter(self, border: SwitchHandle) -> Optional[int]:
        """
        Add (or, after the id space wraps, modify) the meter of a connection.

        Meter ids cycle through 1..max_meters.
        """
        meter = self.config.meter
        if not meter.enabled:
            return None

        meter_id = (self._connections - 1) % meter.max_meters + 1
        reused = self._connections > meter.max_meters
        border.send(self.builder.meter_mod(
            border.datapath, meter_id, meter.rate_kbps,
            burst_size=meter.burst_size, modify=reused
        ))
        return meter_id

    def _install_nat(self, event: PacketIn, switch: SwitchHandle, backend_cfg: BackendConfig,
                     to_backend: int, to_clients: int, meter_id: Optional[int] = None) -> List:
        """
        Forward and reverse NAT rules for one connection on one switch.

        The TCP port is rewritten only when the backend listens on a port
        other than the service port.

        Returns:
            The forward actions
        """
        f = event.fields
        datapath = switch.datapath
        parser = datapath.ofproto_parser
        port_differs = backend_cfg.tcp_port != self.service.tcp_port

        forward_actions = self.builder.rewrite_destination(
            parser, backend_cfg.ip, backend_cfg.mac, to_backend,
            tcp_port=backend_cfg.tcp_port if port_differs else None
        )
        switch.send(self.builder.flow_mod(
            datapath, FlowKind.NAT,
            self.builder.tcp_match(parser, f.ipv4_src, self.service.ip,
                                   f.tcp_src, self.service.tcp_port),
            forward_actions,
            meter_id=meter_id,
            **self._timeouts()
        ))

        switch.send(self.builder.flow_mod(
            datapath, FlowKind.NAT,
            self.builder.tcp_match(parser, backend_cfg.ip, f.ipv4_src,
                                   backend_cfg.tcp_port, f.tcp_src),
            self.builder.rewrite_source(
                parser, self.service.ip, self.service.mac, to_clients,
                tcp_port=self.service.tcp_port if port_differs else None
            ),
            **self._timeouts()
        ))

        self.logger.flow_event(
            "s%s NAT %s:%s <-> %s:%s (out %s / back %s)",
            switch.dpid, f.ipv4_src, f.tcp_src, backend_cfg.ip, backend_cfg.tcp_port,
            to_backend, to_clients
        )
        return forward_actions

    def _install_border(self, event: PacketIn, border: SwitchHandle,
                        backend: SwitchHandle, meter_id: Optional[int]) -> List:
        """Forward and reverse NAT rules on the border switch"""
        return self._install_nat(
            event, border, backend.config.backend,
            to_backend=self.monitor.select_port(border.dpid, backend.config.border_port),
            to_clients=self.monitor.select_port(border.dpid, border.port('aggregation')),
            meter_id=meter_id
        )

    def _install_aggregation(self, event: PacketIn, aggregation: SwitchHandle) -> List:
        """Upstream and downstream rules on the aggregation switch"""
        f = event.fields
        datapath = aggregation.datapath
        parser = datapath.ofproto_parser

        upstream = self.monitor.select_port(aggregation.dpid, aggregation.port('border'))
        upstream_actions = self.builder.output(parser, upstream)

        aggregation.send(self.builder.flow_mod(
            datapath, FlowKind.NAT,
            self.builder.tcp_match(parser, f.ipv4_src, self.service.ip,
                                   f.tcp_src, self.service.tcp_port),
            upstream_actions,
            **self._timeouts()
        ))

        aggregation.send(self.builder.flow_mod(
            datapath, FlowKind.NAT,
            self.builder.tcp_match(parser, self.service.ip, f.ipv4_src,
                                   self.service.tcp_port, f.tcp_src),
            self.builder.output(parser, aggregation.port('client')),
            **self._timeouts()
        ))

        self.logger.flow_event(
            "s%s path %s:%s via port %s", aggregation.dpid, f.ipv4_src, f.tcp_src, upstream
        )
        return upstream_actions
