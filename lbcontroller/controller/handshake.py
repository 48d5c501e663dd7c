#!/usr/bin/env python3
"""
Handshake Configurator

Installs the baseline flow table of a switch right after it connects.
The set of rules depends only on the configured role, so running it again
after a reconnect re-adds the same entries.
"""

from typing import List

from ryu.lib.packet import ether_types

from ..utils.constants import FlowKind, SwitchRole
from ..utils.logger import get_logger
from .flow_builder import FlowTableBuilder
from .switch_registry import SwitchHandle


class HandshakeConfigurator:
    """
    Per-role baseline flows.

    Border switches punt ARP to the controller. Aggregation switches
    carry ARP and return traffic statically between the client port and the
    border-side ports. Third-link switches cross-connect their two ports.
    Server-side and edge server switches connect the server port to their
    uplink (border or aggregation).
    Every role gets a table-miss entry that sends to the controller.
    """

    def __init__(self, logger=None):
        self.logger = get_logger(__name__, logger)
        self.builder = FlowTableBuilder()

    def configure(self, handle: SwitchHandle) -> List:
        """
        Build and send the baseline flows of a switch.

        Args:
            handle: Registered switch

        Returns:
            List of flow-mods sent
        """
        installers = {
            SwitchRole.BORDER: self._border_flows,
            SwitchRole.AGGREGATION: self._aggregation_flows,
            SwitchRole.THIRD_LINK: self._third_link_flows,
            SwitchRole.SERVER_SIDE: self._server_flows,
            SwitchRole.CLIENT_SIDE: lambda h: [],
            SwitchRole.EDGE_SERVER: self._server_flows,
        }

        mods = [self._table_miss(handle)]
        mods.extend(installers[handle.role](handle))

        for mod in mods:
            handle.send(mod)

        self.logger.switch_event(
            "%s (dpid=%s, role=%s) configured with %d baseline flows",
            handle.name, handle.dpid, handle.role.value, len(mods)
        )
        return mods

    def _table_miss(self, handle: SwitchHandle):
        datapath = handle.datapath
        parser = datapath.ofproto_parser
        return self.builder.flow_mod(
            datapath, FlowKind.TABLE_MISS,
            parser.OFPMatch(),
            self.builder.to_controller(datapath)
        )

    def _border_flows(self, handle: SwitchHandle):
        datapath = handle.datapath
        parser = datapath.ofproto_parser
        return [
            self.builder.flow_mod(
                datapath, FlowKind.CRITICAL,
                parser.OFPMatch(eth_type=ether_types.ETH_TYPE_ARP),
                self.builder.to_controller(datapath)
            )
        ]

    def _aggregation_flows(self, handle: SwitchHandle):
        datapath = handle.datapath
        parser = datapath.ofproto_parser
        client_port = handle.port('client')
        border_port = handle.port('border')

        mods = [
            self.builder.flow_mod(
                datapath, FlowKind.ROLE_DEFAULT,
                parser.OFPMatch(in_port=client_port, eth_type=ether_types.ETH_TYPE_ARP),
                self.builder.output(parser, border_port)
            )
        ]

        # Everything arriving from the border side goes down to the clients
        for name, port in sorted(handle.ports.items(), key=lambda item: item[1]):
            if name == 'client':
                continue
            mods.append(self.builder.flow_mod(
                datapath, FlowKind.ROLE_DEFAULT,
                parser.OFPMatch(in_port=port),
                self.builder.output(parser, client_port)
            ))
        return mods

    def _third_link_flows(self, handle: SwitchHandle):
        datapath = handle.datapath
        parser = datapath.ofproto_parser
        border_port = handle.port('border')
        aggregation_port = handle.port('aggregation')
        return [
            self.builder.flow_mod(
                datapath, FlowKind.ROLE_DEFAULT,
                parser.OFPMatch(in_port=border_port),
                self.builder.output(parser, aggregation_port)
            ),
            self.builder.flow_mod(
                datapath, FlowKind.ROLE_DEFAULT,
                parser.OFPMatch(in_port=aggregation_port),
                self.builder.output(parser, border_port)
            ),
        ]

    def _server_flows(self, handle: SwitchHandle):
        datapath = handle.datapath
        parser = datapath.ofproto_parser
        server_port = handle.port('server')
        uplink = 'aggregation' if handle.role == SwitchRole.EDGE_SERVER else 'border'
        uplink_port = handle.port(uplink)

        mods = [
            self.builder.flow_mod(
                datapath, FlowKind.ROLE_DEFAULT,
                parser.OFPMatch(in_port=server_port),
                self.builder.output(parser, uplink_port)
            )
        ]
        for name, port in sorted(handle.ports.items(), key=lambda item: item[1]):
            if name == 'server':
                continue
            mods.append(self.builder.flow_mod(
                datapath, FlowKind.ROLE_DEFAULT,
                parser.OFPMatch(in_port=port),
                self.builder.output(parser, server_port)
            ))
        return mods
