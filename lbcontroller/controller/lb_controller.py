#!/usr/bin/env python3
"""
Load-Balancing Controller

Ryu application fronting a pool of backend servers with one virtual
service address, with proxy ARP and link aggregation.
"""

import os

from ryu.base import app_manager
from ryu.controller import event, ofp_event
from ryu.controller.handler import CONFIG_DISPATCHER, DEAD_DISPATCHER, MAIN_DISPATCHER, set_ev_cls
from ryu.lib import hub
from ryu.ofproto import ofproto_v1_3

from ..config.config_loader import default_config_path, load_config
from ..utils.logger import ControllerLogger
from .core import ControllerCore
from .events import PollTimer, SwitchConnected, SwitchDisconnected, decode_packet_in, decode_port_stats


CONFIG_ENV = 'LBCONTROLLER_CONFIG'


class EventPollTimer(event.EventBase):
    """Poll tick posted by the monitor thread to the app's own event loop"""
    pass


class LoadBalancingController(app_manager.RyuApp):
    """
    SDN controller for a virtual service backed by several servers.

    Features:
    - Proxy ARP for the virtual service and known hosts
    - Round-robin connection placement with NAT flow rules
    - Utilization-driven link aggregation
    - Per-role baseline flows on connect
    - Optional edge server route for new connections
    """

    OFP_VERSIONS = [ofproto_v1_3.OFP_VERSION]
    _EVENTS = [EventPollTimer]

    def __init__(self, *args, **kwargs):
        super(LoadBalancingController, self).__init__(*args, **kwargs)

        # Load configuration
        config_path = os.environ.get(CONFIG_ENV, default_config_path())
        self.config = load_config(config_path)

        self.ctrl_logger = ControllerLogger(
            'lbcontroller',
            log_dir=self.config.logging.log_dir,
            level=self.config.logging.level,
            log_format=self.config.logging.format
        )
        self.core = ControllerCore(self.config, logger=self.ctrl_logger)

        self.ctrl_logger.separator()
        self.ctrl_logger.info("Load-Balancing Controller Initialized - %s", self.config.name)
        self.ctrl_logger.info(
            "Virtual service: %s (%s) tcp/%s",
            self.config.service.ip, self.config.service.mac, self.config.service.tcp_port
        )
        self.ctrl_logger.info(
            "Link aggregation: %s, server side: %s, meters: %s, edge route: %s",
            self.config.link_aggregation.enabled,
            self.config.link_aggregation.server_side_enabled,
            self.config.meter.enabled,
            self.config.route_up
        )
        self.ctrl_logger.separator()

        self.monitor_thread = hub.spawn(self._monitor)

    def _monitor(self):
        """Post a poll tick every poll_interval seconds"""
        interval = self.config.link_aggregation.poll_interval
        while True:
            # Handled on the app event loop, never on this green thread
            self.send_event_to_observers(EventPollTimer())
            hub.sleep(interval)

    @set_ev_cls(EventPollTimer)
    def poll_timer_handler(self, ev):
        """Request port stats from bundle owners"""
        if self.core.handle_event(PollTimer()):
            for bundle in self.core.monitor.snapshot():
                self.ctrl_logger.debug(
                    "[LINK] %s %s active=%s util=%s",
                    bundle['name'], bundle['state'], bundle['active_port'],
                    bundle['utilization']
                )

    @set_ev_cls(ofp_event.EventOFPSwitchFeatures, CONFIG_DISPATCHER)
    def switch_features_handler(self, ev):
        """Handle switch connection and install baseline flows"""
        self.core.handle_event(SwitchConnected(ev.msg.datapath))

    @set_ev_cls(ofp_event.EventOFPStateChange, DEAD_DISPATCHER)
    def state_change_handler(self, ev):
        """Forget switches whose channel went down"""
        datapath = ev.datapath
        if datapath.id is not None:
            self.core.handle_event(SwitchDisconnected(datapath.id))

    @set_ev_cls(ofp_event.EventOFPPacketIn, MAIN_DISPATCHER)
    def packet_in_handler(self, ev):
        """Handle packet-in events"""
        self.core.handle_event(decode_packet_in(ev.msg))

    @set_ev_cls(ofp_event.EventOFPPortStatsReply, MAIN_DISPATCHER)
    def port_stats_reply_handler(self, ev):
        """Feed port counters to the link aggregation monitor"""
        self.core.handle_event(decode_port_stats(ev.msg))
