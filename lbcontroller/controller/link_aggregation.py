#!/usr/bin/env python3
"""
Link Aggregation Monitor

Polls port counters of switches that own a link bundle, keeps a rolling
utilization window per port and moves each bundle between its primary and
alternate port with hysteresis. Only future flow placement follows the
active port; installed flows are left to expire on their own.
"""

from collections import deque
from statistics import mean
from typing import Deque, Dict, List, Optional, Tuple

from ..config.config_loader import BundleConfig, LinkAggregationConfig
from ..utils.constants import BundleGroup, BundleState
from ..utils.logger import get_logger
from .events import PortCounters, PortStats
from .flow_builder import FlowTableBuilder
from .switch_registry import SwitchRegistry


class LinkBundleState:
    """
    Two candidate ports between the same pair of switches.

    The active port is always the primary or the alternate.
    """

    def __init__(self, name: str, dpid: int, primary_port: int, alternate_port: int,
                 high_water_mbps: float, low_water_mbps: float,
                 group: BundleGroup = BundleGroup.CLIENT, window: int = 3):
        self.name = name
        self.dpid = dpid
        self.primary_port = primary_port
        self.alternate_port = alternate_port
        self.high_water_mbps = high_water_mbps
        self.low_water_mbps = low_water_mbps
        self.group = group
        self.state = BundleState.PRIMARY_ACTIVE
        self.samples: Dict[int, Deque[float]] = {
            primary_port: deque(maxlen=window),
            alternate_port: deque(maxlen=window),
        }

    @classmethod
    def from_config(cls, config: BundleConfig, window: int) -> 'LinkBundleState':
        return cls(
            name=config.name,
            dpid=config.dpid,
            primary_port=config.primary_port,
            alternate_port=config.alternate_port,
            high_water_mbps=config.high_water_mbps,
            low_water_mbps=config.low_water_mbps,
            group=config.group,
            window=window
        )

    @property
    def ports(self) -> Tuple[int, int]:
        return (self.primary_port, self.alternate_port)

    @property
    def active_port(self) -> int:
        if self.state == BundleState.ALTERNATE_ACTIVE:
            return self.alternate_port
        return self.primary_port

    @property
    def standby_port(self) -> int:
        if self.state == BundleState.ALTERNATE_ACTIVE:
            return self.primary_port
        return self.alternate_port

    def record(self, port: int, mbps: float):
        """Add a utilization sample for one of the bundle ports"""
        if port in self.samples:
            self.samples[port].append(mbps)

    def utilization(self, port: int) -> Optional[float]:
        """Mean of the rolling window, None before the first sample"""
        window = self.samples.get(port)
        if not window:
            return None
        return mean(window)

    def evaluate(self) -> Optional[BundleState]:
        """
        Apply the hysteresis rule.

        The bundle leaves its active port only when that port is above the
        high-water mark and the standby port is below the low-water mark.
        The rule is the same in both directions.

        Returns:
            The new state if a transition happened, None otherwise
        """
        active = self.utilization(self.active_port)
        standby = self.utilization(self.standby_port)
        if active is None or standby is None:
            return None

        if active > self.high_water_mbps and standby < self.low_water_mbps:
            if self.state == BundleState.PRIMARY_ACTIVE:
                self.state = BundleState.ALTERNATE_ACTIVE
            else:
                self.state = BundleState.PRIMARY_ACTIVE
            return self.state
        return None


class LinkAggregationMonitor:
    """
    Owns every monitored LinkBundleState.

    Bundles whose group is disabled in the configuration are not tracked,
    so port selection for them always yields the configured port.
    """

    def __init__(self, config: LinkAggregationConfig, logger=None):
        self.config = config
        self.logger = get_logger(__name__, logger)
        self.builder = FlowTableBuilder()
        self.bundles: List[LinkBundleState] = [
            LinkBundleState.from_config(b, config.sample_window)
            for b in config.bundles
            if config.group_enabled(b.group)
        ]
        # (dpid, port_no): (tx_bytes, rx_bytes, timestamp)
        self._previous: Dict[Tuple[int, int], Tuple[int, int, float]] = {}

    def bundle(self, name: str) -> Optional[LinkBundleState]:
        for bundle in self.bundles:
            if bundle.name == name:
                return bundle
        return None

    def bundles_for(self, dpid: int) -> List[LinkBundleState]:
        return [b for b in self.bundles if b.dpid == dpid]

    def monitored_dpids(self) -> List[int]:
        return sorted({b.dpid for b in self.bundles})

    def poll(self, registry: SwitchRegistry) -> int:
        """
        Send one port-stats request to every connected bundle owner.

        Replies arrive later as PortStats events.

        Returns:
            Number of requests sent
        """
        sent = 0
        for dpid in self.monitored_dpids():
            handle = registry.get(dpid)
            if handle is None:
                continue
            handle.send(self.builder.port_stats_request(handle.datapath))
            sent += 1
        return sent

    def on_port_stats(self, event: PortStats) -> List[LinkBundleState]:
        """
        Update samples from a port-stats reply and re-evaluate bundles.

        Args:
            event: Decoded multipart reply

        Returns:
            Bundles that changed state
        """
        dpid = event.dpid
        bundles = self.bundles_for(dpid)

        for counters in event.counters:
            mbps = self._rate(dpid, counters)
            if mbps is None:
                continue
            for bundle in bundles:
                bundle.record(counters.port_no, mbps)

        changed = []
        for bundle in bundles:
            previous_port = bundle.active_port
            new_state = bundle.evaluate()
            if new_state is not None:
                changed.append(bundle)
                self.logger.link_event(
                    "Bundle %s on s%s: %s (port %s %.2f Mbps, port %s %.2f Mbps), "
                    "new flows use port %s",
                    bundle.name, dpid, new_state.value,
                    previous_port, bundle.utilization(previous_port),
                    bundle.active_port, bundle.utilization(bundle.active_port),
                    bundle.active_port
                )
        return changed

    def _rate(self, dpid: int, counters: PortCounters) -> Optional[float]:
        """Mbps since the previous reply; None for the first one or a counter reset"""
        key = (dpid, counters.port_no)
        now = counters.timestamp
        previous = self._previous.get(key)
        self._previous[key] = (counters.tx_bytes, counters.rx_bytes, now)

        if previous is None:
            return None

        prev_tx, prev_rx, prev_time = previous
        elapsed = now - prev_time
        tx_delta = counters.tx_bytes - prev_tx
        rx_delta = counters.rx_bytes - prev_rx
        if elapsed <= 0 or tx_delta < 0 or rx_delta < 0:
            return None

        return max(tx_delta, rx_delta) * 8 / elapsed / 1_000_000

    def select_port(self, dpid: int, port: Optional[int]) -> Optional[int]:
        """
        Port to use for new flows leaving `port` on switch `dpid`.

        Returns the active port of the bundle that has `port` as a candidate,
        or `port` itself when no monitored bundle covers it.
        """
        for bundle in self.bundles_for(dpid):
            if port in bundle.ports:
                return bundle.active_port
        return port

    def snapshot(self) -> List[Dict]:
        """Current state of every bundle, for logging"""
        return [
            {
                'name': b.name,
                'dpid': b.dpid,
                'state': b.state.value,
                'active_port': b.active_port,
                'utilization': {p: b.utilization(p) for p in b.ports},
            }
            for b in self.bundles
        ]
