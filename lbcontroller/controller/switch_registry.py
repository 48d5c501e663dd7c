#!/usr/bin/env python3
"""
Switch Registry

Tracks the switches currently connected to the controller and the role each
one was given in the configuration.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config.config_loader import SwitchConfig
from ..utils.constants import MissAction, SwitchRole


class UnknownSwitchError(KeyError):
    """Raised when a datapath ID is not registered"""
    pass


@dataclass
class SwitchHandle:
    """A connected switch. The role never changes while it is registered."""
    dpid: int
    name: str
    role: SwitchRole
    datapath: Any
    config: SwitchConfig
    index: int
    ports: Dict[str, int] = field(default_factory=dict)

    @property
    def miss_action(self) -> MissAction:
        return self.config.miss_action

    def port(self, name: str) -> Optional[int]:
        return self.ports.get(name)

    def send(self, msg):
        """Hand a control message to the switch channel"""
        self.datapath.send_msg(msg)


class SwitchRegistry:
    """
    Registry of connected switches.

    Structure: {dpid: SwitchHandle}
    """

    def __init__(self, switch_configs: List[SwitchConfig]):
        """
        Args:
            switch_configs: Configured switches; their order defines the
                backend rotation order
        """
        self._order = {cfg.dpid: i for i, cfg in enumerate(switch_configs)}
        self._switches: Dict[int, SwitchHandle] = {}

    def register(self, datapath, switch_config: SwitchConfig) -> SwitchHandle:
        """
        Register (or re-register) a connected switch.

        Args:
            datapath: Datapath object of the connection
            switch_config: Configuration entry for this datapath

        Returns:
            The new SwitchHandle
        """
        handle = SwitchHandle(
            dpid=switch_config.dpid,
            name=switch_config.name,
            role=switch_config.role,
            datapath=datapath,
            config=switch_config,
            index=self._order.get(switch_config.dpid, len(self._order)),
            ports=dict(switch_config.ports)
        )
        self._switches[handle.dpid] = handle
        return handle

    def unregister(self, dpid: int) -> Optional[SwitchHandle]:
        """Remove a switch; returns the removed handle if it was known"""
        return self._switches.pop(dpid, None)

    def get(self, dpid: int) -> Optional[SwitchHandle]:
        return self._switches.get(dpid)

    def require(self, dpid: int) -> SwitchHandle:
        """Get a switch or raise UnknownSwitchError"""
        try:
            return self._switches[dpid]
        except KeyError:
            raise UnknownSwitchError(dpid)

    def by_role(self, role: SwitchRole) -> List[SwitchHandle]:
        """Registered switches with a role, in configuration order"""
        return sorted(
            (h for h in self._switches.values() if h.role == role),
            key=lambda h: h.index
        )

    def first(self, role: SwitchRole) -> Optional[SwitchHandle]:
        """First registered switch with a role"""
        handles = self.by_role(role)
        return handles[0] if handles else None

    def server_switches(self) -> List[SwitchHandle]:
        """Registered server-side switches, i.e. the available backends"""
        return self.by_role(SwitchRole.SERVER_SIDE)

    def __contains__(self, dpid) -> bool:
        return dpid in self._switches

    def __len__(self) -> int:
        return len(self._switches)
