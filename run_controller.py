#!/usr/bin/env python3
"""
Controller Entry Point

This is the entry point for running the Ryu controller.

Usage:
    ryu-manager run_controller.py
    ryu-manager lbcontroller.controller.lb_controller
    LBCONTROLLER_CONFIG=/path/to/config.yaml ryu-manager run_controller.py
"""

from lbcontroller.controller.lb_controller import LoadBalancingController


# ryu-manager only picks up apps defined in the module it was given
class LoadBalancingControllerApp(LoadBalancingController):
    pass
