#!/usr/bin/env python3
"""
Structured logging utility for the load-balancing controller

Provides consistent logging across all modules.
"""

import logging
import os
from datetime import datetime
from typing import Optional


DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class ControllerLogger:
    """
    Structured logger for controller components.

    Provides different log methods for different event types.
    """

    def __init__(self, name: str, log_dir: Optional[str] = None, level: str = "INFO",
                 log_format: Optional[str] = None):
        """
        Initialize logger.

        Args:
            name: Logger name (usually module name)
            log_dir: Directory to store log files (None = console only)
            level: Log level (DEBUG, INFO, WARNING, ERROR)
            log_format: Custom log format string
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))

        # Handlers are attached once per logger name
        if self.logger.handlers:
            return

        formatter = logging.Formatter(log_format or DEFAULT_FORMAT)

        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_file = os.path.join(log_dir, f"{name}_{timestamp}.log")

            fh = logging.FileHandler(log_file)
            fh.setLevel(getattr(logging, level.upper()))
            fh.setFormatter(formatter)
            self.logger.addHandler(fh)

        ch = logging.StreamHandler()
        ch.setLevel(getattr(logging, level.upper()))
        ch.setFormatter(formatter)
        self.logger.addHandler(ch)

    def debug(self, msg: str, *args):
        """Log debug message"""
        self.logger.debug(msg, *args)

    def info(self, msg: str, *args):
        """Log info message"""
        self.logger.info(msg, *args)

    def warning(self, msg: str, *args):
        """Log warning message"""
        self.logger.warning(msg, *args)

    def error(self, msg: str, *args):
        """Log error message"""
        self.logger.error(msg, *args)

    def switch_event(self, event: str, *args):
        """Log switch connect/disconnect event"""
        self.logger.info("[SWITCH] " + event, *args)

    def arp_event(self, event: str, *args):
        """Log ARP proxy event"""
        self.logger.info("[ARP] " + event, *args)

    def lb_event(self, event: str, *args):
        """Log load balancer event"""
        self.logger.info("[LB] " + event, *args)

    def link_event(self, event: str, *args):
        """Log link aggregation event"""
        self.logger.info("[LINK] " + event, *args)

    def flow_event(self, event: str, *args):
        """Log flow installation event"""
        self.logger.debug("[FLOW] " + event, *args)

    def separator(self, char: str = "=", length: int = 70):
        """Log separator line"""
        self.logger.info(char * length)


def get_logger(name: str, logger: Optional[ControllerLogger] = None) -> ControllerLogger:
    """Return the given logger, or a console logger named after the component."""
    return logger if logger is not None else ControllerLogger(name)
