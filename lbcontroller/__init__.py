"""Virtual-service load-balancing SDN controller"""

__version__ = "0.1.0"
