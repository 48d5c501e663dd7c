"""Configuration for the load-balancing controller"""

from .config_loader import (
    BackendConfig,
    BundleConfig,
    ConfigurationError,
    ControllerConfig,
    LinkAggregationConfig,
    LoggingConfig,
    MeterConfig,
    ServiceConfig,
    SwitchConfig,
    TimingConfig,
    default_config_path,
    load_config,
    parse_config,
)

__all__ = [
    'BackendConfig',
    'BundleConfig',
    'ConfigurationError',
    'ControllerConfig',
    'LinkAggregationConfig',
    'LoggingConfig',
    'MeterConfig',
    'ServiceConfig',
    'SwitchConfig',
    'TimingConfig',
    'default_config_path',
    'load_config',
    'parse_config',
]
