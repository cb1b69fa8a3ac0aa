"""
Configuration Module
"""
from .loader import (
    ClusterConfig,
    DiscoveryConfig,
    DiscoveryStrategy,
    LifecycleAction,
    LoggingConfig,
    ReadinessConfig,
    SSHConfig,
    load_config,
)

__all__ = [
    "ClusterConfig",
    "DiscoveryConfig",
    "DiscoveryStrategy",
    "LifecycleAction",
    "LoggingConfig",
    "ReadinessConfig",
    "SSHConfig",
    "load_config",
]
