"""Data models for tapcon monitor."""

from .images import ImageMetadata, ImageSource
from .principal import (
    EndorsedStatement,
    IpAlias,
    PortAliasBucket,
    Principal,
    PrincipalAliases,
    ProtocolPorts,
)
from .runtime import RuntimeConfig, load_runtime_config

__all__ = [
    "EndorsedStatement",
    "ImageMetadata",
    "ImageSource",
    "IpAlias",
    "PortAliasBucket",
    "Principal",
    "PrincipalAliases",
    "ProtocolPorts",
    "RuntimeConfig",
    "load_runtime_config",
]
