"""Typed view of a container runtime's on-disk container state."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from tapcon_monitor.utils.exceptions import RuntimeConfigError

CONTAINER_CONFIG_FILE = "config.v2.json"
CONTAINER_HOST_CONFIG = "hostconfig.json"
CONFIG_FILES = (CONTAINER_CONFIG_FILE, CONTAINER_HOST_CONFIG)

# Network modes that are not user defined networks
_BUILTIN_NETWORK_MODES = {"", "default", "bridge", "host", "none"}


class _RuntimeModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ContainerState(_RuntimeModel):
    running: bool = Field(default=False, alias="Running")


class ContainerOptions(_RuntimeModel):
    network_disabled: bool = Field(default=False, alias="NetworkDisabled")


class AttachedNetwork(_RuntimeModel):
    """One network endpoint of a container."""

    network_id: str = Field(default="", alias="NetworkID")
    ip_address: str = Field(default="", alias="IPAddress")


class PortBinding(_RuntimeModel):
    host_ip: str = Field(default="", alias="HostIp")
    host_port: str = Field(default="", alias="HostPort")


class NetworkSettings(_RuntimeModel):
    sandbox_key: str = Field(default="", alias="SandboxKey")
    networks: Dict[str, AttachedNetwork] = Field(default_factory=dict, alias="Networks")
    ports: Dict[str, List[PortBinding]] = Field(default_factory=dict, alias="Ports")

    @field_validator("networks", mode="before")
    @classmethod
    def _nullable_networks(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("ports", mode="before")
    @classmethod
    def _nullable_ports(cls, value: Any) -> Any:
        if value is None:
            return {}
        # Exposed but unpublished ports carry a null binding list
        return {port: bindings or [] for port, bindings in value.items()}


class HostConfig(_RuntimeModel):
    network_mode: str = Field(default="", alias="NetworkMode")

    def is_user_defined_network(self) -> bool:
        """Whether the container runs on a user defined network."""
        mode = self.network_mode
        return mode not in _BUILTIN_NETWORK_MODES and not mode.startswith("container:")


class RuntimeConfig(_RuntimeModel):
    """Parsed ``config.v2.json`` together with its ``hostconfig.json``."""

    id: str = Field(default="", alias="ID")
    image: str = Field(default="", alias="Image")
    state: ContainerState = Field(default_factory=ContainerState, alias="State")
    options: ContainerOptions = Field(default_factory=ContainerOptions, alias="Config")
    network_settings: NetworkSettings = Field(
        default_factory=NetworkSettings, alias="NetworkSettings"
    )
    host_config: HostConfig = Field(default_factory=HostConfig)

    @field_validator("state", "options", "network_settings", mode="before")
    @classmethod
    def _nullable_sections(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def running(self) -> bool:
        return self.state.running

    @property
    def network_disabled(self) -> bool:
        return self.options.network_disabled

    @property
    def sandbox_key(self) -> str:
        return self.network_settings.sandbox_key

    @property
    def networks(self) -> Dict[str, AttachedNetwork]:
        return self.network_settings.networks

    def host_ports(self) -> List[str]:
        """Host port strings of every published binding, in declaration order."""
        return [
            binding.host_port
            for bindings in self.network_settings.ports.values()
            for binding in bindings
        ]


def _read_json(path: Path) -> Dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise RuntimeConfigError(str(path), str(e)) from e
    except ValueError as e:
        # JSONDecodeError and UnicodeDecodeError
        raise RuntimeConfigError(str(path), f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise RuntimeConfigError(str(path), "expected a JSON object")
    return data


def load_runtime_config(root: Path, container_id: Optional[str] = None) -> RuntimeConfig:
    """
    Load a container's state from its directory.

    Args:
        root: Container directory holding both config artifacts
        container_id: Identifier used when the config omits one

    Returns:
        Parsed runtime config

    Raises:
        RuntimeConfigError: If either artifact is missing or malformed
    """
    config_path = root / CONTAINER_CONFIG_FILE
    host_config_path = root / CONTAINER_HOST_CONFIG

    data = _read_json(config_path)
    host_data = _read_json(host_config_path)

    try:
        config = RuntimeConfig.model_validate(data)
        config.host_config = HostConfig.model_validate(host_data)
    except ValidationError as e:
        raise RuntimeConfigError(str(root), str(e)) from e

    if not config.id and container_id:
        config.id = container_id
    return config
