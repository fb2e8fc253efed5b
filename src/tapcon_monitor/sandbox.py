"""Packet filter rules routing static port ranges to containers."""

import asyncio
from typing import List, Protocol

from tapcon_monitor.config import Settings
from tapcon_monitor.utils import get_logger
from tapcon_monitor.utils.exceptions import SandboxError

logger = get_logger(__name__)

IPTABLES = "iptables"
NAT_TABLE = ["-t", "nat"]
POSTROUTING = "POSTROUTING"
PROTOCOLS = ("tcp", "udp")


def container_chain_name(container_id: str) -> str:
    """NAT chain holding a container's static port mapping."""
    return f"ctn-{container_id}"


class Sandbox(Protocol):
    """Installs and removes per-container packet filter rules."""

    async def setup_container_chain(self, container_id: str) -> None: ...

    async def remove_container_chain(self, container_id: str) -> None: ...

    async def setup_static_port_mapping(
        self, container_id: str, container_ip: str, port_min: int, port_max: int
    ) -> None: ...

    async def clear_static_port_mapping(self, container_id: str) -> None: ...


class IptablesSandbox:
    """Sandbox backed by the ``iptables`` command line tool."""

    def __init__(self, executable: str = IPTABLES) -> None:
        self.executable = executable

    async def _run(self, *args: str) -> None:
        command = [self.executable, *NAT_TABLE, *args]
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        output, _ = await process.communicate()
        if process.returncode != 0:
            text = output.decode(errors="replace")
            logger.error(
                "iptables command failed",
                extra={"command": command, "returncode": process.returncode, "output": text},
            )
            raise SandboxError(command, text)

    async def _run_quietly(self, *args: str) -> None:
        try:
            await self._run(*args)
        except SandboxError:
            pass

    async def setup_container_chain(self, container_id: str) -> None:
        """
        Create the container chain and jump to it from POSTROUTING.

        Raises:
            SandboxError: If either step fails; a half created chain is deleted
        """
        chain = container_chain_name(container_id)
        await self._run("-N", chain)
        try:
            await self._run("-I", POSTROUTING, "-j", chain)
        except SandboxError:
            await self._run_quietly("-X", chain)
            raise

    async def remove_container_chain(self, container_id: str) -> None:
        """
        Drop the jump, flush the chain and delete it.

        Raises:
            SandboxError: On the first failing step
        """
        chain = container_chain_name(container_id)
        await self._run("-D", POSTROUTING, "-j", chain)
        await self._run("-F", chain)
        await self._run("-X", chain)

    async def setup_static_port_mapping(
        self, container_id: str, container_ip: str, port_min: int, port_max: int
    ) -> None:
        """
        Append one MASQUERADE rule per protocol for ``container_ip``.

        Raises:
            SandboxError: If a rule cannot be added; the chain is flushed
        """
        chain = container_chain_name(container_id)
        for protocol in PROTOCOLS:
            try:
                await self._run(
                    "-A",
                    chain,
                    "-p",
                    protocol,
                    "-d",
                    container_ip,
                    "-j",
                    "MASQUERADE",
                    "--to-ports",
                    f"{port_min}-{port_max}",
                )
            except SandboxError:
                await self._run_quietly("-F", chain)
                raise

    async def clear_static_port_mapping(self, container_id: str) -> None:
        await self._run("-F", container_chain_name(container_id))


class DryRunSandbox(IptablesSandbox):
    """Sandbox that logs the iptables commands instead of running them."""

    def __init__(self, executable: str = IPTABLES) -> None:
        super().__init__(executable)
        self.commands: List[List[str]] = []

    async def _run(self, *args: str) -> None:
        command = [self.executable, *NAT_TABLE, *args]
        self.commands.append(command)
        logger.info("Dry run sandbox command", extra={"command": " ".join(command)})


def create_sandbox(settings: Settings) -> Sandbox:
    """Build the sandbox selected by ``settings.sandbox_mode``."""
    if settings.sandbox_mode == "dry-run":
        return DryRunSandbox()
    return IptablesSandbox()
