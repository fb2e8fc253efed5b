"""IPv4 discovery inside a container's network namespace."""

import asyncio
from typing import List

from tapcon_monitor.utils.logging import get_logger

logger = get_logger(__name__)


def parse_ips(output: str) -> List[str]:
    """
    Parse ``<iface> <ip>`` lines.

    Any malformed line invalidates the whole listing.

    Args:
        output: Helper output

    Returns:
        IP addresses in line order, or an empty list
    """
    output = output.strip("\n")
    if not output:
        return []

    result = []
    for line in output.split("\n"):
        fields = line.split(" ")
        if len(fields) < 2:
            logger.warning("Malformed namespace IP line", extra={"line": line})
            return []
        result.append(fields[1])
    return result


async def list_namespace_ips(sandbox_key: str, command: str = "ipshow") -> List[str]:
    """
    List the IPv4 addresses of a namespace handle.

    Failures are logged and yield an empty list.

    Args:
        sandbox_key: Path of the network namespace handle
        command: Helper printing ``<iface> <ip>`` lines for a namespace path
    """
    try:
        process = await asyncio.create_subprocess_exec(
            command,
            sandbox_key,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
    except OSError as e:
        logger.warning(
            "Cannot run namespace IP helper",
            extra={"command": command, "sandbox_key": sandbox_key, "error": str(e)},
        )
        return []

    if process.returncode != 0:
        logger.warning(
            "Namespace IP helper failed",
            extra={
                "command": command,
                "sandbox_key": sandbox_key,
                "returncode": process.returncode,
                "stderr": stderr.decode(errors="replace"),
            },
        )
        return []
    return parse_ips(stdout.decode(errors="replace"))
