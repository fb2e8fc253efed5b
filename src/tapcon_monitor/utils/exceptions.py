"""Custom exceptions for tapcon monitor."""


class TapconMonitorError(Exception):
    """Base exception for tapcon monitor errors."""

    pass


class StartupError(TapconMonitorError):
    """Exception raised when the daemon cannot start without operator help."""

    pass


class MetadataAPIError(TapconMonitorError):
    """Exception raised when a metadata service call fails."""

    def __init__(self, operation: str, message: str) -> None:
        """
        Initialize MetadataAPIError.

        Args:
            operation: Name of the metadata operation that failed
            message: Opaque failure description
        """
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class PrincipalNotFoundError(MetadataAPIError):
    """Exception raised when the metadata service has no such principal."""

    def __init__(self, principal: str) -> None:
        """
        Initialize PrincipalNotFoundError.

        Args:
            principal: Principal identifier that was not found
        """
        self.principal = principal
        super().__init__("show_principal", f"principal not found: {principal}")


class SandboxError(TapconMonitorError):
    """Exception raised when packet filter rules cannot be installed or removed."""

    def __init__(self, command: list[str], output: str) -> None:
        """
        Initialize SandboxError.

        Args:
            command: Command line that failed
            output: Combined output of the failed command
        """
        self.command = command
        self.output = output
        super().__init__(f"command {' '.join(command)} failed: {output.strip()}")


class RuntimeConfigError(TapconMonitorError):
    """Exception raised when on-disk container state cannot be parsed."""

    def __init__(self, path: str, reason: str) -> None:
        """
        Initialize RuntimeConfigError.

        Args:
            path: Config artifact that could not be loaded
            reason: Why loading failed
        """
        self.path = path
        self.reason = reason
        super().__init__(f"cannot load {path}: {reason}")


class ImageLoadError(TapconMonitorError):
    """Exception raised when image repository or image metadata cannot be loaded."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"cannot load {path}: {reason}")


class NamespaceNotFoundError(TapconMonitorError):
    """Exception raised when an IP belongs to no attached network."""

    def __init__(self, ip: str) -> None:
        """
        Initialize NamespaceNotFoundError.

        Args:
            ip: IP address with no owning network
        """
        self.ip = ip
        super().__init__(f"no namespace found for IP {ip}")


class PortAliasError(TapconMonitorError):
    """Base exception for port alias bookkeeping errors."""

    def __init__(self, message: str, ns_name: str, ip: str, protocol: str, port_min: int, port_max: int) -> None:
        self.ns_name = ns_name
        self.ip = ip
        self.protocol = protocol
        self.port_min = port_min
        self.port_max = port_max
        super().__init__(f"port alias {ns_name} {ip} {protocol} {port_min}-{port_max} {message}")


class PortAliasExistsError(PortAliasError):
    """Exception raised when adding an exact duplicate port range."""

    def __init__(self, ns_name: str, ip: str, protocol: str, port_min: int, port_max: int) -> None:
        super().__init__("already exists", ns_name, ip, protocol, port_min, port_max)


class PortAliasNotFoundError(PortAliasError):
    """Exception raised when removing a port range that is not present."""

    def __init__(self, ns_name: str, ip: str, protocol: str, port_min: int, port_max: int) -> None:
        super().__init__("not found", ns_name, ip, protocol, port_min, port_max)


class NoStaticPortSlotError(TapconMonitorError):
    """Exception raised when every static port slot is taken."""

    def __init__(self, n_slots: int) -> None:
        """
        Initialize NoStaticPortSlotError.

        Args:
            n_slots: Size of the exhausted pool
        """
        self.n_slots = n_slots
        super().__init__(f"no static port slot available (pool of {n_slots})")
