"""Static port range slot pool."""

import threading
from typing import List, NamedTuple

from tapcon_monitor.utils import get_logger
from tapcon_monitor.utils.exceptions import NoStaticPortSlotError

logger = get_logger(__name__)


class PortRange(NamedTuple):
    """Inclusive port range."""

    min: int
    max: int

    def __str__(self) -> str:
        return f"{self.min}-{self.max}"


class StaticPortAllocator:
    """
    Fixed pool of equally sized port ranges carved out of [base, max).

    Slot ``i`` covers ``[base + i * per, base + (i + 1) * per - 1]``. Every
    slot flag sits behind one lock, so concurrent keepers never receive the
    same slot.
    """

    def __init__(self, base: int, max_port: int, per_container: int) -> None:
        """
        Initialize the allocator.

        Args:
            base: First port of the pool
            max_port: End of the pool (exclusive)
            per_container: Number of ports in each slot
        """
        if base <= 0 or max_port <= 0 or per_container <= 0:
            raise ValueError("static port pool bounds must be positive")

        self.base = base
        self.max_port = max_port
        self.per_container = per_container
        self._lock = threading.Lock()
        self._slots: List[bool] = [False] * self.n_slots

    @property
    def n_slots(self) -> int:
        """Number of slots in the pool."""
        return max(0, (self.max_port - self.base) // self.per_container)

    def _slot_range(self, index: int) -> PortRange:
        low = self.base + index * self.per_container
        return PortRange(low, low + self.per_container - 1)

    def acquire(self) -> PortRange:
        """
        Take the lowest free slot.

        Returns:
            Port range of the taken slot

        Raises:
            NoStaticPortSlotError: If every slot is taken
        """
        with self._lock:
            for i, taken in enumerate(self._slots):
                if not taken:
                    self._slots[i] = True
                    return self._slot_range(i)
        raise NoStaticPortSlotError(self.n_slots)

    def release(self, port_range: PortRange) -> None:
        """
        Free the slot that owns ``port_range``.

        Ranges outside the pool are ignored with a warning.
        """
        index = (port_range.min - self.base) // self.per_container
        if port_range.min < self.base or index >= self.n_slots:
            logger.warning("Releasing range outside static pool", extra={"range": str(port_range)})
            return
        with self._lock:
            self._slots[index] = False

    def reset_all(self) -> None:
        """Mark every slot free."""
        with self._lock:
            self._slots = [False] * self.n_slots

    def allocated_ranges(self) -> List[PortRange]:
        """Ranges of all taken slots, in slot order."""
        with self._lock:
            return [self._slot_range(i) for i, taken in enumerate(self._slots) if taken]

    def allocated_count(self) -> int:
        """Number of taken slots."""
        with self._lock:
            return sum(self._slots)
