"""Translation of requested container resources into Docker host configuration."""

import math
import re
from dataclasses import dataclass
from typing import Dict, Union

from panel_orchestrator.utils import get_logger

logger = get_logger(__name__)

# Memory used when the requested quantity cannot be parsed
DEFAULT_MEMORY_BYTES = 512 * 1024 * 1024

# CFS scheduler period in microseconds; a quota of one period equals one CPU
CPU_PERIOD = 100000

_MEMORY_UNITS = {
    "b": 1,
    "k": 1024,
    "m": 1024 * 1024,
    "g": 1024 * 1024 * 1024,
}

_MEMORY_PATTERN = re.compile(r"^(\d+)([bkmg]?)$")


def parse_memory(memory: Union[int, str]) -> int:
    """
    Convert a memory quantity to bytes.

    Integers are taken as bytes. Strings are a number with an optional
    b, k, m or g suffix (case-insensitive); a bare number means bytes.
    Anything else falls back to 512 MiB.

    Args:
        memory: Memory quantity

    Returns:
        Number of bytes
    """
    if isinstance(memory, bool):
        return DEFAULT_MEMORY_BYTES
    if isinstance(memory, int):
        return memory

    match = _MEMORY_PATTERN.match(str(memory).strip().lower())
    if not match:
        logger.warning(
            "Unrecognized memory quantity, using default",
            extra={"memory": memory, "default_bytes": DEFAULT_MEMORY_BYTES},
        )
        return DEFAULT_MEMORY_BYTES

    value = int(match.group(1))
    unit = match.group(2) or "b"
    return value * _MEMORY_UNITS[unit]


def cpu_quota(cpus: Union[float, str]) -> int:
    """
    Convert a CPU share into a CFS quota over CPU_PERIOD.

    Args:
        cpus: Number of CPUs, fractional values allowed

    Returns:
        Quota in microseconds per period
    """
    return math.floor(float(cpus) * CPU_PERIOD)


@dataclass
class ResourceLimits:
    """Resource limits requested for a container."""

    memory: Union[int, str] = "512m"
    cpus: Union[float, str] = 0.5

    @property
    def memory_bytes(self) -> int:
        """Memory limit in bytes."""
        return parse_memory(self.memory)

    @property
    def cpu_quota(self) -> int:
        """CPU quota in microseconds per period."""
        return cpu_quota(self.cpus)

    def to_host_config(self) -> Dict:
        """
        Get the docker-py keyword arguments enforcing these limits.

        Returns:
            Dictionary of Docker resource parameters
        """
        return {
            "mem_limit": self.memory_bytes,
            "cpu_quota": self.cpu_quota,
            "cpu_period": CPU_PERIOD,
        }
