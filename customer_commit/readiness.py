"""Polling for a listener on a port inside a running container.

The appliance signals that its startup sequence has completed by opening its
management service. There is no structured readiness signal, so the network
state inside the container is sampled at a fixed interval until the port is
in the LISTEN state or the maximum wait has elapsed.
"""

import asyncio
from dataclasses import dataclass
from enum import StrEnum
import logging
import re

from .engine import ContainerEngine

__all__ = [
    "Readiness",
    "ReadinessResult",
    "listening_ports",
    "wait_for_listener",
]

_LOGGER = logging.getLogger(__name__)

POLL_INTERVAL = 1.0
NETSTAT = ["netstat", "-ln"]

_LISTEN_RE = re.compile(r"^tcp\S*[ \t]+.*?:(\d+)[ \t]+.*LISTEN", re.MULTILINE)


class Readiness(StrEnum):
    """Outcome of waiting for a listener."""

    READY = "Ready"
    TIMEOUT = "Timeout"


@dataclass
class ReadinessResult:
    """Outcome of waiting for a listener and how long it took."""

    status: Readiness
    elapsed: float
    polls: int

    @property
    def ready(self) -> bool:
        return self.status == Readiness.READY

    def __str__(self) -> str:
        return f"{self.status} after {self.elapsed:0.1f}s ({self.polls} polls)"


def listening_ports(netstat_output: str) -> set[int]:
    """Return the TCP ports in LISTEN state from `netstat -ln` output."""
    return {int(port) for port in _LISTEN_RE.findall(netstat_output)}


async def wait_for_listener(
    engine: ContainerEngine,
    name: str,
    port: int,
    max_wait: float,
    interval: float = POLL_INTERVAL,
) -> ReadinessResult:
    """Wait until a TCP port inside the container is in the LISTEN state.

    The first sample is taken immediately and then once every `interval`
    seconds. Failure to run the probe (e.g. the container exited) is raised
    to the caller, while not observing the listener within `max_wait` is
    reported as a `Readiness.TIMEOUT` result.
    """
    loop = asyncio.get_running_loop()
    start = loop.time()
    deadline = start + max_wait
    polls = 0
    _LOGGER.info("Waiting up to %gs for port %d listener in %s", max_wait, port, name)
    while True:
        polls += 1
        output = await engine.exec(name, NETSTAT)
        now = loop.time()
        if port in listening_ports(output):
            result = ReadinessResult(Readiness.READY, now - start, polls)
            _LOGGER.info("Port %d listener in %s: %s", port, name, result)
            return result
        if now >= deadline:
            result = ReadinessResult(Readiness.TIMEOUT, now - start, polls)
            _LOGGER.warning("Port %d listener in %s: %s", port, name, result)
            return result
        _LOGGER.debug("Port %d not listening yet in %s", port, name)
        await asyncio.sleep(min(interval, deadline - now))
