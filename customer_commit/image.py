"""Helper functions for working with container image references."""

from dataclasses import dataclass
import logging
from urllib.parse import urlparse

from .exceptions import InputException

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "ImageRef",
    "engine_host",
]

LOOPBACK = "127.0.0.1"


@dataclass(frozen=True, order=True)
class ImageRef:
    """A named and tagged container image."""

    registry: str
    repository: str
    tag: str

    def with_tag(self, tag: str) -> "ImageRef":
        """Return the same image reference under a different tag."""
        return ImageRef(self.registry, self.repository, tag)

    @classmethod
    def parse(cls, value: str) -> "ImageRef":
        """Parse a `registry/repository:tag` reference."""
        name, sep, tag = value.rpartition(":")
        if not sep or "/" in tag:
            name, tag = value, "latest"
        registry, _, repository = name.rpartition("/")
        if not repository:
            raise InputException(f"Invalid image reference '{value}'")
        return cls(registry, repository, tag)

    def __str__(self) -> str:
        """Return the reference in the form used by the container engine."""
        if self.registry:
            return f"{self.registry}/{self.repository}:{self.tag}"
        return f"{self.repository}:{self.tag}"


def engine_host(docker_host: str | None) -> str:
    """Return the address of the container engine.

    The `DOCKER_HOST` value may be unset or look like `tcp://1.2.3.4:2376`; only
    the host portion is needed to reach ports published by the engine.
    """
    if not docker_host:
        return LOOPBACK
    if "://" not in docker_host:
        docker_host = f"tcp://{docker_host}"
    parsed = urlparse(docker_host)
    if parsed.scheme == "unix" or not parsed.hostname:
        return LOOPBACK
    _LOGGER.debug("Using container engine host %s", parsed.hostname)
    return parsed.hostname
