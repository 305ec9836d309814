"""Library for driving the container engine command line.

The engine is treated as out of process state: `ContainerEngine` holds no
state other than the binary it invokes, and every operation is a single
engine command (or a short sequence of them).

Example that starts a container and snapshots it:
```python
from customer_commit.engine import ContainerEngine
from customer_commit.image import ImageRef

engine = ContainerEngine()
await engine.start(
    ImageRef("me", "datapower-base", "latest"),
    "customer-commit",
    run_flags=["--privileged", "-P"],
    volumes={Path("/src/datapower"): "/datapower"},
)
await engine.stop("customer-commit", timeout=600)
await engine.snapshot("customer-commit", ImageRef("me", "customer-commit", "0.1"))
```
"""

from dataclasses import dataclass, field
import json
import logging
import math
from pathlib import Path

from .command import Command, run
from .exceptions import EngineError, NameConflict
from .image import ImageRef

__all__ = [
    "Container",
    "ContainerEngine",
]

_LOGGER = logging.getLogger(__name__)

DOCKER_BIN = "docker"

# Diagnostics printed by the engine when an object does not exist.
_NOT_FOUND = ("No such container", "No such object", "No such image", "not found")
_CONFLICT = "Conflict"


@dataclass(frozen=True)
class Container:
    """Handle for a container instance started by the engine."""

    name: str
    image: ImageRef
    container_id: str = ""
    volumes: dict[Path, str] = field(default_factory=dict)


def _is_not_found(err: EngineError) -> bool:
    return any(marker in str(err) for marker in _NOT_FOUND)


class ContainerEngine:
    """Library for issuing container engine commands."""

    def __init__(self, docker_bin: str = DOCKER_BIN) -> None:
        """Initialize ContainerEngine."""
        self._docker_bin = docker_bin

    def command(self, args: list[str], timeout: float | None = 60.0) -> Command:
        """Return the engine command for the specified arguments."""
        return Command([self._docker_bin, *args], exc=EngineError, timeout=timeout)

    async def _run(
        self,
        args: list[str],
        timeout: float | None = 60.0,
        merge_stderr: bool = False,
    ) -> str:
        cmd = self.command(args, timeout=timeout)
        cmd.merge_stderr = merge_stderr
        return await run(cmd)

    async def is_running(self, name: str) -> bool:
        """Return True if a container with the name exists and is running."""
        try:
            out = await self._run(
                [
                    "inspect",
                    "--type",
                    "container",
                    "--format",
                    "{{.State.Running}}",
                    name,
                ]
            )
        except EngineError as err:
            if _is_not_found(err):
                return False
            raise
        return out.strip() == "true"

    async def start(
        self,
        image: ImageRef,
        name: str,
        run_flags: list[str] | None = None,
        volumes: dict[Path, str] | None = None,
    ) -> Container:
        """Start a detached container from an image."""
        if await self.is_running(name):
            raise NameConflict(name)
        volumes = volumes or {}
        args = ["run", "-d", "--name", name, *(run_flags or [])]
        for source, dest in volumes.items():
            args.extend(["-v", f"{source}:{dest}"])
        args.append(str(image))
        _LOGGER.info("Starting container %s from %s", name, image)
        try:
            out = await self._run(args)
        except EngineError as err:
            if _CONFLICT in str(err):
                raise NameConflict(name, str(err)) from err
            raise
        return Container(
            name=name, image=image, container_id=out.strip(), volumes=volumes
        )

    async def stop(self, name: str, timeout: float = 10) -> None:
        """Stop a container, ignoring containers that do not exist.

        The engine only accepts whole seconds for its grace period.
        """
        _LOGGER.info("Stopping container %s", name)
        grace = math.ceil(timeout)
        try:
            # Allow the engine to wait out its own grace period before killing.
            await self._run(["stop", "-t", str(grace), name], timeout=grace + 60)
        except EngineError as err:
            if not _is_not_found(err):
                raise
            _LOGGER.debug("Container %s does not exist, nothing to stop", name)

    async def remove(self, name: str) -> None:
        """Remove a container, ignoring containers that do not exist."""
        _LOGGER.info("Removing container %s", name)
        try:
            await self._run(["rm", name])
        except EngineError as err:
            if not _is_not_found(err):
                raise
            _LOGGER.debug("Container %s does not exist, nothing to remove", name)

    async def remove_image(self, image: ImageRef) -> None:
        """Remove an image reference, ignoring images that do not exist."""
        try:
            await self._run(["rmi", str(image)])
        except EngineError as err:
            if not _is_not_found(err):
                raise
            _LOGGER.debug("Image %s does not exist, nothing to remove", image)

    async def snapshot(self, name: str, image: ImageRef) -> ImageRef:
        """Commit the container filesystem as a new image."""
        await self.remove_image(image)
        _LOGGER.info("Committing container %s as %s", name, image)
        await self._run(["commit", name, str(image)], timeout=None)
        return image

    async def alias(self, image: ImageRef, tag: str) -> ImageRef:
        """Tag an image under an additional tag, replacing any previous alias."""
        alias = image.with_tag(tag)
        _LOGGER.info("Tagging %s as %s", image, alias)
        await self._run(["tag", str(image), str(alias)])
        return alias

    async def exec(self, name: str, args: list[str]) -> str:
        """Run a command inside the container and return its output."""
        return await self._run(["exec", name, *args])

    def exec_command(
        self, name: str, args: list[str], interactive: bool = False
    ) -> list[str]:
        """Return the engine arguments used to run a command in the container."""
        flags = ["-i"] if interactive else []
        return [self._docker_bin, "exec", *flags, name, *args]

    async def logs(self, name: str) -> str:
        """Return the container logs with stderr merged into stdout."""
        return await self._run(["logs", name], merge_stderr=True)

    async def host_port(self, name: str, port: int) -> int:
        """Return the host port a container port is published on."""
        out = await self._run(
            [
                "inspect",
                "--type",
                "container",
                "--format",
                "{{json .NetworkSettings.Ports}}",
                name,
            ]
        )
        try:
            ports = json.loads(out) or {}
            return int(ports[f"{port}/tcp"][0]["HostPort"])
        except (ValueError, KeyError, IndexError, TypeError) as err:
            raise EngineError(
                f"Port {port}/tcp of container '{name}' is not published: {out.strip()}"
            ) from err
