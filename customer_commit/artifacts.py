"""Tracking of generated files that must exist before the container starts.

Each `Artifact` declares the files it produces and a rule that produces them.
The `ArtifactTracker` only runs the rule for an artifact whose targets are not
all present, so building an already populated tree performs no writes. Files
are materialized into the mount tree (`datapower/`) that is bound into the
container, never into the image itself.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging
import os
from pathlib import Path
import shutil

import aiofiles
import aiofiles.os
from aiofiles.ospath import exists

from . import credentials
from .config import ProvisionConfig, SecretsConfig
from .context import trace_context
from .exceptions import GenerationError

__all__ = [
    "Artifact",
    "ArtifactTracker",
    "default_artifacts",
    "clean",
    "purge",
    "fixate",
]

_LOGGER = logging.getLogger(__name__)

EVOLVE_CONFIG = "evolve.cfg"
PASSWORD_MAP = "password-map.cfg"

# Directories inside the mount tree that receive a copy of the key pair.
KEY_PAIR_DIRS = ["local", "local/foo"]

Rule = Callable[[], Awaitable[None]]


@dataclass
class Artifact:
    """A set of generated files and the rule that produces them."""

    name: str
    targets: list[Path]
    rule: Rule

    async def missing(self) -> list[Path]:
        """Return the targets that do not exist yet."""
        return [target for target in self.targets if not await exists(target)]


class ArtifactTracker:
    """Builds the declared artifacts that are missing, in declaration order."""

    def __init__(self, artifacts: list[Artifact]) -> None:
        """Initialize ArtifactTracker."""
        self._artifacts = artifacts

    @property
    def artifacts(self) -> list[Artifact]:
        return list(self._artifacts)

    async def build(self) -> list[str]:
        """Build all missing artifacts, returning the names of those built."""
        built = []
        for artifact in self._artifacts:
            if not (missing := await artifact.missing()):
                _LOGGER.debug("Artifact %s is up to date", artifact.name)
                continue
            _LOGGER.info(
                "Building artifact %s (missing %s)",
                artifact.name,
                ", ".join(str(path) for path in missing),
            )
            with trace_context(f"Artifact '{artifact.name}'"):
                for target in artifact.targets:
                    await aiofiles.os.makedirs(target.parent, exist_ok=True)
                await artifact.rule()
            if still_missing := await artifact.missing():
                raise GenerationError(
                    f"Artifact {artifact.name} did not produce: "
                    + ", ".join(str(path) for path in still_missing)
                )
            built.append(artifact.name)
        return built


async def copy_private(source: Path, dest: Path) -> None:
    """Copy a file, creating the destination readable by the owner only."""
    if not await exists(source):
        raise GenerationError(f"Unable to copy missing file '{source}'")
    async with aiofiles.open(source, "rb") as src:
        content = await src.read()
    if await exists(dest):
        await aiofiles.os.remove(dest)
    await aiofiles.os.makedirs(dest.parent, exist_ok=True)
    async with aiofiles.open(
        dest, "wb", opener=lambda path, flags: os.open(path, flags, 0o600)
    ) as out:
        await out.write(content)


def _fan_out_rule(sources: list[Path], dest_dirs: list[Path]) -> Rule:
    async def rule() -> None:
        for dest_dir in dest_dirs:
            for source in sources:
                await copy_private(source, dest_dir / source.name)

    return rule


def default_artifacts(
    config: ProvisionConfig,
    secrets: SecretsConfig,
    openssl: str = credentials.OPENSSL_BIN,
) -> list[Artifact]:
    """Return the artifacts required to evolve the base image."""
    workdir = config.workdir
    pair = credentials.KeyPair.in_dir(workdir)
    config_dir = config.mount_dir / "config"
    key_dirs = [config.mount_dir / name for name in KEY_PAIR_DIRS]

    async def key_pair() -> None:
        await credentials.generate_key_pair(workdir, secrets, openssl=openssl)

    async def password_map() -> None:
        await credentials.write_password_map(config_dir / PASSWORD_MAP, secrets)

    async def evolve_config() -> None:
        await copy_private(workdir / EVOLVE_CONFIG, config_dir / EVOLVE_CONFIG)

    return [
        Artifact("key-pair", [pair.cert, pair.key], key_pair),
        Artifact(
            "mounted-key-pair",
            [
                key_dir / path.name
                for key_dir in key_dirs
                for path in (pair.cert, pair.key)
            ],
            _fan_out_rule([pair.cert, pair.key], key_dirs),
        ),
        Artifact("password-map", [config_dir / PASSWORD_MAP], password_map),
        Artifact("evolve-config", [config_dir / EVOLVE_CONFIG], evolve_config),
    ]


def clean(config: ProvisionConfig) -> bool:
    """Remove the mount tree, returning False if it could not be fully removed.

    The container may create files owned by root inside the mount tree which
    can't be removed by the invoking user.
    """
    if not config.mount_dir.exists():
        return True
    _LOGGER.info("Removing %s", config.mount_dir)
    try:
        shutil.rmtree(config.mount_dir)
    except PermissionError as err:
        _LOGGER.warning(
            "Unable to remove %s, remove it as the owner of the files: %s",
            config.mount_dir,
            err,
        )
        return False
    return True


def purge(config: ProvisionConfig) -> bool:
    """Remove the mount tree and the source key pair."""
    result = clean(config)
    for path in credentials.KeyPair.in_dir(config.workdir).files:
        if path.exists():
            _LOGGER.info("Removing %s", path)
            path.unlink()
    return result


def fixate(path: Path) -> None:
    """Restrict a secrets file to owner read and write."""
    if path.exists():
        os.chmod(path, 0o600)
