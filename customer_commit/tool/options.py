"""Library for common command line flags."""

from argparse import ArgumentParser, BooleanOptionalAction
import logging
import pathlib
from typing import Any

from customer_commit.config import (
    NamingConfig,
    ProvisionConfig,
    load_secrets,
    load_settings,
)
from customer_commit.provision import Provisioner

_LOGGER = logging.getLogger(__name__)

SETTINGS_FILE = "customer-commit.yaml"


def add_common_flags(args: ArgumentParser) -> None:
    """Add flags shared by every command to the arguments object."""
    args.add_argument(
        "--workdir",
        help="Directory with the secrets, source configuration and generated files",
        type=pathlib.Path,
        default=pathlib.Path("."),
    )
    args.add_argument(
        "--settings",
        help=f"Settings file, defaults to {SETTINGS_FILE} in the workdir if present",
        type=pathlib.Path,
        default=None,
    )
    args.add_argument(
        "--secrets",
        help="Secrets file relative to the workdir",
        type=str,
        default=None,
    )
    args.add_argument(
        "--registry",
        help="Registry prefix of the images, defaults to $REGISTRY or the current user",
        type=str,
        default=None,
    )
    args.add_argument(
        "--base-repository",
        help="Repository of the unconfigured base image (default datapower-base)",
        type=str,
        default=None,
    )
    args.add_argument(
        "--result-repository",
        help="Repository of the committed image (default customer-commit)",
        type=str,
        default=None,
    )
    args.add_argument(
        "--tag",
        help="Tag of the committed image (default 0.1)",
        type=str,
        default=None,
    )
    args.add_argument(
        "--container-name",
        help="Name of the container, must be unique on the engine (default customer-commit)",
        type=str,
        default=None,
    )
    args.add_argument(
        "--max-wait",
        help="Seconds to wait for the management service and for the container to stop",
        type=float,
        default=None,
    )
    args.add_argument(
        "--docker",
        help="Container engine command line binary",
        type=str,
        default=None,
    )
    args.add_argument(
        "--blind",
        type=bool,
        action=BooleanOptionalAction,
        default=None,
        help="Send session scripts with fixed delays instead of waiting for prompts",
    )


def settings(
    workdir: pathlib.Path,
    settings: pathlib.Path | None = None,
    secrets: str | None = None,
    max_wait: float | None = None,
    docker: str | None = None,
    blind: bool | None = None,
    **kwargs: Any,  # pylint: disable=unused-argument
) -> ProvisionConfig:
    """Build the settings from the settings file and command line flags."""
    path = settings or (workdir / SETTINGS_FILE)
    config = load_settings(
        path,
        workdir=workdir,
        secrets_file=secrets,
        max_wait=max_wait,
        docker=docker,
    )
    if blind is not None:
        config.session.blind = blind
    return config


def naming(
    registry: str | None = None,
    base_repository: str | None = None,
    result_repository: str | None = None,
    tag: str | None = None,
    container_name: str | None = None,
    **kwargs: Any,  # pylint: disable=unused-argument
) -> NamingConfig:
    """Resolve the naming configuration from the environment and flags."""
    return NamingConfig.resolve(
        registry=registry,
        base_repository=base_repository,
        result_repository=result_repository,
        tag=tag,
        container_name=container_name,
    )


def provisioner(require_secrets: bool = True, **kwargs: Any) -> Provisioner:
    """Create a Provisioner from the command line flags."""
    config = settings(**kwargs)
    secrets_path = config.workdir / config.secrets_file
    secrets = None
    if require_secrets or secrets_path.exists():
        secrets = load_secrets(secrets_path)
    return Provisioner(config, naming(**kwargs), secrets)
