"""Customer-commit actions that run a provisioning phase."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from typing import cast

from customer_commit.provision import PROVISION

from . import options

_LOGGER = logging.getLogger(__name__)


class PhaseAction:
    """Base action that runs a single phase and its prerequisites."""

    name: str = ""
    phase: str = ""
    help: str = ""
    description: str = ""
    aliases: list[str] = []
    require_secrets = False

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                cls.name,
                aliases=cls.aliases,
                help=cls.help,
                description=cls.description or cls.help,
            ),
        )
        options.add_common_flags(args)
        cls.add_arguments(args)
        args.set_defaults(cls=cls)
        return args

    @classmethod
    def add_arguments(cls, args: ArgumentParser) -> None:
        """Add arguments specific to the action."""

    async def run(  # type: ignore[no-untyped-def]
        self,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        provisioner = options.provisioner(
            require_secrets=self.require_secrets, **kwargs
        )
        await provisioner.run(self.phase or self.name)


class ProvisionAction(PhaseAction):
    """Customer-commit provision action."""

    name = PROVISION
    aliases = ["build"]
    help = "Build the configured image from the base image"
    description = """Removes the generated files, starts the base image with
        freshly generated keys and configuration mounted into it, waits for
        the management service, changes the password of every account, then
        stops the container, commits it as the result image, removes the
        container and tags the result image as latest."""
    require_secrets = True


class StartBaseAction(PhaseAction):
    """Customer-commit start-base action."""

    name = "start-base"
    help = "Start the base image with the generated files mounted"
    require_secrets = True


class WaitReadyAction(PhaseAction):
    """Customer-commit wait-ready action."""

    name = "wait-ready"
    help = "Wait for the management service of the container to listen"


class StopAction(PhaseAction):
    """Customer-commit stop action."""

    name = "stop"
    help = "Stop the container, if it exists"


class RemoveAction(PhaseAction):
    """Customer-commit remove action."""

    name = "remove"
    aliases = ["rm"]
    help = "Stop and remove the container, if it exists"


class CommitAction(PhaseAction):
    """Customer-commit commit action."""

    name = "commit"
    help = "Commit the container as the result image"


class TagLatestAction(PhaseAction):
    """Customer-commit tag-latest action."""

    name = "tag-latest"
    aliases = ["tag"]
    help = "Tag the result image as latest"


class CleanAction(PhaseAction):
    """Customer-commit clean action."""

    name = "clean"
    help = "Remove the generated files mounted into the container"


class PurgeSecretsAction(PhaseAction):
    """Customer-commit purge-secrets action."""

    name = "purge-secrets"
    aliases = ["distclean"]
    help = "Remove the generated files and the generated key pair"
    description = """Removes the generated files and the key pair they were
        copied from. Run this before distributing the source directory."""


ACTIONS: list[type[PhaseAction]] = [
    ProvisionAction,
    StartBaseAction,
    WaitReadyAction,
    StopAction,
    RemoveAction,
    CommitAction,
    TagLatestAction,
    CleanAction,
    PurgeSecretsAction,
]
