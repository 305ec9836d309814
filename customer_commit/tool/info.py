"""Customer-commit actions that print information about the container."""

from . import options
from .phase import PhaseAction


class LogsAction(PhaseAction):
    """Customer-commit logs action."""

    name = "logs"
    help = "Print the logs of the container"

    async def run(  # type: ignore[no-untyped-def]
        self,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        provisioner = options.provisioner(require_secrets=False, **kwargs)
        print(await provisioner.logs(), end="")


class UrlAction(PhaseAction):
    """Customer-commit url action."""

    name = "url"
    aliases = ["gui"]
    help = "Print the URL of the management web interface"
    description = """Waits for the web management service of the container
        and prints its URL on the host running the container engine, which
        is taken from DOCKER_HOST when set."""

    async def run(  # type: ignore[no-untyped-def]
        self,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        provisioner = options.provisioner(require_secrets=False, **kwargs)
        print(await provisioner.management_url())
