"""Customer-commit actions for managing account passwords."""

from argparse import ArgumentParser

from customer_commit.exceptions import SessionError

from . import options
from .phase import PhaseAction


class RotatePasswordAction(PhaseAction):
    """Customer-commit rotate-password action."""

    name = "rotate-password"
    aliases = ["password"]
    help = "Replace the default password of an account with its final password"
    description = """Logs into the management service of the running container
        and replaces the default password of the account with the password
        from the secrets file. All accounts are changed when no user is given."""
    require_secrets = True

    @classmethod
    def add_arguments(cls, args: ArgumentParser) -> None:
        args.add_argument(
            "user", help="Account to change, or all accounts", nargs="?", default=None
        )

    async def run(  # type: ignore[no-untyped-def]
        self,
        user: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        provisioner = options.provisioner(**kwargs)
        if user is None:
            await provisioner.run("rotate-passwords")
            return
        await provisioner.wait_ready()
        await provisioner.rotate_password(user)


class VerifyLoginAction(PhaseAction):
    """Customer-commit verify-login action."""

    name = "verify-login"
    help = "Check that an account accepts its final password"
    require_secrets = True

    @classmethod
    def add_arguments(cls, args: ArgumentParser) -> None:
        args.add_argument(
            "user", help="Account to check, or all accounts", nargs="?", default=None
        )

    async def run(  # type: ignore[no-untyped-def]
        self,
        user: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        provisioner = options.provisioner(**kwargs)
        if user is None:
            await provisioner.run("verify-passwords")
            print("All accounts accept their final password")
            return
        await provisioner.wait_ready()
        if not await provisioner.verify_login(user):
            raise SessionError(user, "verify", "Login with the final password failed")
        print(f"User {user} accepts its final password")
