"""Test helpers for customer-commit tools."""

from customer_commit.command import Command, run

CUSTOMER_COMMIT_BIN = "customer-commit"


async def run_command(args: list[str], env: dict[str, str] | None = None) -> str:
    return await run(Command([CUSTOMER_COMMIT_BIN] + args, env=env))
