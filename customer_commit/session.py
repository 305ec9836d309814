"""Interactive provisioning sessions against the appliance management port.

The management port exposes a line oriented command line interface that
expects a user name, a password and then further command lines. A session is
used to replace the default password of each managed account, which keeps the
passwords out of every file that ends up in the image.

A session is a pexpect child, by default a telnet client started inside the
container with `spawn_exec_telnet`. Each step waits for the prompt it expects
before sending the next line, and a rejection from the appliance (or a prompt
that never arrives) raises `SessionError`. In blind mode the script is sent
with fixed delays that accommodate the remote prompt latency, and the captured
output is only checked for rejections.

```python
driver = SessionDriver(
    lambda: spawn_exec_telnet(engine, "customer-commit"), SessionConfig()
)
await driver.rotate_password(secrets.account("foo"), secrets.default_password)
assert await driver.verify_login("foo", "new-password")
```
"""

import asyncio
from collections.abc import Callable
from enum import StrEnum
import logging
import re

import pexpect
from pexpect.spawnbase import SpawnBase

from .config import Account, SessionConfig
from .engine import ContainerEngine
from .exceptions import EngineError, SessionError

__all__ = [
    "TransportFactory",
    "spawn_exec_telnet",
    "SessionState",
    "SessionDriver",
]

_LOGGER = logging.getLogger(__name__)

MASK = "********"
TELNET_BIN = "telnet"
_TAIL = 200
_ANY = re.compile(r".+", re.DOTALL)

TransportFactory = Callable[[], SpawnBase]
"""Starts a new session, returning the pexpect child connected to it."""


def spawn_exec_telnet(
    engine: ContainerEngine,
    name: str,
    host: str = "127.0.0.1",
    port: int = 2200,
) -> pexpect.spawn:
    """Run a telnet client inside the container attached to the management port."""
    cmd = engine.exec_command(name, [TELNET_BIN, host, str(port)], interactive=True)
    _LOGGER.debug("Running session command: %s", " ".join(cmd))
    try:
        child = pexpect.spawn(
            cmd[0],
            cmd[1:],
            encoding="utf-8",
            codec_errors="replace",
            echo=False,
        )
    except pexpect.ExceptionPexpect as err:
        raise EngineError(f"Unable to start session command '{cmd[0]}': {err}") from err
    child.delaybeforesend = None
    return child


def _close(child: SpawnBase) -> None:
    if child.async_pw_transport:
        # The reader registered by async expect is removed before the child closes.
        child.async_pw_transport[1].close()
    child.close(force=True)


class SessionState(StrEnum):
    """Progress of a password rotation session.

    Accounts with an expired default password go through PASSWORD_CHANGED and
    PASSWORD_CONFIRMED. The admin account can only reach the new password
    prompt from inside the administrative context, so its PASSWORD_CHANGED
    follows ADMIN_CONTEXT_ENTERED.
    """

    CONNECTING = "Connecting"
    LOGGED_IN = "LoggedIn"
    PASSWORD_CHANGED = "PasswordChanged"
    PASSWORD_CONFIRMED = "PasswordConfirmed"
    ADMIN_CONTEXT_ENTERED = "AdminContextEntered"
    ADMIN_PASSWORD_SET = "AdminPasswordSet"
    ADMIN_CONTEXT_EXITED = "AdminContextExited"
    SESSION_CLOSED = "SessionClosed"


class _Session:
    """A running pexpect child and the output it has produced so far."""

    def __init__(self, child: SpawnBase, config: SessionConfig, username: str) -> None:
        self._child = child
        self._config = config
        self._username = username
        self._transcript = ""
        self._eof = False
        self._rejection = re.compile(config.rejection, re.MULTILINE)

    def _tail(self) -> str:
        return self._transcript[-_TAIL:].strip() or "<no output>"

    def _record(self) -> str:
        """Return the output consumed by the last expect."""
        text = self._child.before or ""
        if isinstance(self._child.after, str):
            text += self._child.after
        if text:
            _LOGGER.debug("[%s] < %r", self._username, text)
            self._transcript += text
        return text

    def _closed(self, step: str) -> SessionError:
        self._eof = True
        return SessionError(
            self._username, step, f"Session closed, received: {self._tail()}"
        )

    async def expect(self, patterns: dict[str, str], step: str) -> str:
        """Wait for one of the patterns, returning the key of the first match.

        A rejection received before any of the patterns fails the step.
        """
        if self._eof:
            raise self._closed(step)
        keys = list(patterns)
        index = await self._child.expect(
            [self._rejection, pexpect.EOF, pexpect.TIMEOUT]
            + [re.compile(patterns[key], re.MULTILINE) for key in keys],
            timeout=self._config.prompt_timeout,
            async_=True,
        )
        self._record()
        if index == 0:
            raise SessionError(self._username, step, self._child.after.strip())
        if index == 1:
            raise self._closed(step)
        if index == 2:
            raise SessionError(
                self._username,
                step,
                f"Timed out waiting for prompt, received: {self._tail()}",
            )
        return keys[index - 3]

    async def expect_prompt(self, pattern: str, step: str) -> None:
        await self.expect({step: pattern}, step)

    async def settle(self, delay: float, step: str) -> None:
        """Collect output for a fixed delay, then check it for rejections."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + delay
        received = ""
        while not self._eof and (remaining := deadline - loop.time()) > 0:
            index = await self._child.expect(
                [_ANY, pexpect.EOF, pexpect.TIMEOUT], timeout=remaining, async_=True
            )
            received += self._record()
            if index == 1:
                self._eof = True
            elif index == 2:
                break
        if match := self._rejection.search(received):
            raise SessionError(self._username, step, match.group(0).strip())

    def send(self, line: str, secret: bool = False) -> None:
        _LOGGER.debug("[%s] > %s", self._username, MASK if secret else line)
        self._child.sendline(line)


class SessionDriver:
    """Drives scripted sessions to rotate account passwords."""

    def __init__(
        self, transport_factory: TransportFactory, config: SessionConfig
    ) -> None:
        """Initialize SessionDriver."""
        self._transport_factory = transport_factory
        self._config = config
        self.state = SessionState.SESSION_CLOSED
        self.history: list[SessionState] = []

    def _transition(self, state: SessionState) -> None:
        _LOGGER.debug("Session state %s -> %s", self.state, state)
        self.state = state
        self.history.append(state)

    async def rotate_password(self, account: Account, default_password: str) -> None:
        """Replace the default password of an account with its final password."""
        _LOGGER.info(
            "Changing password for user %s%s",
            account.username,
            " (admin context)" if account.uses_admin_context else "",
        )
        self.history = []
        self._transition(SessionState.CONNECTING)
        child = self._transport_factory()
        session = _Session(child, self._config, account.username)
        try:
            if self._config.blind:
                await self._rotate_blind(session, account, default_password)
            else:
                await self._rotate(session, account, default_password)
        finally:
            _close(child)
            self._transition(SessionState.SESSION_CLOSED)
        _LOGGER.info("Changed password for user %s", account.username)

    async def _rotate(
        self, session: _Session, account: Account, default_password: str
    ) -> None:
        config = self._config
        await session.expect_prompt(config.login_prompt, "login")
        session.send(account.username)
        await session.expect_prompt(config.password_prompt, "password")
        session.send(default_password, secret=True)
        if account.uses_admin_context:
            await session.expect_prompt(config.command_prompt, "default login")
            self._transition(SessionState.LOGGED_IN)
            session.send(f"top; co; user {account.username}; password")
            self._transition(SessionState.ADMIN_CONTEXT_ENTERED)
            await session.expect_prompt(config.new_password_prompt, "new password")
            session.send(account.password, secret=True)
            self._transition(SessionState.PASSWORD_CHANGED)
            await session.expect_prompt(config.confirm_prompt, "confirm password")
            session.send(account.password, secret=True)
            await session.expect_prompt(config.command_prompt, "password accepted")
            self._transition(SessionState.ADMIN_PASSWORD_SET)
            session.send("exit; exit")
            await session.settle(config.line_delay, "exit admin context")
            self._transition(SessionState.ADMIN_CONTEXT_EXITED)
        else:
            await session.expect_prompt(config.new_password_prompt, "default login")
            self._transition(SessionState.LOGGED_IN)
            session.send(account.password, secret=True)
            self._transition(SessionState.PASSWORD_CHANGED)
            await session.expect_prompt(config.confirm_prompt, "confirm password")
            session.send(account.password, secret=True)
            await session.expect_prompt(config.command_prompt, "password accepted")
            self._transition(SessionState.PASSWORD_CONFIRMED)

    async def _rotate_blind(
        self, session: _Session, account: Account, default_password: str
    ) -> None:
        config = self._config
        session.send(account.username)
        await session.settle(config.login_delay, "login")
        session.send(default_password, secret=True)
        await session.settle(config.line_delay, "default login")
        self._transition(SessionState.LOGGED_IN)
        if account.uses_admin_context:
            session.send(f"top; co; user {account.username}; password")
            await session.settle(config.line_delay, "enter admin context")
            self._transition(SessionState.ADMIN_CONTEXT_ENTERED)
            session.send(account.password, secret=True)
            await session.settle(config.line_delay, "new password")
            self._transition(SessionState.PASSWORD_CHANGED)
            session.send(account.password, secret=True)
            await session.settle(config.line_delay, "confirm password")
            self._transition(SessionState.ADMIN_PASSWORD_SET)
            session.send("exit; exit")
            await session.settle(config.line_delay, "exit admin context")
            self._transition(SessionState.ADMIN_CONTEXT_EXITED)
        else:
            session.send(account.password, secret=True)
            await session.settle(config.line_delay, "new password")
            self._transition(SessionState.PASSWORD_CHANGED)
            session.send(account.password, secret=True)
            await session.settle(config.line_delay, "confirm password")
            self._transition(SessionState.PASSWORD_CONFIRMED)
        await session.settle(config.close_delay, "close")

    async def verify_login(self, username: str, password: str) -> bool:
        """Return True if a fresh login with the password reaches the command prompt."""
        config = self._config
        child = self._transport_factory()
        session = _Session(child, config, username)
        try:
            await session.expect_prompt(config.login_prompt, "login")
            session.send(username)
            await session.expect_prompt(config.password_prompt, "password")
            session.send(password, secret=True)
            result = await session.expect(
                {
                    "ok": config.command_prompt,
                    "login": config.login_prompt,
                    "change": config.new_password_prompt,
                },
                "verify login",
            )
            if result == "ok":
                session.send("exit")
        except SessionError as err:
            _LOGGER.debug("Login as %s rejected: %s", username, err)
            return False
        finally:
            _close(child)
        _LOGGER.debug("Login as %s: %s", username, result)
        return result == "ok"
