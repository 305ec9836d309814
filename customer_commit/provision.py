"""Provisioning of a configured appliance image.

The provisioning flow starts an unconfigured appliance image with the
generated artifacts mounted into it, waits for the management service to come
up, replaces the default password of every managed account over an interactive
session, then stops the container and commits it as the result image:

    clean > artifacts > start-base > wait-ready > rotate-passwords >
    verify-passwords > stop > commit > remove > tag-latest

The secrets only exist in the mounted tree and in the appliance's own
configuration store, so they are never part of an image layer.

Each step is also available on its own and first runs its own prerequisites
(e.g. `start-base` first builds the missing artifacts and `remove` first stops
the container).
"""

import logging
import os

import pexpect

from . import artifacts
from .config import NamingConfig, ProvisionConfig, SecretsConfig
from .context import collect_timings
from .credentials import OPENSSL_BIN
from .engine import Container, ContainerEngine
from .exceptions import InputException, ReadinessTimeout, SessionError
from .image import ImageRef, engine_host
from .phases import PhaseGraph
from .readiness import ReadinessResult, wait_for_listener
from .session import SessionDriver, TransportFactory, spawn_exec_telnet

__all__ = [
    "Provisioner",
    "PROVISION",
]

_LOGGER = logging.getLogger(__name__)

PROVISION = "provision"


class Provisioner:
    """Runs the phases of the provisioning flow for a single container."""

    def __init__(
        self,
        config: ProvisionConfig,
        naming: NamingConfig,
        secrets: SecretsConfig | None = None,
        engine: ContainerEngine | None = None,
        transport_factory: TransportFactory | None = None,
        openssl: str = OPENSSL_BIN,
    ) -> None:
        """Initialize Provisioner."""
        self._config = config
        self._naming = naming
        self._secrets = secrets
        self._engine = engine or ContainerEngine(config.docker)
        self._transport_factory = transport_factory or self._exec_transport
        self._openssl = openssl
        self.readiness: ReadinessResult | None = None

    @property
    def name(self) -> str:
        """The name of the container being provisioned."""
        return self._naming.container_name

    @property
    def secrets(self) -> SecretsConfig:
        if self._secrets is None:
            raise InputException(
                f"A secrets file is required, see {self._config.secrets_file}"
            )
        return self._secrets

    def _exec_transport(self) -> pexpect.spawn:
        return spawn_exec_telnet(
            self._engine,
            self.name,
            self._config.session.host,
            self._config.management_port,
        )

    def session_driver(self) -> SessionDriver:
        return SessionDriver(self._transport_factory, self._config.session)

    async def fixate(self) -> None:
        """Restrict the secrets file to its owner."""
        artifacts.fixate(self._config.workdir / self._config.secrets_file)

    async def clean(self) -> None:
        """Remove the generated mount tree."""
        artifacts.clean(self._config)

    async def purge_secrets(self) -> None:
        """Remove the mount tree and the source key pair."""
        artifacts.purge(self._config)

    async def build_artifacts(self) -> list[str]:
        """Build any missing generated artifacts."""
        tracker = artifacts.ArtifactTracker(
            artifacts.default_artifacts(self._config, self.secrets, self._openssl)
        )
        return await tracker.build()

    async def start_base(self) -> Container:
        """Start the base image with the mount tree and external config mounted."""
        external = self._config.workdir / self._config.external_config
        if not external.exists():
            raise InputException(
                f"External configuration '{external}' does not exist"
            )
        self.readiness = None
        return await self._engine.start(
            self._naming.base_image,
            self.name,
            run_flags=self._config.run_flags,
            volumes=self._config.volumes,
        )

    async def wait_ready(self, port: int | None = None) -> ReadinessResult:
        """Wait for the management port, raising if it never starts listening."""
        port = port or self._config.management_port
        result = await wait_for_listener(
            self._engine,
            self.name,
            port,
            self._config.max_wait,
            self._config.poll_interval,
        )
        if not result.ready:
            raise ReadinessTimeout(self.name, port, self._config.max_wait)
        if port == self._config.management_port:
            self.readiness = result
        return result

    async def rotate_password(self, username: str) -> None:
        """Replace the default password of a single account."""
        account = self.secrets.account(username)
        await self.session_driver().rotate_password(
            account, self.secrets.default_password
        )

    async def rotate_passwords(self) -> None:
        """Replace the default password of every managed account."""
        for username in self.secrets.usernames:
            await self.rotate_password(username)

    async def verify_login(self, username: str) -> bool:
        """Return True if the account accepts its final password."""
        account = self.secrets.account(username)
        return await self.session_driver().verify_login(username, account.password)

    async def verify_passwords(self) -> None:
        """Check every account accepts its final password and not the default."""
        driver = self.session_driver()
        for account in self.secrets.accounts:
            if not await driver.verify_login(account.username, account.password):
                raise SessionError(
                    account.username, "verify", "Login with the new password failed"
                )
            if await driver.verify_login(
                account.username, self.secrets.default_password
            ):
                raise SessionError(
                    account.username,
                    "verify",
                    "The default password is still accepted",
                )
            _LOGGER.info("Verified password for user %s", account.username)

    async def stop(self) -> None:
        await self._engine.stop(self.name, timeout=self._config.max_wait)

    async def remove(self) -> None:
        await self._engine.remove(self.name)

    async def commit(self, require_ready: bool = False) -> ImageRef:
        """Commit the container as the result image.

        The provisioning flow only commits a container that reached the ready
        signal since it was started. Run on its own, `commit` snapshots
        whatever container has the configured name.
        """
        if require_ready and not (self.readiness and self.readiness.ready):
            raise InputException(
                f"Container '{self.name}' has not reached the ready signal, "
                "refusing to commit"
            )
        return await self._engine.snapshot(self.name, self._naming.result_image)

    async def tag_latest(self) -> ImageRef:
        """Tag the result image as latest."""
        return await self._engine.alias(
            self._naming.result_image, self._naming.latest_image.tag
        )

    async def logs(self) -> str:
        return await self._engine.logs(self.name)

    async def management_url(self) -> str:
        """Return the URL of the management web interface."""
        await self.wait_ready(self._config.gui_port)
        port = await self._engine.host_port(self.name, self._config.gui_port)
        return f"https://{engine_host(os.environ.get('DOCKER_HOST'))}:{port}"

    def phases(self) -> PhaseGraph:
        """Return the phases that can be run on their own."""

        async def wait_ready() -> None:
            await self.wait_ready()

        async def start_base() -> None:
            await self.start_base()

        async def build_artifacts() -> None:
            await self.build_artifacts()

        async def commit() -> None:
            await self.commit()

        async def tag_latest() -> None:
            await self.tag_latest()

        graph = PhaseGraph()
        graph.add("fixate", self.fixate)
        graph.add("clean", self.clean)
        graph.add("purge-secrets", self.purge_secrets, ["clean"])
        graph.add("artifacts", build_artifacts)
        graph.add("start-base", start_base, ["artifacts"])
        graph.add("wait-ready", wait_ready)
        graph.add("rotate-passwords", self.rotate_passwords, ["wait-ready"])
        graph.add("verify-passwords", self.verify_passwords, ["wait-ready"])
        graph.add("stop", self.stop)
        graph.add("remove", self.remove, ["stop"])
        graph.add("commit", commit)
        graph.add("tag-latest", tag_latest)
        return graph

    def _provision_steps(self) -> list[str]:
        steps = ["fixate", "clean", "start-base", "rotate-passwords"]
        # Verification needs the prompts that blind mode does not wait for.
        if self._config.session.verify and not self._config.session.blind:
            steps.append("verify-passwords")
        return steps + ["stop", "commit", "remove", "tag-latest"]

    def provision_phases(self) -> PhaseGraph:
        """Return the phases of the full flow, each requiring the one before."""
        standalone = self.phases()

        async def commit_ready() -> None:
            await self.commit(require_ready=True)

        graph = PhaseGraph()
        previous: list[str] = []
        for step in self._provision_steps():
            for name in standalone.plan(step):
                if name in graph.names:
                    continue
                action = commit_ready if name == "commit" else standalone.action(name)
                graph.add(name, action, previous)
                previous = [name]
        graph.add(PROVISION, requires=previous)
        return graph

    async def run(self, target: str) -> list[str]:
        """Run a phase and its prerequisites."""
        graph = self.provision_phases() if target == PROVISION else self.phases()
        with collect_timings() as timings:
            order = await graph.run(target)
        _LOGGER.info("Finished %s in %0.1fs", target, timings.total)
        _LOGGER.debug("Phase timings: %s", timings.summary())
        return order
