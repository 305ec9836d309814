"""Configuration objects for customer-commit.

There are three kinds of configuration, each resolved once per invocation and
passed explicitly to the components that need it:

- `SecretsConfig` read from the secrets file (`secrets.yaml`). This holds the
  managed accounts and their final passwords, the passphrase protecting the
  private key, the password map and the certificate distinguished name.
- `ProvisionConfig` read from an optional settings file, with values for
  timing, ports and the container engine.
- `NamingConfig` resolved from defaults, the environment and command line
  overrides, used to build image references and the container name.

An example secrets file:
```yaml
accounts:
  - username: admin
    password: s3cret-admin
  - username: foo
    password: s3cret-foo
crypto_passphrase: s3cret-crypto
password_map:
  foo: secretfoo
  bar: secretbar
distinguished_name:
  country: US
  state: NY
  city: Armonk
  organization: Example
  unit: Release Engineering
  common_name: gateway.example.com
  email: re@example.com
```

Secret fields are excluded from `repr()` so that configuration objects can be
logged safely.
"""

from dataclasses import dataclass, field, replace
import getpass
import logging
import os
from pathlib import Path
from typing import Any

from mashumaro import DataClassDictMixin
from mashumaro.codecs.yaml import yaml_decode
from mashumaro.config import BaseConfig
from mashumaro.exceptions import ExtraKeysError, InvalidFieldValue, MissingField
import yaml

from .exceptions import InputException
from .image import ImageRef

__all__ = [
    "Account",
    "DistinguishedName",
    "SecretsConfig",
    "SessionConfig",
    "ProvisionConfig",
    "NamingConfig",
    "load_secrets",
    "load_settings",
]

_LOGGER = logging.getLogger(__name__)

ADMIN_USER = "admin"
DEFAULT_PASSWORD = "changeme"
DEFAULT_BASE_REPOSITORY = "datapower-base"
DEFAULT_RESULT_REPOSITORY = "customer-commit"
DEFAULT_TAG = "0.1"
DEFAULT_CONTAINER_NAME = "customer-commit"
LATEST_TAG = "latest"

# Environment variables that may override naming defaults, matching the
# variable names used by the release engineering build.
NAMING_ENV = {
    "registry": "REGISTRY",
    "base_repository": "BASEREPOSITORY",
    "result_repository": "RESULTREPOSITORY",
    "tag": "TAG",
    "container_name": "CONTAINER_NAME",
}


class _Config(DataClassDictMixin):
    """Base class for all configuration objects."""

    class Config(BaseConfig):
        omit_none = True
        forbid_extra_keys = True


@dataclass
class DistinguishedName(_Config):
    """Subject fields for the generated self-signed certificate."""

    country: str
    state: str = ""
    city: str = ""
    organization: str = ""
    unit: str = ""
    common_name: str = ""
    email: str = ""

    @property
    def subject(self) -> str:
        """Return the subject in the `/C=../ST=..` form used by openssl."""
        parts = [
            ("C", self.country),
            ("ST", self.state),
            ("L", self.city),
            ("O", self.organization),
            ("OU", self.unit),
            ("CN", self.common_name),
            ("emailAddress", self.email),
        ]
        return "".join(
            f"/{key}={_escape_rdn(value)}" for key, value in parts if value
        )


def _escape_rdn(value: str) -> str:
    return value.replace("\\", "\\\\").replace("/", "\\/").replace("=", "\\=")


@dataclass
class Account(_Config):
    """A managed appliance account and the password it should end up with."""

    username: str
    password: str = field(repr=False)
    admin_context: bool | None = None
    """Change the password from the administrative configuration context.

    When unset only the `admin` account uses the administrative context.
    """

    @property
    def uses_admin_context(self) -> bool:
        """Return True if the password is changed via the admin context."""
        if self.admin_context is None:
            return self.username == ADMIN_USER
        return self.admin_context


@dataclass
class SecretsConfig(_Config):
    """Secret material injected into the appliance during provisioning."""

    accounts: list[Account]
    crypto_passphrase: str = field(repr=False)
    distinguished_name: DistinguishedName
    password_map: dict[str, str] = field(default_factory=dict, repr=False)
    key_size: int = 4096
    days: int = 365
    default_password: str = field(default=DEFAULT_PASSWORD, repr=False)

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for account in self.accounts:
            if account.username in seen:
                raise InputException(f"Duplicate account '{account.username}'")
            if not account.password:
                raise InputException(
                    f"Account '{account.username}' has an empty password"
                )
            seen.add(account.username)
        if not self.crypto_passphrase:
            raise InputException("The crypto passphrase must not be empty")

    @property
    def usernames(self) -> list[str]:
        """Return the names of all managed accounts in declaration order."""
        return [account.username for account in self.accounts]

    def account(self, username: str) -> Account:
        """Return the account with the specified name."""
        for account in self.accounts:
            if account.username == username:
                return account
        raise InputException(
            f"Unknown account '{username}', expected one of: {', '.join(self.usernames)}"
        )


@dataclass
class SessionConfig(_Config):
    """Settings for interactive provisioning sessions on the management port."""

    host: str = "127.0.0.1"
    """Address of the management port as seen from inside the container."""

    blind: bool = False
    """Send the script with fixed delays instead of waiting for prompts."""

    verify: bool = True
    """Log in again with each new password after rotation."""

    prompt_timeout: float = 30.0
    login_delay: float = 5.0
    line_delay: float = 1.2
    close_delay: float = 5.0

    login_prompt: str = r"login:\s*$"
    password_prompt: str = r"[Pp]assword:\s*$"
    new_password_prompt: str = r"[Nn]ew password:\s*$"
    confirm_prompt: str = r"(?:[Rr]e-?enter|[Cc]onfirm)[^\n]*:\s*$"
    command_prompt: str = r"#\s*$"
    rejection: str = r"^%.*$|Login failed|Access denied"


@dataclass
class ProvisionConfig(_Config):
    """Settings for the provisioning run."""

    workdir: Path = Path(".")
    max_wait: float = 600.0
    poll_interval: float = 1.0
    management_port: int = 2200
    gui_port: int = 9090
    run_flags: list[str] = field(default_factory=lambda: ["--privileged", "-P"])
    docker: str = "docker"
    external_config: str = "datapower-external-evolve.cfg"
    secrets_file: str = "secrets.yaml"
    session: SessionConfig = field(default_factory=SessionConfig)

    @property
    def mount_dir(self) -> Path:
        """Directory mounted as /datapower inside the container."""
        return self.workdir / "datapower"

    @property
    def volumes(self) -> dict[Path, str]:
        """Volumes mounted when evolving the base image."""
        return {
            self.mount_dir.absolute(): "/datapower",
            (
                self.workdir / self.external_config
            ).absolute(): "/opt/ibm/datapower/datapower-external.cfg",
        }


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError) as err:
        raise InputException(
            "Unable to determine the current user for the registry, set REGISTRY "
            "or pass --registry"
        ) from err


@dataclass(frozen=True)
class NamingConfig:
    """Registry, repository, tag and container names for a run."""

    registry: str
    base_repository: str = DEFAULT_BASE_REPOSITORY
    result_repository: str = DEFAULT_RESULT_REPOSITORY
    tag: str = DEFAULT_TAG
    container_name: str = DEFAULT_CONTAINER_NAME

    @classmethod
    def resolve(
        cls,
        env: dict[str, str] | None = None,
        **overrides: str | None,
    ) -> "NamingConfig":
        """Resolve names from defaults, then the environment, then overrides."""
        env = dict(os.environ) if env is None else env
        values: dict[str, str] = {}
        for key, var in NAMING_ENV.items():
            if value := env.get(var):
                values[key] = value
        for key, value in overrides.items():
            if key not in NAMING_ENV:
                raise InputException(f"Unknown naming override '{key}'")
            if value:
                values[key] = value
        if "registry" not in values:
            values["registry"] = env.get("USER") or _current_user()
        naming = cls(**values)
        _LOGGER.debug("Resolved naming: %s", naming)
        return naming

    @property
    def base_image(self) -> ImageRef:
        """The unconfigured image the container is started from."""
        return ImageRef(self.registry, self.base_repository, LATEST_TAG)

    @property
    def result_image(self) -> ImageRef:
        """The committed image."""
        return ImageRef(self.registry, self.result_repository, self.tag)

    @property
    def latest_image(self) -> ImageRef:
        """The `latest` alias of the committed image."""
        return self.result_image.with_tag(LATEST_TAG)


def _decode(content: str, cls: type[Any], path: Path) -> Any:
    try:
        return yaml_decode(content, cls)
    except (
        MissingField,
        InvalidFieldValue,
        ExtraKeysError,
        AttributeError,
        ValueError,
        TypeError,
    ) as err:
        raise InputException(f"Invalid configuration file '{path}': {err}") from err
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse '{path}' as yaml: {err}") from err


def load_secrets(path: Path) -> SecretsConfig:
    """Load the secrets configuration file."""
    if not path.exists():
        raise InputException(f"Secrets file '{path}' does not exist")
    secrets = _decode(path.read_text(), SecretsConfig, path)
    _LOGGER.debug("Loaded secrets for accounts: %s", ", ".join(secrets.usernames))
    return secrets


def load_settings(path: Path | None, **overrides: Any) -> ProvisionConfig:
    """Load the optional settings file and apply non-empty overrides."""
    if path is not None and path.exists():
        config = _decode(path.read_text(), ProvisionConfig, path)
    else:
        config = ProvisionConfig()
    values = {key: value for key, value in overrides.items() if value is not None}
    return replace(config, **values)
