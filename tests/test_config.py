"""Tests for configuration objects."""

from pathlib import Path

import pytest

from customer_commit.config import (
    Account,
    NamingConfig,
    ProvisionConfig,
    SecretsConfig,
    load_secrets,
    load_settings,
)
from customer_commit.exceptions import InputException
from customer_commit.image import ImageRef

SECRETS_YAML = """\
accounts:
  - username: admin
    password: P_admin-pass
  - username: foo
    password: P_foo-pass
  - username: ops
    password: P_ops-pass
    admin_context: true
crypto_passphrase: crypto-pass
password_map:
  foo: secretfoo
distinguished_name:
  country: US
  common_name: gateway.example.com
"""


def test_naming_defaults() -> None:
    """Test naming without any overrides."""
    naming = NamingConfig.resolve(env={"USER": "alice"})
    assert naming.registry == "alice"
    assert naming.result_repository == "customer-commit"
    assert naming.tag == "0.1"
    assert naming.container_name == "customer-commit"
    assert naming.base_image == ImageRef("alice", "datapower-base", "latest")
    assert naming.result_image == ImageRef("alice", "customer-commit", "0.1")
    assert naming.latest_image == ImageRef("alice", "customer-commit", "latest")


def test_naming_environment_and_overrides() -> None:
    """Test environment values apply and command line overrides win."""
    naming = NamingConfig.resolve(
        env={"USER": "alice", "REGISTRY": "registry.example.com", "TAG": "2.0"},
        tag="3.0",
        container_name="build-1",
        result_repository=None,
    )
    assert naming.registry == "registry.example.com"
    assert naming.tag == "3.0"
    assert naming.container_name == "build-1"
    assert naming.result_repository == "customer-commit"


def test_naming_unknown_override() -> None:
    """Test an override that is not a naming field."""
    with pytest.raises(InputException, match="Unknown naming override"):
        NamingConfig.resolve(env={"USER": "alice"}, colour="blue")


def test_naming_unknown_user(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test the registry can't be derived without a user name."""

    def getuser() -> str:
        raise KeyError("getpwuid(): uid not found: 1000")

    monkeypatch.setattr("getpass.getuser", getuser)
    with pytest.raises(InputException, match="pass --registry"):
        NamingConfig.resolve(env={})
    assert NamingConfig.resolve(env={"REGISTRY": "ci"}).registry == "ci"
    assert NamingConfig.resolve(env={}, registry="ci").registry == "ci"


def test_naming_is_immutable() -> None:
    """Test naming can't change during a run."""
    naming = NamingConfig.resolve(env={"USER": "alice"})
    with pytest.raises(AttributeError):
        naming.tag = "1.0"  # type: ignore[misc]


def test_load_secrets(tmp_path: Path) -> None:
    """Test loading a secrets file."""
    path = tmp_path / "secrets.yaml"
    path.write_text(SECRETS_YAML)
    secrets = load_secrets(path)
    assert secrets.usernames == ["admin", "foo", "ops"]
    assert secrets.account("admin").uses_admin_context
    assert not secrets.account("foo").uses_admin_context
    assert secrets.account("ops").uses_admin_context
    assert secrets.default_password == "changeme"
    assert secrets.key_size == 4096
    assert secrets.days == 365
    assert secrets.distinguished_name.subject == "/C=US/CN=gateway.example.com"


def test_secrets_redacted(tmp_path: Path) -> None:
    """Test secret values are not part of the representation."""
    path = tmp_path / "secrets.yaml"
    path.write_text(SECRETS_YAML)
    secrets = load_secrets(path)
    text = repr(secrets)
    assert "admin" in text
    for secret in ("P_admin-pass", "P_foo-pass", "crypto-pass", "secretfoo", "changeme"):
        assert secret not in text


def test_unknown_account(secrets: SecretsConfig) -> None:
    """Test looking up an account that is not configured."""
    with pytest.raises(InputException, match="Unknown account 'nobody'"):
        secrets.account("nobody")


def test_duplicate_account(secrets: SecretsConfig) -> None:
    """Test accounts must be unique."""
    with pytest.raises(InputException, match="Duplicate account 'foo'"):
        SecretsConfig(
            accounts=[Account("foo", "a-pass"), Account("foo", "b-pass")],
            crypto_passphrase="crypto",
            distinguished_name=secrets.distinguished_name,
        )


@pytest.mark.parametrize(
    ("content", "match"),
    [
        ("accounts: []\n", "Invalid configuration file"),
        ("accounts: [\n", "Unable to parse"),
        (SECRETS_YAML + "unknown: 1\n", "Invalid configuration file"),
    ],
    ids=["missing-fields", "not-yaml", "extra-key"],
)
def test_invalid_secrets(tmp_path: Path, content: str, match: str) -> None:
    """Test invalid secrets files."""
    path = tmp_path / "secrets.yaml"
    path.write_text(content)
    with pytest.raises(InputException, match=match):
        load_secrets(path)


def test_missing_secrets(tmp_path: Path) -> None:
    """Test a secrets file that does not exist."""
    with pytest.raises(InputException, match="does not exist"):
        load_secrets(tmp_path / "secrets.yaml")


def test_subject_escaping(secrets: SecretsConfig) -> None:
    """Test values with separators are escaped in the subject."""
    assert "/OU=Release\\/Engineering/" in secrets.distinguished_name.subject
    assert secrets.distinguished_name.subject.startswith("/C=US/ST=NY/L=Armonk/O=")


def test_load_settings(tmp_path: Path) -> None:
    """Test loading the settings file with overrides."""
    path = tmp_path / "customer-commit.yaml"
    path.write_text("max_wait: 120\nsession:\n  blind: true\n  line_delay: 2.5\n")
    config = load_settings(path, workdir=tmp_path, docker=None)
    assert config.max_wait == 120
    assert config.docker == "docker"
    assert config.workdir == tmp_path
    assert config.session.blind
    assert config.session.line_delay == 2.5
    assert config.session.login_delay == 5.0


def test_default_settings(tmp_path: Path) -> None:
    """Test settings when no settings file exists."""
    config = load_settings(tmp_path / "missing.yaml", docker="podman")
    assert config == ProvisionConfig(docker="podman")
    assert config.max_wait == 600
    assert config.management_port == 2200
    assert config.run_flags == ["--privileged", "-P"]


def test_volumes(tmp_path: Path) -> None:
    """Test the volumes mounted into the base image."""
    config = ProvisionConfig(workdir=tmp_path)
    assert config.volumes == {
        tmp_path / "datapower": "/datapower",
        tmp_path
        / "datapower-external-evolve.cfg": "/opt/ibm/datapower/datapower-external.cfg",
    }
