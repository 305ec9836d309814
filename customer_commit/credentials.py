"""Library for generating the secret material injected into the appliance.

This produces a passphrase protected private key, a certificate signing request
and a self-signed certificate using the `openssl` command line, and renders the
password map configuration fragment:
```python
from customer_commit import credentials

await credentials.generate_key_pair(Path("."), secrets)
await credentials.write_password_map(Path("datapower/config/password-map.cfg"), secrets)
```

Existing key material is never overwritten. To regenerate a key pair, remove
the files first (see `artifacts.purge`).
"""

from dataclasses import dataclass
import logging
import os
from pathlib import Path

import aiofiles
import aiofiles.os
from aiofiles.ospath import exists

from .command import Command, run
from .config import SecretsConfig
from .exceptions import GenerationError

__all__ = [
    "KeyPair",
    "generate_key_pair",
    "render_password_map",
    "write_password_map",
]

_LOGGER = logging.getLogger(__name__)

OPENSSL_BIN = "openssl"
PASSPHRASE_ENV = "CUSTOMER_COMMIT_PASSPHRASE"
PRIVATE_MODE = 0o600

KEY_FILE = "server.key"
CSR_FILE = "server.csr"
CERT_FILE = "server.crt"

PASSWORD_MAP_CONTEXT = "crypto"
CRYPTO_MAP_NAME = "crypto"


@dataclass(frozen=True)
class KeyPair:
    """Paths of a generated private key and certificate."""

    key: Path
    cert: Path
    csr: Path

    @classmethod
    def in_dir(cls, path: Path) -> "KeyPair":
        """Return the key pair file names within a directory."""
        return cls(key=path / KEY_FILE, cert=path / CERT_FILE, csr=path / CSR_FILE)

    async def exists(self) -> bool:
        """Return True if both the key and the certificate exist."""
        return await exists(self.key) and await exists(self.cert)

    @property
    def files(self) -> list[Path]:
        return [self.key, self.csr, self.cert]


def _private_opener(path: str, flags: int) -> int:
    return os.open(path, flags, PRIVATE_MODE)


async def _remove(path: Path) -> None:
    if await exists(path):
        await aiofiles.os.remove(path)


async def generate_key_pair(
    workdir: Path, secrets: SecretsConfig, openssl: str = OPENSSL_BIN
) -> KeyPair:
    """Generate a private key, signing request and self-signed certificate.

    Returns the existing pair unchanged if the key and certificate are
    already present.
    """
    pair = KeyPair.in_dir(workdir)
    if await pair.exists():
        _LOGGER.debug("Key pair already exists in %s, not regenerating", workdir)
        return pair

    # Leftovers of an interrupted run would not match a newly generated key.
    for path in pair.files:
        await _remove(path)

    env = {PASSPHRASE_ENV: secrets.crypto_passphrase}
    passin = f"env:{PASSPHRASE_ENV}"
    cmds = [
        Command(
            [
                openssl,
                "genrsa",
                "-des3",
                "-passout",
                passin,
                "-out",
                str(pair.key),
                str(secrets.key_size),
            ],
            exc=GenerationError,
            env=env,
        ),
        Command(
            [
                openssl,
                "req",
                "-new",
                "-passin",
                passin,
                "-key",
                str(pair.key),
                "-subj",
                secrets.distinguished_name.subject,
                "-out",
                str(pair.csr),
            ],
            exc=GenerationError,
            env=env,
        ),
        Command(
            [
                openssl,
                "x509",
                "-req",
                "-passin",
                passin,
                "-days",
                str(secrets.days),
                "-in",
                str(pair.csr),
                "-signkey",
                str(pair.key),
                "-out",
                str(pair.cert),
            ],
            exc=GenerationError,
            env=env,
        ),
    ]
    _LOGGER.info("Generating %d bit key pair in %s", secrets.key_size, workdir)
    for cmd in cmds:
        await run(cmd)
    for path in pair.files:
        os.chmod(path, PRIVATE_MODE)
    return pair


def render_password_map(secrets: SecretsConfig) -> str:
    """Render the password map configuration fragment."""
    entries = {**secrets.password_map, CRYPTO_MAP_NAME: secrets.crypto_passphrase}
    lines = [PASSWORD_MAP_CONTEXT]
    for name, secret in entries.items():
        if not name or any(c.isspace() for c in name):
            raise GenerationError(f"Invalid password map name '{name}'")
        if not secret or any(c.isspace() for c in secret):
            raise GenerationError(f"Invalid password map secret for '{name}'")
        lines.append(f"  add password-map {name} {secret}")
    lines.append("exit")
    return "\n".join(lines) + "\n"


async def write_password_map(path: Path, secrets: SecretsConfig) -> None:
    """Write the password map readable by the owner only."""
    content = render_password_map(secrets)
    await aiofiles.os.makedirs(path.parent, exist_ok=True)
    await _remove(path)
    async with aiofiles.open(path, "w", opener=_private_opener) as fd:
        await fd.write(content)
    _LOGGER.debug("Wrote password map %s", path)
