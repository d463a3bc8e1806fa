"""Import a private gpg key into an ephemeral keyring for signing charts.

The key is imported with `gpg --batch --import` into a freshly created
GNUPGHOME. gpg reports the imported key only in its human readable
diagnostic output, e.g.:

```
gpg: key 8B7A1C2D3E4F5061: public key "Chart Signer <ci@example.com>" imported
gpg: key 8B7A1C2D3E4F5061: secret key imported
gpg: Total number processed: 1
```

The transcript is reduced to one of the terminal states of `ImportState`
by `parse_import_transcript`; the key id is extracted only in
`parse_key_id`.
"""

from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass
import enum
import logging
from pathlib import Path
import re
import shutil
import tempfile

import aiofiles

from . import command
from .exceptions import (
    GpgException,
    SigningConfigError,
    SigningImportError,
    SigningKeyIdNotFoundError,
)

__all__ = [
    "SigningOptions",
    "SigningKey",
    "ImportState",
    "ImportOutcome",
    "parse_key_id",
    "parse_import_transcript",
    "ephemeral_keyring",
    "import_key",
    "signing_key",
]

_LOGGER = logging.getLogger(__name__)

GPG_BIN = "gpg"
KEYRING_PREFIX = "harbor-resource-gpg-"
KEY_DATA_FILE = "gpg-key.asc"
SECRET_KEYRING = "secring.gpg"
SECRET_KEY_IMPORTED = "secret key imported"

_KEY_ID_PATTERN = re.compile(r"\bkey (?P<key_id>[^\s:]+): secret key imported\s*$")


@dataclass(frozen=True)
class SigningOptions:
    """Key material used to sign a chart."""

    key_data: str | None = None
    """ASCII armored private key."""

    key_file: Path | None = None
    """Path to a private key file."""

    passphrase: str | None = None
    """Passphrase protecting the private key."""

    def __post_init__(self) -> None:
        if self.key_data is None and self.key_file is None:
            raise SigningConfigError(
                "Either key_data or key_file must be specified, when 'sign' is set to true"
            )
        if self.key_data is not None and self.key_file is not None:
            raise SigningConfigError(
                "Only one of key_data or key_file may be specified, when 'sign' is set to true"
            )


@dataclass(frozen=True)
class SigningKey:
    """An imported key ready to be used by `helm package --sign`."""

    key_id: str
    keyring: Path
    passphrase: str | None = None


class ImportState(enum.Enum):
    """Terminal states of a key import."""

    IMPORTED = "imported"
    NO_MATCH = "no-match"
    UNPARSABLE = "unparsable"
    PROCESS_ERROR = "process-error"


@dataclass(frozen=True)
class ImportOutcome:
    """The interpreted result of a gpg key import."""

    state: ImportState
    key_id: str | None = None
    line: str | None = None
    returncode: int | None = None
    transcript: str = ""

    def key_id_or_raise(self) -> str:
        """Return the imported key id or raise the matching error."""
        if self.state == ImportState.PROCESS_ERROR:
            raise SigningImportError(self.returncode or -1, self.transcript)
        if self.state == ImportState.NO_MATCH:
            raise SigningKeyIdNotFoundError()
        if self.state == ImportState.UNPARSABLE or self.key_id is None:
            raise SigningKeyIdNotFoundError(self.line)
        return self.key_id


def parse_key_id(line: str) -> str | None:
    """Extract the key id from a `key <ID>: secret key imported` line."""
    if match := _KEY_ID_PATTERN.search(line.strip()):
        return match.group("key_id")
    return None


def parse_import_transcript(returncode: int, lines: Iterable[str]) -> ImportOutcome:
    """Interpret the exit code and diagnostic output of `gpg --import`."""
    lines = list(lines)
    transcript = "\n".join(lines)
    if returncode != 0:
        return ImportOutcome(
            ImportState.PROCESS_ERROR, returncode=returncode, transcript=transcript
        )
    line = next((line for line in lines if SECRET_KEY_IMPORTED in line), None)
    if line is None:
        return ImportOutcome(ImportState.NO_MATCH, returncode=0, transcript=transcript)
    if (key_id := parse_key_id(line)) is None:
        return ImportOutcome(
            ImportState.UNPARSABLE, line=line, returncode=0, transcript=transcript
        )
    return ImportOutcome(
        ImportState.IMPORTED,
        key_id=key_id,
        line=line,
        returncode=0,
        transcript=transcript,
    )


@asynccontextmanager
async def ephemeral_keyring() -> AsyncGenerator[Path, None]:
    """Create an empty GNUPGHOME that is removed on exit."""
    gpg_home = Path(tempfile.mkdtemp(prefix=KEYRING_PREFIX))
    _LOGGER.info('Using new empty temporary GNUPGHOME: "%s"', gpg_home)
    try:
        yield gpg_home
    finally:
        _LOGGER.info('Removing temporary GNUPGHOME "%s"', gpg_home)
        shutil.rmtree(gpg_home, ignore_errors=True)


def _gpg_args(gpg_home: Path, passphrase: str | None) -> list[str]:
    args = [GPG_BIN, "--batch", "--homedir", str(gpg_home)]
    if passphrase is not None:
        args.extend(["--pinentry-mode", "loopback", "--passphrase-fd", "0"])
    return args


def _stdin(passphrase: str | None) -> bytes | None:
    return passphrase.encode("utf-8") if passphrase is not None else None


async def import_key(gpg_home: Path, key_file: Path, passphrase: str | None = None) -> str:
    """Import exactly one private key and return its key id."""
    args = _gpg_args(gpg_home, passphrase)
    args.extend(["--import", str(key_file)])
    stdin = _stdin(passphrase)
    _LOGGER.info('Importing GPG private key: "%s"', key_file)
    result = await command.run_result(command.Command(args, exc=GpgException), stdin)
    if result.stdout:
        _LOGGER.info("%s", result.stdout.rstrip())
    outcome = parse_import_transcript(result.returncode, result.stderr_lines)
    key_id = outcome.key_id_or_raise()
    _LOGGER.info('GPG key imported successfully. Key ID: "%s"', key_id)
    return key_id


async def export_secret_keyring(
    gpg_home: Path, key_id: str, passphrase: str | None = None
) -> Path:
    """Export the imported secret key in the legacy keyring format helm reads."""
    keyring = gpg_home / SECRET_KEYRING
    args = _gpg_args(gpg_home, passphrase)
    args.extend(["--output", str(keyring), "--export-secret-keys", key_id])
    stdin = _stdin(passphrase)
    await command.run(command.Command(args, exc=GpgException), stdin)
    return keyring


async def write_key_data(key_data: str, work_dir: Path) -> Path:
    """Write inline key material to a file in the work directory."""
    key_file = work_dir / KEY_DATA_FILE
    async with aiofiles.open(str(key_file), mode="w") as key_fd:
        await key_fd.write(key_data)
    key_file.chmod(0o600)
    return key_file


@asynccontextmanager
async def signing_key(
    options: SigningOptions, work_dir: Path
) -> AsyncGenerator[SigningKey, None]:
    """Import the configured key, yielding it while the keyring exists."""
    if options.key_data is not None:
        key_file = await write_key_data(options.key_data, work_dir)
    else:
        key_file = options.key_file  # type: ignore[assignment]
    async with ephemeral_keyring() as gpg_home:
        try:
            key_id = await import_key(gpg_home, key_file, options.passphrase)
            keyring = await export_secret_keyring(gpg_home, key_id, options.passphrase)
        except Exception:
            _LOGGER.error('Importing of GPG key "%s" failed', key_file)
            raise
        yield SigningKey(key_id=key_id, keyring=keyring, passphrase=options.passphrase)
